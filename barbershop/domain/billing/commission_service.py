"""Commission service - revenue and commission aggregation over closed commands"""

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...cache import Cache
from ...config import COMMISSION_CACHE_TTL, COMMISSION_LAST_GOOD_TTL
from ...models import Profile
from ...models_command import Command, CommandItem
from ...rate_limiter import RateLimiter
from .repository import BillingRepository

logger = logging.getLogger(__name__)

COMMISSIONS_TAG = "commissions"

# At most this many fresh computations per window per barbershop; extra calls get the cached report
REFRESH_LIMIT = 3
REFRESH_WINDOW_SECONDS = 2


def empty_report() -> dict:
    return {
        "stats": {"totalRevenue": 0.0, "totalCommissions": 0.0, "totalSales": 0, "averageTicket": 0.0},
        "rankings": [],
        "commissions": [],
        "generatedAt": None,
    }


def build_commission_report(
    commands: list[Command],
    items: Iterable[CommandItem],
    providers: Iterable[Profile],
) -> dict:
    """Aggregate closed commands into totals and a per-provider ranking

    Revenue counts once per command; commissions count once per item. A command
    without items still counts as a sale.
    """
    commands_by_id = {command.id: command for command in commands}
    provider_names = {p.id: p.full_name or p.email or f"#{p.id}" for p in providers}

    rankings: dict[int, dict] = {
        provider_id: {
            "providerId": provider_id,
            "providerName": name,
            "totalCommissions": 0.0,
            "totalRevenue": 0.0,
            "totalSales": 0,
        }
        for provider_id, name in provider_names.items()
    }

    def ranking_for(provider_id: int) -> dict:
        if provider_id not in rankings:
            rankings[provider_id] = {
                "providerId": provider_id,
                "providerName": provider_names.get(provider_id, f"#{provider_id}"),
                "totalCommissions": 0.0,
                "totalRevenue": 0.0,
                "totalSales": 0,
            }
        return rankings[provider_id]

    total_revenue = 0.0
    for command in commands:
        amount = command.total_amount or 0.0
        total_revenue += amount
        if command.barber_id is not None:
            entry = ranking_for(command.barber_id)
            entry["totalRevenue"] += amount
            entry["totalSales"] += 1

    total_commissions = 0.0
    commission_rows = []
    for item in items:
        command = commands_by_id.get(item.command_id)
        if command is None:
            continue
        commission = item.commission_amount or 0.0
        total_commissions += commission
        if command.barber_id is not None:
            ranking_for(command.barber_id)["totalCommissions"] += commission
        commission_rows.append(
            {
                "commandId": command.id,
                "itemId": item.id,
                "itemName": item.name,
                "providerId": command.barber_id,
                "providerName": provider_names.get(command.barber_id),
                "clientName": command.client.name if command.client else None,
                "commissionAmount": round(commission, 2),
                "date": command.created_at.isoformat() if command.created_at else None,
            }
        )

    total_sales = len(commands)
    ordered = sorted(rankings.values(), key=lambda r: r["totalCommissions"], reverse=True)
    for position, entry in enumerate(ordered, start=1):
        entry["position"] = position
        entry["totalCommissions"] = round(entry["totalCommissions"], 2)
        entry["totalRevenue"] = round(entry["totalRevenue"], 2)

    return {
        "stats": {
            "totalRevenue": round(total_revenue, 2),
            "totalCommissions": round(total_commissions, 2),
            "totalSales": total_sales,
            "averageTicket": round(total_revenue / total_sales, 2) if total_sales else 0.0,
        },
        "rankings": ordered,
        "commissions": commission_rows,
        "generatedAt": datetime.utcnow().isoformat(),
    }


class CommissionService:
    """Commission report with cached results and last-good fallback"""

    def __init__(self, db: Session, cache: Cache, limiter: RateLimiter):
        self.db = db
        self.cache = cache
        self.limiter = limiter
        self.repo = BillingRepository()

    @staticmethod
    def cache_key(
        barbershop_id: int,
        start_date: Optional[date],
        end_date: Optional[date],
        provider_id: Optional[int],
    ) -> str:
        return f"commissions:{barbershop_id}:{start_date or '-'}:{end_date or '-'}:{provider_id or 'all'}"

    def _compute(
        self,
        barbershop_id: int,
        start_date: Optional[date],
        end_date: Optional[date],
        provider_id: Optional[int],
    ) -> dict:
        commands = self.repo.get_closed_commands(self.db, barbershop_id, start_date, end_date, provider_id)
        items = self.repo.get_items_for_commands(self.db, [c.id for c in commands])

        if provider_id:
            providers = self.repo.get_profiles_by_ids(self.db, [provider_id])
        else:
            providers = self.repo.get_providers(self.db, barbershop_id)
            known = {p.id for p in providers}
            missing = {c.barber_id for c in commands if c.barber_id and c.barber_id not in known}
            providers = providers + self.repo.get_profiles_by_ids(self.db, sorted(missing))

        return build_commission_report(commands, items, providers)

    def get_report(
        self,
        barbershop_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        provider_id: Optional[int] = None,
        force_refresh: bool = False,
    ) -> dict:
        key = self.cache_key(barbershop_id, start_date, end_date, provider_id)
        last_good_key = f"{key}:last_good"

        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return {**cached, "fromCache": True, "stale": False}

        is_allowed, count, _ttl = self.limiter.check(
            f"commission_refresh:{barbershop_id}", REFRESH_LIMIT, REFRESH_WINDOW_SECONDS
        )
        if not is_allowed:
            fallback = self.cache.get(last_good_key)
            if fallback is not None:
                logger.warning(f"⚡ Commission refresh throttled for barbershop {barbershop_id} ({count} calls)")
                return {**fallback, "fromCache": True, "stale": False}

        try:
            report = self._compute(barbershop_id, start_date, end_date, provider_id)
        except Exception as e:
            # Keep previous values; a failed refresh never overwrites them
            logger.error(f"❌ Commission aggregation failed for barbershop {barbershop_id}: {e}")
            self.db.rollback()
            fallback = self.cache.get(last_good_key)
            if fallback is not None:
                return {**fallback, "fromCache": True, "stale": True}
            return {**empty_report(), "fromCache": False, "stale": True}

        self.cache.set(key, report, ttl=COMMISSION_CACHE_TTL, tags=[COMMISSIONS_TAG], scope=barbershop_id)
        self.cache.set(last_good_key, report, ttl=COMMISSION_LAST_GOOD_TTL)
        logger.info(
            f"📊 Commission report for barbershop {barbershop_id}: "
            f"{report['stats']['totalSales']} sales, {report['stats']['totalCommissions']} in commissions"
        )
        return {**report, "fromCache": False, "stale": False}


def invalidate_commission_cache(cache: Cache, barbershop_id: int) -> int:
    """Drop fresh commission reports for a barbershop (last-good copies are kept)"""
    return cache.invalidate_tag(COMMISSIONS_TAG, scope=barbershop_id)
