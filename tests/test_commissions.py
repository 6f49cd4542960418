from datetime import date, datetime

import pytest

from barbershop.domain.billing.commission_service import (
    REFRESH_LIMIT,
    CommissionService,
    invalidate_commission_cache,
)
from barbershop.models_command import Command, CommandItem


def add_closed_command(db_session, barbershop, barber, client, items, created_at):
    """items: list of (name, total_price, commission_amount)"""
    command = Command(
        barbershop_id=barbershop.id,
        barber_id=barber.id if barber else None,
        client_id=client.id if client else None,
        status="closed",
        payment_status="paid",
        payment_method="pix",
        total_amount=round(sum(price for _, price, _ in items), 2),
        final_amount=round(sum(price for _, price, _ in items), 2),
        created_at=created_at,
        closed_at=created_at,
    )
    for name, price, commission in items:
        command.items.append(
            CommandItem(
                name=name,
                quantity=1,
                unit_price=price,
                total_price=price,
                commission_rate=round(commission / price * 100, 2) if price else 0.0,
                commission_amount=commission,
            )
        )
    db_session.add(command)
    db_session.commit()
    return command


@pytest.fixture
def march_sales(db_session, sample_barbershop, sample_barber, second_barber, sample_client):
    """Bruno: 2 commands (80 + 50), Carlos: 1 command (100). One command outside the range."""
    add_closed_command(
        db_session, sample_barbershop, sample_barber, sample_client,
        [("Corte", 50.0, 20.0), ("Barba", 30.0, 12.0)], datetime(2026, 3, 2, 10, 0),
    )
    add_closed_command(
        db_session, sample_barbershop, sample_barber, sample_client,
        [("Corte", 50.0, 20.0)], datetime(2026, 3, 5, 23, 59),
    )
    add_closed_command(
        db_session, sample_barbershop, second_barber, sample_client,
        [("Corte + Barba", 100.0, 50.0)], datetime(2026, 3, 4, 15, 30),
    )
    add_closed_command(
        db_session, sample_barbershop, second_barber, sample_client,
        [("Corte", 50.0, 25.0)], datetime(2026, 2, 20, 9, 0),
    )


@pytest.mark.commissions
class TestCommissionReport:
    def test_totals_count_revenue_once_per_command(self, db_session, cache, limiter, sample_barbershop, march_sales):
        service = CommissionService(db_session, cache, limiter)
        report = service.get_report(sample_barbershop.id, date(2026, 3, 1), date(2026, 3, 5))

        assert report["stats"]["totalRevenue"] == 230.0
        assert report["stats"]["totalCommissions"] == 102.0
        assert report["stats"]["totalSales"] == 3
        assert report["stats"]["averageTicket"] == round(230.0 / 3, 2)
        assert len(report["commissions"]) == 4
        assert report["fromCache"] is False
        assert report["stale"] is False

    def test_rankings_sorted_by_commission(
        self, db_session, cache, limiter, sample_barbershop, sample_barber, second_barber, march_sales
    ):
        service = CommissionService(db_session, cache, limiter)
        report = service.get_report(sample_barbershop.id, date(2026, 3, 1), date(2026, 3, 5))

        first, second = report["rankings"]
        assert first["providerId"] == sample_barber.id
        assert first["totalCommissions"] == 52.0
        assert first["totalRevenue"] == 130.0
        assert first["totalSales"] == 2
        assert first["position"] == 1
        assert second["providerId"] == second_barber.id
        assert second["totalCommissions"] == 50.0
        assert second["position"] == 2

    def test_end_date_is_inclusive(self, db_session, cache, limiter, sample_barbershop, march_sales):
        service = CommissionService(db_session, cache, limiter)
        report = service.get_report(sample_barbershop.id, date(2026, 3, 5), date(2026, 3, 5))

        assert report["stats"]["totalSales"] == 1
        assert report["stats"]["totalRevenue"] == 50.0

    def test_provider_filter(self, db_session, cache, limiter, sample_barbershop, sample_barber, march_sales):
        service = CommissionService(db_session, cache, limiter)
        report = service.get_report(
            sample_barbershop.id, date(2026, 3, 1), date(2026, 3, 31), provider_id=sample_barber.id
        )

        assert report["stats"]["totalRevenue"] == 130.0
        assert report["stats"]["totalCommissions"] == 52.0
        assert [r["providerId"] for r in report["rankings"]] == [sample_barber.id]

    def test_empty_range(self, db_session, cache, limiter, sample_barbershop, march_sales):
        service = CommissionService(db_session, cache, limiter)
        report = service.get_report(sample_barbershop.id, date(2025, 1, 1), date(2025, 1, 31))

        assert report["stats"] == {
            "totalRevenue": 0.0,
            "totalCommissions": 0.0,
            "totalSales": 0,
            "averageTicket": 0.0,
        }
        assert report["commissions"] == []


@pytest.mark.commissions
class TestCommissionCache:
    def test_second_call_is_served_from_cache(self, db_session, cache, limiter, sample_barbershop, march_sales):
        service = CommissionService(db_session, cache, limiter)
        first = service.get_report(sample_barbershop.id, date(2026, 3, 1), date(2026, 3, 5))
        second = service.get_report(sample_barbershop.id, date(2026, 3, 1), date(2026, 3, 5))

        assert first["fromCache"] is False
        assert second["fromCache"] is True
        assert second["stats"] == first["stats"]

    def test_invalidation_is_scoped_to_the_barbershop(
        self, db_session, cache, limiter, sample_barbershop, other_barbershop, march_sales
    ):
        service = CommissionService(db_session, cache, limiter)
        service.get_report(sample_barbershop.id)
        service.get_report(other_barbershop.id)

        assert invalidate_commission_cache(cache, other_barbershop.id) == 1
        assert service.get_report(sample_barbershop.id)["fromCache"] is True
        assert service.get_report(other_barbershop.id)["fromCache"] is False

    def test_failed_refresh_keeps_last_good_values(
        self, db_session, cache, limiter, sample_barbershop, march_sales, monkeypatch
    ):
        service = CommissionService(db_session, cache, limiter)
        good = service.get_report(sample_barbershop.id, date(2026, 3, 1), date(2026, 3, 5))

        def broken(*args, **kwargs):
            raise RuntimeError("statement timeout")

        monkeypatch.setattr(service, "_compute", broken)
        fallback = service.get_report(sample_barbershop.id, date(2026, 3, 1), date(2026, 3, 5), force_refresh=True)

        assert fallback["stale"] is True
        assert fallback["stats"] == good["stats"]

    def test_failure_without_history_returns_empty_stale_report(
        self, db_session, cache, limiter, sample_barbershop, monkeypatch
    ):
        service = CommissionService(db_session, cache, limiter)

        def broken(*args, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(service, "_compute", broken)
        report = service.get_report(sample_barbershop.id)

        assert report["stale"] is True
        assert report["stats"]["totalSales"] == 0

    def test_refresh_storm_is_throttled(
        self, db_session, cache, limiter, sample_barbershop, march_sales, monkeypatch
    ):
        service = CommissionService(db_session, cache, limiter)
        computed = []
        original = service._compute

        def counting(*args, **kwargs):
            computed.append(1)
            return original(*args, **kwargs)

        monkeypatch.setattr(service, "_compute", counting)
        results = [service.get_report(sample_barbershop.id, force_refresh=True) for _ in range(REFRESH_LIMIT + 2)]

        assert len(computed) == REFRESH_LIMIT
        assert all(r["fromCache"] for r in results[REFRESH_LIMIT:])
        assert results[-1]["stats"] == results[0]["stats"]
