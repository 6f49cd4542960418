"""Command service - open tabs, line items and checkout"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...cache import Cache
from ...models_command import Command, CommandItem
from ..billing.commission_service import invalidate_commission_cache
from ..subscriptions.service import SubscriptionService
from .repository import CommandRepository
from .schemas import CommandClose, CommandCreate, CommandItemCreate

logger = logging.getLogger(__name__)


def calculate_item_amounts(quantity: int, unit_price: float, commission_rate: float) -> tuple[float, float]:
    """(total_price, commission_amount) for a line item"""
    total = round(quantity * unit_price, 2)
    return total, round(total * commission_rate / 100, 2)


class CommandService:
    def __init__(self, db: Session, cache: Cache):
        self.db = db
        self.cache = cache
        self.repo = CommandRepository()
        self.subscriptions = SubscriptionService(db)

    def get_command(self, barbershop_id: int, command_id: int) -> Command:
        command = self.repo.get_command(self.db, command_id, barbershop_id)
        if not command:
            raise HTTPException(status_code=404, detail="Command not found")
        return command

    def _get_open_command(self, barbershop_id: int, command_id: int) -> Command:
        command = self.get_command(barbershop_id, command_id)
        if command.status != "open":
            raise HTTPException(status_code=400, detail=f"Command is {command.status}")
        return command

    def list_commands(
        self,
        barbershop_id: int,
        status: Optional[str] = None,
        on_date: Optional[date] = None,
        barber_id: Optional[int] = None,
    ) -> list[Command]:
        return self.repo.list_commands(self.db, barbershop_id, status, on_date, barber_id)

    def open_command(self, barbershop_id: int, data: CommandCreate) -> Command:
        if data.barber_id and not self.repo.get_barber(self.db, data.barber_id, barbershop_id):
            raise HTTPException(status_code=404, detail="Barber not found")

        command = Command(barbershop_id=barbershop_id, status="open", payment_status="pending", **data.model_dump())
        self.db.add(command)
        self.db.commit()
        self.db.refresh(command)
        logger.info(f"🧾 Command {command.id} opened for barbershop {barbershop_id}")
        return command

    def add_item(self, barbershop_id: int, command_id: int, data: CommandItemCreate) -> Command:
        command = self._get_open_command(barbershop_id, command_id)

        service = None
        if data.service_id is not None:
            service = self.repo.get_service(self.db, data.service_id, barbershop_id)
            if not service:
                raise HTTPException(status_code=404, detail="Service not found")

        name = data.name or (service.name if service else None)
        if not name:
            raise HTTPException(status_code=400, detail="Item name is required")

        unit_price = data.unit_price if data.unit_price is not None else (service.price if service else 0.0)
        commission_rate = data.commission_rate
        if commission_rate is None:
            commission_rate = command.barber.commission_rate if command.barber else 0.0

        subscription_id = None
        original_price = None
        if data.use_subscription:
            if service is None or command.client_id is None:
                raise HTTPException(
                    status_code=400, detail="Subscription checkout requires a client and a catalog service"
                )
            if data.quantity != 1:
                raise HTTPException(status_code=400, detail="Subscription items are redeemed one unit per line")
            validation = self.subscriptions.validate_service_usage(barbershop_id, command.client_id, service.id)
            if not validation["canUseService"]:
                raise HTTPException(status_code=400, detail=validation["reason"])
            subscription_id = validation["subscriptionId"]

            # Covered lines already on this open command are spoken for
            reserved = sum(1 for i in command.items if i.subscription_id == subscription_id)
            if reserved >= validation["remainingServices"]:
                raise HTTPException(status_code=400, detail="No remaining services in this subscription")
            original_price = unit_price
            unit_price = 0.0

        total_price, commission_amount = calculate_item_amounts(data.quantity, unit_price, commission_rate)
        command.items.append(
            CommandItem(
                item_type=data.item_type,
                service_id=data.service_id,
                name=name,
                quantity=data.quantity,
                unit_price=unit_price,
                total_price=total_price,
                commission_rate=commission_rate,
                commission_amount=commission_amount,
                subscription_id=subscription_id,
                original_price=original_price,
            )
        )
        self.repo.recalculate_total(command)
        self.db.commit()
        self.db.refresh(command)
        return command

    def remove_item(self, barbershop_id: int, command_id: int, item_id: int) -> Command:
        command = self._get_open_command(barbershop_id, command_id)
        item = self.repo.get_item(self.db, item_id, command.id)
        if not item:
            raise HTTPException(status_code=404, detail="Item not found")

        command.items.remove(item)
        self.repo.recalculate_total(command)
        self.db.commit()
        self.db.refresh(command)
        return command

    def close_command(self, barbershop_id: int, command_id: int, data: CommandClose) -> Command:
        """Checkout: redeem subscription items, then mark the command closed and paid"""
        command = self._get_open_command(barbershop_id, command_id)
        self.repo.recalculate_total(command)

        if data.discount_amount > command.total_amount:
            raise HTTPException(status_code=400, detail="Discount cannot exceed the command total")

        # Redemptions and the status change commit together or not at all
        try:
            for item in command.items:
                if item.subscription_id is not None:
                    self.subscriptions.use_service(
                        barbershop_id,
                        item.subscription_id,
                        item.service_id,
                        command_id=command.id,
                        original_price=item.original_price,
                        command_item_id=item.id,
                        commit=False,
                    )

            command.status = "closed"
            command.payment_status = "paid"
            command.payment_method = data.payment_method
            command.discount_amount = data.discount_amount
            command.final_amount = round(command.total_amount - data.discount_amount, 2)
            command.closed_at = datetime.utcnow()
            self.db.commit()
        except HTTPException as e:
            self.db.rollback()
            logger.warning(f"⚠️ Command {command_id} not closed: {e.detail}")
            raise
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"⚠️ Command {command_id} redemption recorded concurrently")
            raise HTTPException(status_code=409, detail="Command checkout already in progress")
        self.db.refresh(command)

        invalidate_commission_cache(self.cache, barbershop_id)
        logger.info(f"✅ Command {command.id} closed: {command.final_amount} via {command.payment_method}")
        return command

    def cancel_command(self, barbershop_id: int, command_id: int) -> Command:
        command = self._get_open_command(barbershop_id, command_id)
        command.status = "cancelled"
        self.db.commit()
        self.db.refresh(command)
        logger.info(f"🗑️ Command {command.id} cancelled")
        return command
