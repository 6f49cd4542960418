from datetime import date, timedelta

import pytest
from fastapi import HTTPException

from barbershop.domain.billing.commission_service import CommissionService
from barbershop.domain.commands.schemas import CommandClose, CommandCreate, CommandItemCreate
from barbershop.domain.commands.service import CommandService, calculate_item_amounts
from barbershop.domain.subscriptions.schemas import SubscriptionCreate
from barbershop.domain.subscriptions.service import SubscriptionService
from barbershop.models_subscription import SubscriptionUsage


@pytest.fixture
def service(db_session, cache):
    return CommandService(db_session, cache)


@pytest.fixture
def open_command(service, sample_barbershop, sample_barber, sample_client):
    return service.open_command(
        sample_barbershop.id, CommandCreate(client_id=sample_client.id, barber_id=sample_barber.id)
    )


@pytest.fixture
def subscription(db_session, sample_barbershop, sample_client, sample_plan):
    return SubscriptionService(db_session).create_subscription(
        sample_barbershop.id, SubscriptionCreate(client_id=sample_client.id, plan_id=sample_plan.id)
    )


@pytest.mark.commands
class TestCommandItems:
    def test_item_amounts(self):
        assert calculate_item_amounts(2, 35.5, 40) == (71.0, 28.4)

    def test_service_item_defaults_from_catalog_and_barber(self, service, open_command, sample_barbershop, haircut):
        command = service.add_item(sample_barbershop.id, open_command.id, CommandItemCreate(service_id=haircut.id))

        item = command.items[0]
        assert item.name == "Corte"
        assert item.unit_price == 50.0
        assert item.commission_rate == 40.0
        assert item.commission_amount == 20.0
        assert command.total_amount == 50.0

    def test_product_item_needs_a_name(self, service, open_command, sample_barbershop):
        with pytest.raises(HTTPException) as exc:
            service.add_item(
                sample_barbershop.id, open_command.id, CommandItemCreate(item_type="product", unit_price=25)
            )
        assert exc.value.status_code == 400

    def test_remove_item_recalculates_total(self, service, open_command, sample_barbershop, haircut, beard):
        service.add_item(sample_barbershop.id, open_command.id, CommandItemCreate(service_id=haircut.id))
        command = service.add_item(sample_barbershop.id, open_command.id, CommandItemCreate(service_id=beard.id))
        assert command.total_amount == 80.0

        beard_item = next(i for i in command.items if i.service_id == beard.id)
        command = service.remove_item(sample_barbershop.id, open_command.id, beard_item.id)
        assert command.total_amount == 50.0

    def test_subscription_item_is_free(self, service, open_command, subscription, sample_barbershop, haircut):
        command = service.add_item(
            sample_barbershop.id, open_command.id, CommandItemCreate(service_id=haircut.id, use_subscription=True)
        )

        item = command.items[0]
        assert item.unit_price == 0.0
        assert item.total_price == 0.0
        assert item.commission_amount == 0.0
        assert item.original_price == 50.0
        assert item.subscription_id == subscription.id

    def test_subscription_item_for_uncovered_service(
        self, service, open_command, subscription, sample_barbershop, beard
    ):
        with pytest.raises(HTTPException) as exc:
            service.add_item(
                sample_barbershop.id, open_command.id, CommandItemCreate(service_id=beard.id, use_subscription=True)
            )
        assert exc.value.status_code == 400
        assert exc.value.detail == "Service not included in subscription plan"

    def test_subscription_item_is_one_unit_per_line(
        self, service, open_command, subscription, sample_barbershop, haircut
    ):
        with pytest.raises(HTTPException) as exc:
            service.add_item(
                sample_barbershop.id,
                open_command.id,
                CommandItemCreate(service_id=haircut.id, quantity=2, use_subscription=True),
            )
        assert exc.value.status_code == 400
        assert open_command.items == []

    def test_covered_lines_cannot_exceed_remaining_services(
        self, service, open_command, subscription, sample_barbershop, haircut
    ):
        covered = CommandItemCreate(service_id=haircut.id, use_subscription=True)
        service.add_item(sample_barbershop.id, open_command.id, covered)
        service.add_item(sample_barbershop.id, open_command.id, covered)

        with pytest.raises(HTTPException) as exc:
            service.add_item(sample_barbershop.id, open_command.id, covered)
        assert exc.value.status_code == 400
        assert exc.value.detail == "No remaining services in this subscription"

    def test_other_tenant_cannot_touch_command(self, service, open_command, other_barbershop, haircut):
        with pytest.raises(HTTPException) as exc:
            service.add_item(other_barbershop.id, open_command.id, CommandItemCreate(name="Pomada", unit_price=10))
        assert exc.value.status_code == 404


@pytest.mark.commands
class TestCloseCommand:
    def test_close_applies_discount(self, service, open_command, sample_barbershop, haircut, beard):
        service.add_item(sample_barbershop.id, open_command.id, CommandItemCreate(service_id=haircut.id))
        service.add_item(sample_barbershop.id, open_command.id, CommandItemCreate(service_id=beard.id))

        command = service.close_command(
            sample_barbershop.id, open_command.id, CommandClose(payment_method="pix", discount_amount=10)
        )

        assert command.status == "closed"
        assert command.payment_status == "paid"
        assert command.final_amount == 70.0
        assert command.closed_at is not None

    def test_discount_above_total_is_rejected(self, service, open_command, sample_barbershop, haircut):
        service.add_item(sample_barbershop.id, open_command.id, CommandItemCreate(service_id=haircut.id))
        with pytest.raises(HTTPException) as exc:
            service.close_command(
                sample_barbershop.id, open_command.id, CommandClose(payment_method="cash", discount_amount=60)
            )
        assert exc.value.status_code == 400

    def test_unknown_payment_method(self):
        with pytest.raises(ValueError):
            CommandClose(payment_method="barter")

    def test_closed_command_is_read_only(self, service, open_command, sample_barbershop, haircut):
        service.close_command(sample_barbershop.id, open_command.id, CommandClose(payment_method="card"))
        with pytest.raises(HTTPException) as exc:
            service.add_item(sample_barbershop.id, open_command.id, CommandItemCreate(service_id=haircut.id))
        assert exc.value.status_code == 400

    def test_close_redeems_subscription_once(
        self, db_session, service, open_command, subscription, sample_barbershop, haircut
    ):
        service.add_item(
            sample_barbershop.id, open_command.id, CommandItemCreate(service_id=haircut.id, use_subscription=True)
        )
        service.close_command(sample_barbershop.id, open_command.id, CommandClose(payment_method="pix"))

        db_session.refresh(subscription)
        assert subscription.remaining_services == 1
        usage = db_session.query(SubscriptionUsage).one()
        assert usage.command_id == open_command.id
        assert usage.original_price == 50.0

    def test_close_redeems_every_covered_line(
        self, db_session, service, open_command, subscription, sample_barbershop, haircut
    ):
        covered = CommandItemCreate(service_id=haircut.id, use_subscription=True)
        service.add_item(sample_barbershop.id, open_command.id, covered)
        command = service.add_item(sample_barbershop.id, open_command.id, covered)
        assert command.total_amount == 0.0

        service.close_command(sample_barbershop.id, open_command.id, CommandClose(payment_method="pix"))

        db_session.refresh(subscription)
        assert subscription.remaining_services == 0
        usages = db_session.query(SubscriptionUsage).all()
        assert sorted(u.command_item_id for u in usages) == sorted(i.id for i in command.items)

    def test_failed_redemption_rolls_back_the_whole_close(
        self, db_session, service, open_command, subscription, sample_barbershop, haircut
    ):
        covered = CommandItemCreate(service_id=haircut.id, use_subscription=True)
        service.add_item(sample_barbershop.id, open_command.id, covered)
        service.add_item(sample_barbershop.id, open_command.id, covered)
        # Balance spent elsewhere while the command was open
        SubscriptionService(db_session).use_service(sample_barbershop.id, subscription.id, haircut.id)

        with pytest.raises(HTTPException) as exc:
            service.close_command(sample_barbershop.id, open_command.id, CommandClose(payment_method="pix"))
        assert exc.value.status_code == 400

        db_session.refresh(subscription)
        assert subscription.remaining_services == 1
        assert db_session.query(SubscriptionUsage).filter_by(command_id=open_command.id).count() == 0
        assert service.get_command(sample_barbershop.id, open_command.id).status == "open"

    def test_close_invalidates_commission_report(
        self, db_session, cache, limiter, service, open_command, sample_barbershop, haircut
    ):
        start, end = date.today() - timedelta(days=1), date.today() + timedelta(days=1)
        commissions = CommissionService(db_session, cache, limiter)
        before = commissions.get_report(sample_barbershop.id, start, end)
        assert before["stats"]["totalSales"] == 0

        service.add_item(sample_barbershop.id, open_command.id, CommandItemCreate(service_id=haircut.id))
        service.close_command(sample_barbershop.id, open_command.id, CommandClose(payment_method="pix"))

        after = commissions.get_report(sample_barbershop.id, start, end)
        assert after["fromCache"] is False
        assert after["stats"]["totalSales"] == 1
        assert after["stats"]["totalCommissions"] == 20.0

    def test_cancel(self, service, open_command, sample_barbershop):
        command = service.cancel_command(sample_barbershop.id, open_command.id)
        assert command.status == "cancelled"
