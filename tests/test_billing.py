from datetime import date

import pytest
from fastapi import HTTPException

from barbershop import cache as cache_module
from barbershop.cache import Cache
from barbershop.domain.billing.billing_service import BillingService
from barbershop.domain.billing.schemas import BillingStatusUpdate
from barbershop.domain.subscriptions.schemas import SubscriptionCreate
from barbershop.domain.subscriptions.service import SubscriptionService


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def time(self) -> float:
        return self.now


@pytest.fixture
def billing(db_session):
    return BillingService(db_session)


@pytest.fixture
def subscription(db_session, sample_barbershop, sample_client, sample_plan):
    return SubscriptionService(db_session).create_subscription(
        sample_barbershop.id,
        SubscriptionCreate(client_id=sample_client.id, plan_id=sample_plan.id, start_date=date(2026, 3, 1)),
    )


@pytest.mark.commissions
class TestSubscriptionBilling:
    def test_list_includes_names(self, billing, subscription, sample_barbershop):
        records = billing.list_billings(sample_barbershop.id)

        assert len(records) == 1
        assert records[0]["client_name"] == "João Silva"
        assert records[0]["plan_name"] == "Plano Corte"
        assert records[0]["provider_name"] == "Bruno Barbeiro"

    def test_list_filters(self, billing, subscription, sample_barbershop, second_barber):
        assert billing.list_billings(sample_barbershop.id, status="paid") == []
        assert billing.list_billings(sample_barbershop.id, end_date=date(2026, 3, 31)) == []
        assert billing.list_billings(sample_barbershop.id, provider_id=second_barber.id) == []
        assert len(billing.list_billings(sample_barbershop.id, start_date=date(2026, 4, 1))) == 1

    def test_mark_paid_then_pending(self, billing, subscription, sample_barbershop):
        record_id = billing.list_billings(sample_barbershop.id)[0]["id"]

        paid = billing.update_billing_status(
            sample_barbershop.id,
            record_id,
            BillingStatusUpdate(status="paid", payment_method="pix", payment_date=date(2026, 3, 28)),
        )
        assert paid["payment_date"] == date(2026, 3, 28)
        assert paid["payment_method"] == "pix"

        pending = billing.update_billing_status(sample_barbershop.id, record_id, BillingStatusUpdate(status="pending"))
        assert pending["payment_date"] is None
        assert pending["payment_method"] is None

    def test_records_are_tenant_scoped(self, billing, subscription, sample_barbershop, other_barbershop):
        record_id = billing.list_billings(sample_barbershop.id)[0]["id"]
        with pytest.raises(HTTPException) as exc:
            billing.add_notes(other_barbershop.id, record_id, "pago em dinheiro")
        assert exc.value.status_code == 404

    def test_notes(self, billing, subscription, sample_barbershop):
        record_id = billing.list_billings(sample_barbershop.id)[0]["id"]
        assert billing.add_notes(sample_barbershop.id, record_id, "pago em dinheiro")["notes"] == "pago em dinheiro"

    def test_stats(self, db_session, billing, subscription, sample_barbershop, haircut):
        SubscriptionService(db_session).use_service(sample_barbershop.id, subscription.id, haircut.id)

        stats = billing.get_subscription_stats(sample_barbershop.id)

        assert stats == {
            "totalSubscriptions": 1,
            "activeSubscriptions": 1,
            "monthlyRevenue": 100.0,
            "servicesUsed": 1,
            "averageTicket": 100.0,
        }


@pytest.mark.commissions
class TestCache:
    def test_entries_expire_after_ttl(self, monkeypatch):
        clock = FakeClock()
        monkeypatch.setattr(cache_module, "time", clock)
        cache = Cache(default_ttl=300)

        cache.set("report", {"total": 1}, ttl=60)
        clock.now += 59
        assert cache.get("report") == {"total": 1}
        clock.now += 2
        assert cache.get("report") is None

    def test_tag_invalidation_is_scoped(self):
        cache = Cache()
        cache.set("a", 1, tags=["commissions"], scope=1)
        cache.set("b", 2, tags=["commissions"], scope=1)
        cache.set("c", 3, tags=["commissions"], scope=2)

        assert cache.invalidate_tag("commissions", scope=1) == 2
        assert cache.get("a") is None
        assert cache.get("c") == 3

    def test_expired_entries_are_swept_on_write(self, monkeypatch):
        clock = FakeClock()
        monkeypatch.setattr(cache_module, "time", clock)
        cache = Cache()

        cache.set("commissions:march:last_good", {"total": 1}, ttl=10)
        cache.set("commissions:march", {"total": 1}, ttl=10, tags=["commissions"], scope=1)
        clock.now += cache_module.MEMORY_CACHE_CLEANUP_INTERVAL + 1
        cache.set("commissions:april", {"total": 2}, ttl=300)

        assert set(cache._entries) == {"commissions:april"}
        assert cache._tags == {}

    def test_delete(self):
        cache = Cache()
        cache.set("report", [1, 2])
        assert cache.delete("report") is True
        assert cache.get("report") is None
