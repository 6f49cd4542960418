"""
Pytest configuration and shared fixtures for the barbershop API tests.
"""

import os
import time
from datetime import date

# Settings are read at import time, so they must be in place before the app is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_ENABLED"] = "false"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-for-testing-only"
os.environ["EVOLUTION_API_URL"] = "http://evolution.test"
os.environ["EVOLUTION_API_KEY"] = "test-evolution-key"
os.environ["EVOLUTION_WEBHOOK_TOKEN"] = "test-webhook-token"
os.environ["EVOLUTION_WEBHOOK_URL"] = "http://api.test/functions/v1/evolution-webhook"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from barbershop.cache import Cache
from barbershop.database import Base, get_db
from barbershop.domain.whatsapp.service import build_instance_name
from barbershop.main import app
from barbershop.models import Barbershop, Client, Profile, Service
from barbershop.models_subscription import ProviderSubscriptionPlan
from barbershop.models_whatsapp import WhatsAppInstance
from barbershop.rate_limiter import RateLimiter
from barbershop.services.evolution_service import EvolutionAPIService, get_evolution_service

TODAY = date(2026, 3, 10)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def cache():
    return Cache()


@pytest.fixture
def limiter():
    return RateLimiter()


class FakeGateway:
    """Scripted Evolution API: maps (method, path) to a JSON body and records every call."""

    def __init__(self):
        self.routes: dict[tuple[str, str], tuple[int, object]] = {}
        self.calls: list[tuple[str, str]] = []
        self.bodies: list[object] = []

    def on(self, method: str, path: str, body: object = None, status: int = 200):
        self.routes[(method, path)] = (status, body if body is not None else {})
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        self.bodies.append(request.content.decode() if request.content else None)
        status, body = self.routes.get((request.method, request.url.path), (404, {"error": "not found"}))
        return httpx.Response(status, json=body)

    def paths(self) -> list[str]:
        return [f"{method} {path}" for method, path in self.calls]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def evolution(gateway):
    return EvolutionAPIService(
        base_url="http://evolution.test",
        api_key="test-evolution-key",
        transport=httpx.MockTransport(gateway.handler),
    )


@pytest.fixture
def sample_barbershop(db_session):
    barbershop = Barbershop(name="Barbearia Central", slug="barbearia-central", phone="11988887777")
    db_session.add(barbershop)
    db_session.commit()
    return barbershop


@pytest.fixture
def other_barbershop(db_session):
    barbershop = Barbershop(name="Outra Barbearia", slug="outra-barbearia")
    db_session.add(barbershop)
    db_session.commit()
    return barbershop


@pytest.fixture
def sample_admin(db_session, sample_barbershop):
    admin = Profile(
        barbershop_id=sample_barbershop.id,
        auth_user_id="admin-uid",
        full_name="Ana Admin",
        email="admin@example.com",
        role="admin",
    )
    db_session.add(admin)
    db_session.commit()
    return admin


@pytest.fixture
def sample_barber(db_session, sample_barbershop):
    barber = Profile(
        barbershop_id=sample_barbershop.id,
        auth_user_id="barber-uid",
        full_name="Bruno Barbeiro",
        email="bruno@example.com",
        role="barber",
        commission_rate=40.0,
    )
    db_session.add(barber)
    db_session.commit()
    return barber


@pytest.fixture
def second_barber(db_session, sample_barbershop):
    barber = Profile(
        barbershop_id=sample_barbershop.id,
        auth_user_id="carlos-uid",
        full_name="Carlos Navalha",
        email="carlos@example.com",
        role="barber",
        commission_rate=50.0,
    )
    db_session.add(barber)
    db_session.commit()
    return barber


@pytest.fixture
def sample_client(db_session, sample_barbershop):
    client = Client(barbershop_id=sample_barbershop.id, name="João Silva", phone="(11) 99999-8888")
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture
def haircut(db_session, sample_barbershop):
    service = Service(barbershop_id=sample_barbershop.id, name="Corte", price=50.0, duration_minutes=30)
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def beard(db_session, sample_barbershop):
    service = Service(barbershop_id=sample_barbershop.id, name="Barba", price=30.0, duration_minutes=20)
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def sample_plan(db_session, sample_barbershop, sample_barber, haircut):
    """Two haircuts a month for 100.00; beard is not covered."""
    plan = ProviderSubscriptionPlan(
        barbershop_id=sample_barbershop.id,
        provider_id=sample_barber.id,
        name="Plano Corte",
        monthly_price=100.0,
        included_services_count=2,
        commission_percentage=20.0,
        enabled_service_ids=[haircut.id],
    )
    db_session.add(plan)
    db_session.commit()
    return plan


def make_token(sub: str, expires_in: int = 3600) -> str:
    now = int(time.time())
    return jwt.encode(
        {"sub": sub, "aud": "authenticated", "iat": now, "exp": now + expires_in},
        os.environ["SUPABASE_JWT_SECRET"],
        algorithm="HS256",
    )


@pytest.fixture
def admin_headers(sample_admin):
    return {"Authorization": f"Bearer {make_token(sample_admin.auth_user_id)}"}


@pytest.fixture
def barber_headers(sample_barber):
    return {"Authorization": f"Bearer {make_token(sample_barber.auth_user_id)}"}


@pytest.fixture
def client(db_session, evolution):
    """TestClient bound to the per-test database and the scripted gateway."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_evolution_service] = lambda: evolution
    with TestClient(app) as test_client:
        app.state.cache = Cache()
        app.state.rate_limiter = RateLimiter()
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def connected_instance(db_session, sample_barbershop):
    instance = WhatsAppInstance(
        barbershop_id=sample_barbershop.id,
        evolution_instance_name=build_instance_name(sample_barbershop.id, sample_barbershop.slug),
        instance_token="instance-token",
        status="connected",
        phone_number="5511988887777",
    )
    db_session.add(instance)
    db_session.commit()
    return instance


def send_text_path(instance) -> str:
    return f"/message/sendText/{instance.evolution_instance_name}"
