"""Shared fixtures: an in-memory SQLite database and a small studio to work with."""

import hashlib
import hmac
import time
from datetime import timedelta
from decimal import Decimal
from fnmatch import fnmatch

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from yogaswiss.cache import cache
from yogaswiss.models import Base
from yogaswiss.models.user import User
from yogaswiss.schemas.classes import ClassTemplateCreate, OccurrenceCreate
from yogaswiss.schemas.customer import CustomerCreate
from yogaswiss.schemas.organization import OrganizationCreate
from yogaswiss.services.class_service import ClassService
from yogaswiss.services.customer_service import CustomerService
from yogaswiss.services.organization_service import OrganizationService
from yogaswiss.utils.clock import utcnow

STUDIO_IBAN = "CH9300762011623852957"
STUDIO_QR_IBAN = "CH4431999123000889012"


def stripe_signature_header(payload: bytes, secret: str, timestamp=None) -> str:
    """The ``Stripe-Signature`` value Stripe sends along with ``payload``."""
    timestamp = int(timestamp if timestamp is not None else time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeStripe:
    """Records calls instead of talking to Stripe."""

    configured = True

    def __init__(self, intent_status: str = "requires_payment_method"):
        self.intent_status = intent_status
        self.intents = []
        self.refunds = []

    async def create_payment_intent(self, amount_cents, currency, metadata=None, idempotency_key=None):
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents.append({"id": intent_id, "amount": amount_cents, "currency": currency, "metadata": metadata})
        return {"id": intent_id, "client_secret": f"{intent_id}_secret", "status": self.intent_status}

    async def create_refund(self, payment_intent_id, amount_cents, idempotency_key=None):
        refund_id = f"re_test_{len(self.refunds) + 1}"
        self.refunds.append({"id": refund_id, "payment_intent": payment_intent_id, "amount": amount_cents})
        return {"id": refund_id, "status": "succeeded"}


class InMemoryRedis:
    """Just enough of redis.asyncio.Redis for the cache wrapper."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value):
        self.store[key] = value.encode("utf-8")

    async def setex(self, key, ttl, value):
        self.ttls[key] = ttl
        await self.set(key, value)

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    async def scan_iter(self, match=None):
        for key in list(self.store):
            if match is None or fnmatch(key, match):
                yield key


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def owner(db):
    user = User(email="owner@studio-zen.ch", first_name="Anna", last_name="Meier", password_hash="not-used")
    db.add(user)
    await db.flush()
    return user


@pytest.fixture
async def org(db, owner):
    org, _ = await OrganizationService(db).create_organization(
        owner,
        OrganizationCreate(
            slug="zen-zurich",
            name="Zen Studio Zürich",
            vat_rate=Decimal("8.1"),
            cancellation_window_hours=2,
            iban=STUDIO_IBAN,
            street="Bahnhofstrasse",
            building_number="10",
            postal_code="8001",
            city="Zürich",
        ),
    )
    return org


@pytest.fixture
async def customer(db, org):
    return await CustomerService(db).create_customer(
        org.id,
        CustomerCreate(
            first_name="Lena",
            last_name="Keller",
            email="lena@kunde.ch",
            street="Seestrasse",
            building_number="5",
            postal_code="8002",
            city="Zürich",
        ),
    )


@pytest.fixture
async def other_customer(db, org):
    return await CustomerService(db).create_customer(
        org.id,
        CustomerCreate(first_name="Marco", last_name="Rossi", email="marco@kunde.ch"),
    )


@pytest.fixture
async def template(db, org):
    return await ClassService(db).create_template(
        org.id,
        ClassTemplateCreate(
            name="Vinyasa Flow",
            category="vinyasa",
            duration_minutes=60,
            default_capacity=10,
            price_cents=2500,
            credits_required=1,
        ),
    )


@pytest.fixture
def schedule(db, org, template):
    """Factory for future classes built from the default template."""

    async def _schedule(days_ahead: int = 3, capacity: int = None, price_cents: int = None, **kwargs):
        return await ClassService(db).schedule_occurrence(
            org.id,
            OccurrenceCreate(
                template_id=template.id,
                start_time=utcnow() + timedelta(days=days_ahead),
                capacity=capacity,
                price_cents=price_cents,
                **kwargs,
            ),
        )

    return _schedule


@pytest.fixture
def fake_stripe():
    return FakeStripe()


@pytest.fixture
def redis_cache(monkeypatch):
    """Backs the shared cache with an in-memory Redis for one test."""
    client = InMemoryRedis()
    monkeypatch.setattr(cache, "client", client)
    return client
