"""End-to-end tests through the HTTP API."""

from datetime import timedelta
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import FakeStripe
from yogaswiss.database import get_db
from yogaswiss.main import app
from yogaswiss.services.payment_providers import TwintSandbox
from yogaswiss.utils.auth import create_access_token
from yogaswiss.utils.clock import utcnow
from yogaswiss.utils.dependencies import get_stripe_client, get_twint_sandbox


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_client] = lambda: FakeStripe()
    app.dependency_overrides[get_twint_sandbox] = lambda: TwintSandbox()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def studio(client):
    """A registered owner with their own studio; returns the request headers."""
    response = await client.post(
        "/api/v1/auth/register",
        json={"email": "owner@studio-zen.ch", "password": "namaste-123", "first_name": "Anna", "last_name": "Meier"},
    )
    assert response.status_code == 201
    token = response.json()["access_token"]
    auth = {"Authorization": f"Bearer {token}"}

    response = await client.post("/api/v1/orgs", json={"slug": "zen-zurich", "name": "Zen Studio Zürich"}, headers=auth)
    assert response.status_code == 201
    org_id = response.json()["organization"]["id"]
    return {**auth, "X-Org-ID": org_id}


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_booking_flow(client, studio):
    response = await client.post(
        "/api/v1/customers",
        json={"first_name": "Lena", "last_name": "Keller", "email": "lena@kunde.ch"},
        headers=studio,
    )
    assert response.status_code == 201
    customer_id = response.json()["id"]

    response = await client.post(
        "/api/v1/classes/templates",
        json={"name": "Vinyasa Flow", "category": "vinyasa", "default_capacity": 1, "price_cents": 2500},
        headers=studio,
    )
    assert response.status_code == 201
    template_id = response.json()["id"]

    start = (utcnow() + timedelta(days=3)).isoformat()
    response = await client.post(
        "/api/v1/classes/occurrences", json={"template_id": template_id, "start_time": start}, headers=studio
    )
    assert response.status_code == 201
    occurrence_id = response.json()["id"]

    booking = {"occurrence_id": occurrence_id, "customer_id": customer_id, "payment_method": "cash"}
    headers = {**studio, "Idempotency-Key": "desk-0001"}
    first = await client.post("/api/v1/registrations", json=booking, headers=headers)
    assert first.status_code == 201
    assert first.json()["status"] == "confirmed"
    assert first.json()["payment_status"] == "pending"

    replay = await client.post("/api/v1/registrations", json=booking, headers=headers)
    assert replay.json()["id"] == first.json()["id"]

    response = await client.get("/api/v1/registrations", params={"occurrence_id": occurrence_id}, headers=studio)
    assert response.json()["total"] == 1


async def test_unknown_resource_uses_the_error_envelope(client, studio):
    response = await client.get(f"/api/v1/customers/{uuid4()}", headers=studio)

    assert response.status_code == 404
    body = response.json()
    assert body["error"]["error_code"] == "NOT_FOUND"
    assert "error_id" in body


async def test_invalid_body_is_rejected(client, studio):
    response = await client.post("/api/v1/customers", json={"first_name": "Lena"}, headers=studio)

    assert response.status_code == 422


async def test_org_header_is_required(client, studio):
    headers = {"Authorization": studio["Authorization"]}

    response = await client.get("/api/v1/customers", headers=headers)

    assert response.status_code == 422
    assert response.json()["error"]["details"]["field_errors"] == {"X-Org-ID": ["missing"]}


async def test_foreign_org_is_forbidden(client, studio):
    headers = {**studio, "X-Org-ID": str(uuid4())}

    response = await client.get("/api/v1/customers", headers=headers)

    assert response.status_code == 403


async def test_missing_token(client):
    response = await client.get("/api/v1/auth/me")

    assert response.status_code == 401
    assert response.json()["error"]["error_code"] == "UNAUTHORIZED"


async def test_token_with_a_malformed_subject(client):
    token = create_access_token(data={"sub": "not-a-uuid"})

    response = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["error"]["error_code"] == "UNAUTHORIZED"
