from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from reseller_engine.api.v1.endpoints.deps import get_engine
from reseller_engine.core.config import settings
from reseller_engine.db.models.reseller_config import SuspensionReason
from reseller_engine.db.session import get_db
from reseller_engine.main import app

from tests.conftest import GIB

HEADERS = {"X-Admin-API-Key": "test-admin-key"}


@pytest.fixture
def client(session_factory, engine, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "test-admin-key")

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_requires_admin_key(client):
    assert client.post("/api/v1/admin/engine/usage-sync").status_code == 401
    assert client.post("/api/v1/admin/engine/usage-sync", headers={"X-Admin-API-Key": "wrong"}).status_code == 401


def test_usage_sync_endpoint(client, panels, make_panel, make_reseller, make_config):
    panel = make_panel()
    reseller = make_reseller(panels=[panel])
    make_config(reseller, panel, "u1")
    panels.usage["u1"] = 11 * GIB

    response = client.post("/api/v1/admin/engine/usage-sync", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["suspended"] == 1
    assert body["enforcement"][0]["reason"] == "quota_exhausted"


def test_single_reseller_dry_run(client, make_panel, make_reseller, make_config):
    panel = make_panel()
    reseller = make_reseller(type="wallet", panels=[panel], wallet_balance=Decimal("5000"))
    make_config(reseller, panel, "u1", usage_bytes=GIB)

    response = client.post(f"/api/v1/admin/engine/resellers/{reseller.id}/wallet-charge?dry_run=true", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "dry_run"
    assert Decimal(body["cost"]) == Decimal("1000")


def test_wallet_diagnosis_not_found(client):
    response = client.get("/api/v1/admin/engine/resellers/404/wallet-diagnosis", headers=HEADERS)
    assert response.status_code == 404


def test_reenable_rejects_unknown_reason(client):
    response = client.post("/api/v1/admin/engine/reenable?reason=plan", headers=HEADERS)
    assert response.status_code == 400


def test_top_up_reactivates(client, make_panel, make_reseller, make_config):
    panel = make_panel()
    reseller = make_reseller(type="wallet", panels=[panel], status="suspended_wallet", wallet_balance=Decimal("-1200"))
    make_config(reseller, panel, "u1", status="disabled", suspension_flags=int(SuspensionReason.WALLET))

    response = client.post(
        f"/api/v1/admin/wallet/resellers/{reseller.id}/top-up",
        json={"amount": "1700"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["wallet_balance"]) == Decimal("500")
    assert body["reseller_status"] == "active"
    assert body["reactivation_status"] == "reactivated"
    assert body["enabled_configs"] == 1


def test_top_up_rejects_non_wallet_reseller(client, make_reseller):
    reseller = make_reseller()

    response = client.post(f"/api/v1/admin/wallet/resellers/{reseller.id}/top-up", json={"amount": "10"}, headers=HEADERS)

    assert response.status_code == 400
