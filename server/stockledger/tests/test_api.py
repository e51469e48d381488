from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stockledger.auth import create_access_token
from stockledger.db import Base, get_db
from stockledger.main import app
from stockledger.tests.factories import create_location, create_product


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestingSessionLocal
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def ids(session_factory):
    with session_factory() as db:
        location = create_location(db, "A")
        product = create_product(db, reorder_point=Decimal("20"), standard_cost=Decimal("2.50"))
        db.commit()
        return {"location_id": location.id, "product_id": product.id}


@pytest.fixture()
def client(session_factory):
    return TestClient(app)


def movement_payload(ids, movement_type, qty, location_key="to_location_id"):
    return {
        "type": movement_type,
        "lines": [
            {
                "product_id": ids["product_id"],
                location_key: ids["location_id"],
                "qty": qty,
            }
        ],
    }


def receive(client, ids, qty="10"):
    created = client.post("/api/movements", json=movement_payload(ids, "RECEIVE", qty))
    assert created.status_code == 201
    posted = client.post(f"/api/movements/{created.json()['id']}/post")
    assert posted.status_code == 200
    return posted.json()


def test_create_and_post_movement_updates_balances(client, ids):
    created = client.post("/api/movements", json=movement_payload(ids, "RECEIVE", "10"))

    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "DRAFT"
    assert body["doc_number"].startswith("MV")
    assert body["allowed_actions"] == ["post", "cancel"]

    posted = client.post(f"/api/movements/{body['id']}/post")
    assert posted.status_code == 200
    assert posted.json()["status"] == "POSTED"
    assert posted.json()["allowed_actions"] == []

    balances = client.get("/api/inventory/balances").json()
    assert balances["total"] == 1
    assert Decimal(balances["rows"][0]["qty_on_hand"]) == Decimal("10")


def test_low_stock_endpoint_reports_shortage(client, ids):
    receive(client, ids, "10")

    response = client.get("/api/inventory/low-stock")

    assert response.status_code == 200
    rows = response.json()["rows"]
    assert [row["sku"] for row in rows] == ["WID-1"]
    assert Decimal(rows[0]["shortage"]) == Decimal("10")


def test_insufficient_stock_is_a_conflict_and_nothing_changes(client, ids):
    receive(client, ids, "3")
    issue = client.post("/api/movements", json=movement_payload(ids, "ISSUE", "5", "from_location_id"))

    response = client.post(f"/api/movements/{issue.json()['id']}/post")

    assert response.status_code == 409
    assert response.headers["X-Error-Code"] == "insufficient_stock"
    assert client.get(f"/api/movements/{issue.json()['id']}").json()["status"] == "DRAFT"
    balances = client.get("/api/inventory/balances").json()
    assert Decimal(balances["rows"][0]["qty_on_hand"]) == Decimal("3")


def test_transfer_without_source_is_rejected(client, ids):
    payload = movement_payload(ids, "TRANSFER", "1")

    response = client.post("/api/movements", json=payload)

    assert response.status_code == 400
    assert response.headers["X-Error-Code"] == "validation"


def test_missing_documents_are_404(client):
    response = client.get("/api/movements/999")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_reports_endpoints(client, ids):
    receive(client, ids, "4")
    now = datetime.utcnow()

    summary = client.get("/api/reports/stock-summary").json()
    assert summary["sku_count"] == 1
    assert Decimal(summary["total_value"]) == Decimal("10.00")

    snapshot = client.get(f"/api/reports/month-end/{now.year}/{now.month}")
    assert snapshot.status_code == 200
    assert [row["sku"] for row in snapshot.json()["rows"]] == ["WID-1"]

    export = client.get(f"/api/reports/month-end/{now.year}/{now.month}/export")
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert f'stock-{now.year}-{now.month:02d}.csv' in export.headers["content-disposition"]
    assert '"WID-1","Widget"' in export.text

    assert client.get("/api/reports/month-end/2026/13").status_code == 400
    assert len(client.get("/api/reports/trend?months=3").json()) == 3


def test_reconcile_endpoint_is_clean_after_postings(client, ids):
    receive(client, ids, "4")

    response = client.get("/api/inventory/reconcile")

    assert response.status_code == 200
    assert response.json() == []


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


@pytest.mark.real_auth
def test_requests_without_token_are_unauthorized(client):
    response = client.get("/api/inventory/balances")

    assert response.status_code == 401


@pytest.mark.real_auth
def test_viewer_can_read_reports_but_not_post(client, ids):
    token = create_access_token({"sub": "9", "role": "VIEWER", "name": "Read Only"})
    headers = {"Authorization": f"Bearer {token}"}

    assert client.get("/api/reports/stock-summary", headers=headers).status_code == 200
    response = client.post("/api/movements", json=movement_payload(ids, "RECEIVE", "1"), headers=headers)
    assert response.status_code == 403
    assert response.headers["X-Error-Code"] == "forbidden"


@pytest.mark.real_auth
def test_token_with_unknown_role_is_rejected(client):
    token = create_access_token({"sub": "4", "role": "OWNER"})

    response = client.get("/api/inventory/balances", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_batch_post_endpoint_reports_per_movement(client, ids):
    draft = client.post("/api/movements", json=movement_payload(ids, "RECEIVE", "5")).json()

    response = client.post("/api/movements/batch/post", json={"ids": [draft["id"], 999]})

    assert response.status_code == 200
    body = response.json()
    assert (body["total"], body["succeeded"], body["failed"]) == (2, 1, 1)
    assert body["results"][0]["doc_number"] == draft["doc_number"]
    assert body["results"][1] == {
        "id": 999,
        "doc_number": "-",
        "success": False,
        "error": "Movement #999 not found.",
        "code": "not_found",
    }
    assert client.get(f"/api/movements/{draft['id']}").json()["status"] == "POSTED"


def test_batch_cancel_endpoint_rejects_empty_batches(client):
    response = client.post("/api/movements/batch/cancel", json={"ids": []})

    assert response.status_code == 400
    assert response.json()["code"] == "validation"


def test_lot_expiry_endpoints(client):
    assert client.get("/api/inventory/lots/expiring", params={"days": 7}).json() == []
    assert client.get("/api/inventory/lots/expired").json() == []
    assert client.get("/api/inventory/lots/expiring", params={"days": -1}).status_code == 422
