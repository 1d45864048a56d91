from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from household_ledger.app import create_app, wire_services
from household_ledger.integration.plaid import SyncPage

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}

CSV_TEXT = "Date,Description,Amount\n03/01/2024,Grocery Store,42.10\n03/02/2024,Coffee,4.50\n03/03/2024,Broken,abc\n"


@pytest.fixture
def plaid() -> MagicMock:
    mock = MagicMock()
    mock.configured = True
    mock.link_token_create = AsyncMock(return_value="link-sandbox-1")
    mock.item_public_token_exchange = AsyncMock(return_value=("access-sandbox-1", "item-1"))
    mock.accounts_get = AsyncMock(
        return_value=[{"account_id": "pa-1", "name": "Checking", "type": "depository", "balances": {"current": 10}}]
    )
    mock.transactions_sync = AsyncMock(
        return_value=SyncPage(
            added=[{"transaction_id": "p1", "account_id": "pa-1", "amount": 12.5, "date": "2024-03-04",
                    "name": "Lunch", "personal_finance_category": {"primary": "FOOD_AND_DRINK"}}],
            next_cursor="c1",
            has_more=False,
        )
    )
    return mock


@pytest.fixture
def categorizer() -> MagicMock:
    mock = MagicMock()
    mock.llm_enabled = False
    return mock


@pytest.fixture
def extractor() -> MagicMock:
    mock = MagicMock()
    mock.client = object()
    mock.extract.return_value = {
        "merchant": "Corner Market",
        "line_items": [
            {"name": "Apples", "amount": 20, "category": "Groceries", "confidence": 0.9},
            {"name": "Soap", "amount": 22.1, "category": "Shopping", "confidence": 0.8},
        ],
    }
    return mock


@pytest.fixture
def app(ledger, plaid, categorizer, extractor, category_map, tmp_path) -> FastAPI:
    application = create_app()
    wire_services(
        application,
        ledger,
        plaid=plaid,
        categorizer=categorizer,
        extractor=extractor,
        category_map=category_map,
        storage_dir=str(tmp_path),
    )
    return application


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    yield TestClient(app)


@pytest.fixture
def household_id(client) -> str:
    response = client.post("/api/households", json={"name": "Home"}, headers=ALICE)
    assert response.status_code == 201
    return response.json()["id"]


def _category_id(client, household_id, name) -> str:
    categories = client.get(f"/api/households/{household_id}/categories", headers=ALICE).json()
    return next(category["id"] for category in categories if category["name"] == name)


def _create(client, household_id, name, amount, **fields) -> dict:
    body = {"date": "2024-03-01", "name": name, "amount": amount, **fields}
    response = client.post(f"/api/households/{household_id}/transactions", json=body, headers=ALICE)
    assert response.status_code == 201, response.text
    return response.json()


def test_identity_and_membership_are_enforced(client, household_id):
    assert client.get(f"/api/households/{household_id}").status_code == 401
    assert client.get(f"/api/households/{household_id}", headers=BOB).status_code == 403
    assert client.get("/api/households/missing", headers=ALICE).status_code == 404

    response = client.get(f"/api/households/{household_id}", headers=ALICE)
    assert response.status_code == 200
    assert response.json()["name"] == "Home"


def test_members_and_admin_actions(client, household_id):
    response = client.post(
        f"/api/households/{household_id}/members", json={"user_id": "bob", "role": "member"}, headers=ALICE
    )
    assert response.status_code == 201
    assert client.get(f"/api/households/{household_id}", headers=BOB).status_code == 200
    # Plain members cannot link banks or change settings
    assert client.post(f"/api/households/{household_id}/connections/link-token", headers=BOB).status_code == 403
    response = client.put(
        f"/api/households/{household_id}/settings", json={"auto_classify_imports": True}, headers=BOB
    )
    assert response.status_code == 403


def test_default_categories_include_transfer(client, household_id):
    categories = client.get(f"/api/households/{household_id}/categories", headers=ALICE).json()
    names = {category["name"]: category for category in categories}
    assert names["Transfer"]["is_system"] is True
    assert {"Food & Dining", "Groceries", "Other"} <= set(names)


def test_manual_transaction_crud(client, household_id, categorizer):
    groceries = _category_id(client, household_id, "Groceries")
    created = _create(client, household_id, "Farmers Market", "23.40", category_id=groceries)
    assert created["classified_by"] == "user"
    assert created["source_channel"] == "manual"
    categorizer.learn.assert_called_once_with(household_id, "Farmers Market", "Groceries")

    url = f"/api/households/{household_id}/transactions/{created['id']}"
    response = client.patch(url, json={"notes": "weekly"}, headers=ALICE)
    assert response.json()["notes"] == "weekly"
    assert client.patch(url, json={"name": None}, headers=ALICE).status_code == 422

    listed = client.get(f"/api/households/{household_id}/transactions?search=farmers", headers=ALICE).json()
    assert [row["id"] for row in listed] == [created["id"]]

    assert client.delete(url, headers=ALICE).status_code == 204
    assert client.get(url, headers=ALICE).status_code == 404


def test_set_category_and_bulk(client, household_id):
    first = _create(client, household_id, "A", "1.00")
    second = _create(client, household_id, "B", "2.00")
    shopping = _category_id(client, household_id, "Shopping")

    response = client.put(
        f"/api/households/{household_id}/transactions/{first['id']}/category",
        json={"category_id": shopping},
        headers=ALICE,
    )
    assert response.json()["category_id"] == shopping

    response = client.post(
        f"/api/households/{household_id}/transactions/bulk/delete",
        json={"transaction_ids": [first["id"], second["id"], "missing"]},
        headers=ALICE,
    )
    assert response.json() == {"requested": 3, "succeeded": 2, "failed": 1}


def test_split_rejection_is_a_conflict(client, household_id):
    parent = _create(client, household_id, "Big Box", "100.00")
    url = f"/api/households/{household_id}/transactions/{parent['id']}/split"

    response = client.post(url, json={"lines": [{"amount": "50.00"}, {"amount": "49.00"}]}, headers=ALICE)
    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "unbalanced"

    response = client.post(url, json={"lines": [{"amount": "50.00"}, {"amount": "50.00"}]}, headers=ALICE)
    assert response.status_code == 201
    body = response.json()
    assert body["parent"]["is_split"] is True
    assert len(body["children"]) == 2

    children = client.get(
        f"/api/households/{household_id}/transactions/{parent['id']}/children", headers=ALICE
    ).json()
    assert len(children) == 2
    assert client.delete(url, headers=ALICE).json()["is_split"] is False


def test_transfer_link_and_reports(client, household_id):
    checking = client.post(f"/api/households/{household_id}/accounts", json={"name": "Checking"}, headers=ALICE)
    savings = client.post(f"/api/households/{household_id}/accounts", json={"name": "Savings"}, headers=ALICE)
    out = _create(client, household_id, "To savings", "300.00", account_id=checking.json()["id"])
    into = _create(client, household_id, "From checking", "-300.00", account_id=savings.json()["id"])
    _create(client, household_id, "Salary", "-1000.00", account_id=checking.json()["id"])

    base = f"/api/households/{household_id}/transactions/{out['id']}"
    candidates = client.get(f"{base}/transfer-candidates", headers=ALICE).json()
    assert [row["id"] for row in candidates] == [into["id"]]

    linked = client.post(f"{base}/transfer", json={"partner_id": into["id"]}, headers=ALICE).json()
    assert linked["transaction"]["is_transfer"] is True
    assert linked["partner"]["transfer_pair_id"] == out["id"]

    flow = client.get(
        f"/api/households/{household_id}/reports/cash-flow?start_date=2024-03-01&end_date=2024-03-31",
        headers=ALICE,
    ).json()
    assert float(flow["income"]) == 1000.0
    assert float(flow["expenses"]) == 0

    unlinked = client.delete(f"{base}/transfer", headers=ALICE).json()
    assert unlinked["transaction"]["is_transfer"] is False
    response = client.delete(f"{base}/transfer", headers=ALICE)
    assert response.status_code == 409
    assert response.json()["detail"]["reason"] == "not_linked"


def test_csv_preview_and_idempotent_import(client, household_id):
    files = {"file": ("bank.csv", CSV_TEXT, "text/csv")}
    preview = client.post(f"/api/households/{household_id}/imports/csv/preview", files=files, headers=ALICE).json()
    assert preview["suggested_mapping"] == {"date": "Date", "name": "Description", "amount": "Amount"}
    assert len(preview["preview"]) == 3

    first = client.post(f"/api/households/{household_id}/imports/csv", files=files, headers=ALICE).json()
    assert (first["added"], first["skipped"]) == (2, 1)
    assert first["row_errors"][0]["row"] == 3

    second = client.post(f"/api/households/{household_id}/imports/csv", files=files, headers=ALICE).json()
    assert second["added"] == 0


def test_csv_with_unknown_columns_needs_mapping(client, household_id):
    files = {"file": ("odd.csv", "when,what,howmuch\n2024-03-01,Tea,3\n", "text/csv")}
    response = client.post(f"/api/households/{household_id}/imports/csv", files=files, headers=ALICE)
    assert response.status_code == 422

    response = client.post(
        f"/api/households/{household_id}/imports/csv",
        files=files,
        data={"date_column": "when", "name_column": "what", "amount_column": "howmuch"},
        headers=ALICE,
    )
    assert response.status_code == 200
    assert response.json()["added"] == 1


def test_ofx_import(client, household_id):
    ofx = "<OFX><STMTTRN><DTPOSTED>20240301<TRNAMT>-12.00<FITID>F1<NAME>Cinema</STMTTRN></OFX>"
    files = {"file": ("statement.ofx", ofx, "application/x-ofx")}
    body = client.post(f"/api/households/{household_id}/imports/ofx", files=files, headers=ALICE).json()
    assert body["added"] == 1
    rows = client.get(f"/api/households/{household_id}/transactions", headers=ALICE).json()
    assert rows[0]["import_key"] == "ofx:F1"
    assert float(rows[0]["amount"]) == 12.0


def test_classify_without_llm_is_unavailable(client, household_id):
    response = client.post(f"/api/households/{household_id}/classify", headers=ALICE)
    assert response.status_code == 503


def test_connection_link_and_sync(client, household_id):
    token = client.post(f"/api/households/{household_id}/connections/link-token", headers=ALICE).json()
    assert token == {"link_token": "link-sandbox-1"}

    response = client.post(
        f"/api/households/{household_id}/connections/exchange",
        json={"public_token": "public-1", "institution_name": "Test Bank"},
        headers=ALICE,
    )
    assert response.status_code == 201
    connection = response.json()["connection"]
    assert response.json()["accounts"] == 1
    assert connection["cursor"] is None

    summary = client.post(
        f"/api/households/{household_id}/connections/{connection['id']}/sync", headers=ALICE
    ).json()
    assert summary["added"] == 1
    assert summary["status"] == "idle"

    listed = client.get(f"/api/households/{household_id}/connections", headers=ALICE).json()
    assert listed[0]["cursor"] == "c1"


def test_receipt_upload_processes_in_background(client, household_id):
    parent = _create(client, household_id, "Corner Market", "42.10")
    files = {"file": ("receipt.png", b"\x89PNG fake", "image/png")}
    response = client.post(f"/api/households/{household_id}/receipts", files=files, headers=ALICE)
    assert response.status_code == 202
    scan_id = response.json()["id"]

    scan = client.get(f"/api/households/{household_id}/receipts/{scan_id}", headers=ALICE).json()
    assert scan["status"] == "completed"
    assert len(scan["line_items"]) == 2

    response = client.post(
        f"/api/households/{household_id}/receipts/{scan_id}/apply",
        json={"transaction_id": parent["id"]},
        headers=ALICE,
    )
    assert response.status_code == 200
    assert [child["classified_by"] for child in response.json()] == ["ai", "ai"]


def test_receipt_with_unsupported_type_is_rejected(client, household_id):
    files = {"file": ("notes.txt", b"hello", "text/plain")}
    response = client.post(f"/api/households/{household_id}/receipts", files=files, headers=ALICE)
    assert response.status_code == 422


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
