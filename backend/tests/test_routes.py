"""
HTTP API tests.

Verifies:
- Every response is a {success, message, ...} envelope
- Service errors map to their HTTP status and error code
- Unexpected failures return 500 and land in the error log
- Health check reports database status
"""

from shopledger.extensions import db
from shopledger.models import ErrorLog
from shopledger.services import sales_service


ACTOR = {"X-Actor": "cashier-1"}


def _create_item(client, **overrides):
    body = {
        "name": "Cement 50kg",
        "cost_price_cents": 50,
        "selling_price_cents": 100,
        "reorder_level": 2,
        "opening_quantity": 10,
    }
    body.update(overrides)
    resp = client.post("/api/inventory/items", json=body, headers=ACTOR)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["item"]


def _create_customer(client, name="Amina Otieno"):
    resp = client.post("/api/customers", json={"name": name}, headers=ACTOR)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["customer"]


# =============================================================================
# SYSTEM
# =============================================================================


def test_health(client, db_session):
    resp = client.get("/health")
    body = resp.get_json()

    assert resp.status_code == 200
    assert body["success"] is True
    assert body["checks"]["database"]["status"] == "healthy"


# =============================================================================
# SALES
# =============================================================================


class TestSalesApi:

    def test_create_sale(self, client, db_session):
        item = _create_item(client)

        resp = client.post("/api/sales", json={
            "payment_mode": "Cash",
            "lines": [{"item_id": item["id"], "quantity": 2}],
        }, headers=ACTOR)
        body = resp.get_json()

        assert resp.status_code == 201
        assert body["success"] is True
        assert body["transaction_id"] == "110001"
        assert body["grand_total_cents"] == 200
        assert body["sale"]["sold_by"] == "cashier-1"

    def test_walk_in_credit_is_409(self, client, db_session):
        item = _create_item(client)

        resp = client.post("/api/sales", json={
            "customer_id": "WALK-IN",
            "payment_mode": "Credit",
            "lines": [{"item_id": item["id"], "quantity": 2}],
        })
        body = resp.get_json()

        assert resp.status_code == 409
        assert body["success"] is False
        assert body["error"] == "CREDIT_NOT_ALLOWED_FOR_WALK_IN"
        assert client.get(f"/api/inventory/items/{item['id']}").get_json()["item"]["current_qty"] == 10

    def test_validation_error_is_400(self, client, db_session):
        resp = client.post("/api/sales", json={"payment_mode": "Cash", "lines": []})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_replay_returns_200(self, client, db_session):
        item = _create_item(client)
        body = {
            "payment_mode": "Cash",
            "idempotency_key": "till-9-1",
            "lines": [{"item_id": item["id"], "quantity": 1}],
        }

        first = client.post("/api/sales", json=body)
        second = client.post("/api/sales", json=body)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True

    def test_cancel_twice(self, client, db_session):
        item = _create_item(client)
        sale = client.post("/api/sales", json={
            "payment_mode": "Cash",
            "lines": [{"item_id": item["id"], "quantity": 1}],
        }).get_json()

        first = client.post(f"/api/sales/{sale['sale_id']}/cancel", json={"reason": "mistake"})
        second = client.post(f"/api/sales/{sale['sale_id']}/cancel", json={})

        assert first.status_code == 200
        assert first.get_json()["sale"]["status"] == "CANCELLED"
        assert second.status_code == 409
        assert second.get_json()["error"] == "ALREADY_CANCELLED"

    def test_return_and_list(self, client, db_session):
        item = _create_item(client)
        sale = client.post("/api/sales", json={
            "payment_mode": "Cash",
            "lines": [{"item_id": item["id"], "quantity": 3}],
        }).get_json()
        line_id = sale["lines"][0]["id"]

        resp = client.post(f"/api/sales/{sale['sale_id']}/returns", json={
            "lines": [{"sale_line_id": line_id, "quantity": 1}],
            "refund_account": "cash",
        })
        assert resp.status_code == 201

        listed = client.get(f"/api/sales/{sale['sale_id']}/returns").get_json()
        assert len(listed["returns"]) == 1

    def test_unknown_sale_is_404(self, client, db_session):
        resp = client.get("/api/sales/999")
        assert resp.status_code == 404
        assert resp.get_json()["success"] is False

    def test_unexpected_error_is_logged(self, client, db_session, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(sales_service, "create_sale", explode)

        resp = client.post("/api/sales", json={"payment_mode": "Cash"}, headers=ACTOR)

        assert resp.status_code == 500
        assert resp.get_json() == {"success": False, "message": "Internal server error"}
        entry = db.session.query(ErrorLog).one()
        assert entry.function_name == "create_sale"
        assert entry.actor == "cashier-1"
        assert "disk on fire" in entry.message


# =============================================================================
# LEDGER
# =============================================================================


class TestLedgerApi:

    def test_statement_resolves_alias(self, client, db_session):
        item = _create_item(client)
        client.post("/api/sales", json={
            "payment_mode": "M-Pesa",
            "lines": [{"item_id": item["id"], "quantity": 1}],
        })

        resp = client.get("/api/ledger/accounts/mpesa/statement")
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["account"] == "Mobile Money"
        assert body["closing_balance_cents"] == 100

    def test_unknown_account_is_400(self, client, db_session):
        resp = client.get("/api/ledger/accounts/Offshore/balance")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "UNKNOWN_ACCOUNT"

    def test_transfer(self, client, db_session):
        resp = client.post("/api/ledger/transfers", json={
            "from_account": "Cash", "to_account": "Bank", "amount_cents": 500,
        })
        assert resp.status_code == 201
        assert client.get("/api/ledger/accounts/Bank/balance").get_json()["balance_cents"] == 500

    def test_same_account_transfer_is_400(self, client, db_session):
        resp = client.post("/api/ledger/transfers", json={
            "from_account": "Cash", "to_account": "till", "amount_cents": 500,
        })
        assert resp.status_code == 400


# =============================================================================
# CUSTOMERS / QUOTATIONS
# =============================================================================


class TestCustomersApi:

    def test_credit_sale_shows_on_statement(self, client, db_session):
        item = _create_item(client)
        customer = _create_customer(client)
        client.post("/api/sales", json={
            "customer_id": customer["customer_code"],
            "payment_mode": "Credit",
            "lines": [{"item_id": item["id"], "quantity": 4}],
        })

        statement = client.get(f"/api/customers/{customer['id']}/statement").get_json()

        assert statement["success"] is True
        assert statement["closing_balance_cents"] == 400
        assert statement["customer"]["loyalty_points"] == 10

    def test_delete_with_balance_is_409(self, client, db_session):
        resp = client.post("/api/customers", json={"name": "Debtor", "opening_balance_cents": 100})
        customer = resp.get_json()["customer"]

        resp = client.delete(f"/api/customers/{customer['id']}")
        assert resp.status_code == 409


def test_quotation_convert_twice(client, db_session):
    item = _create_item(client)
    quote = client.post("/api/quotations", json={
        "lines": [{"item_id": item["id"], "quantity": 2}],
    }).get_json()["quotation"]
    assert quote["quotation_number"] == "5001"

    first = client.post(f"/api/quotations/{quote['id']}/convert", json={"payment_mode": "Cash"})
    second = client.post(f"/api/quotations/{quote['id']}/convert", json={"payment_mode": "Cash"})

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.get_json()["error"] == "ALREADY_CONVERTED"


# =============================================================================
# LOOKUPS / SUPPLIERS / AUDIT
# =============================================================================


class TestLookupsApi:

    def test_item_by_code(self, client, db_session):
        item = _create_item(client)

        resp = client.get(f"/api/inventory/items/by-code/{item['item_code']}")
        assert resp.status_code == 200
        assert resp.get_json()["item"]["id"] == item["id"]

        assert client.get("/api/inventory/items/by-code/NOPE-999").status_code == 404

    def test_sale_by_number(self, client, db_session):
        item = _create_item(client)
        client.post("/api/sales", json={
            "payment_mode": "Cash",
            "lines": [{"item_id": item["id"], "quantity": 1}],
        })

        resp = client.get("/api/sales/by-number/110001")
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["sale"]["transaction_number"] == "110001"
        assert len(body["lines"]) == 1


def test_supplier_credit_note(client, db_session):
    supplier = client.post("/api/suppliers", json={
        "name": "Mombasa Cement Ltd", "opening_balance_cents": 1000,
    }).get_json()["supplier"]

    resp = client.post(f"/api/suppliers/{supplier['id']}/credit-notes",
                       json={"amount_cents": 400, "reference": "CN-4471"}, headers=ACTOR)
    assert resp.status_code == 201
    assert resp.get_json()["supplier"]["current_balance_cents"] == 600

    bad = client.post(f"/api/suppliers/{supplier['id']}/credit-notes", json={"amount_cents": 0})
    assert bad.status_code == 400


def test_audit_events_filter(client, db_session):
    item = _create_item(client)
    sale = client.post("/api/sales", json={
        "payment_mode": "Cash",
        "lines": [{"item_id": item["id"], "quantity": 1}],
    }).get_json()["sale"]
    client.post(f"/api/sales/{sale['id']}/cancel", json={"reason": "wrong item"}, headers=ACTOR)

    resp = client.get("/api/audit/events?event_type=sale.cancelled")
    events = resp.get_json()["events"]

    assert resp.status_code == 200
    assert [e["event_type"] for e in events] == ["sale.cancelled"]
