"""
Purchase tests.

Verifies:
- Each purchase line becomes a new batch after existing ones
- Inventory Asset / Accounts Payable / tender postings
- Supplier balance grows by the unpaid part only
"""

import pytest

from shopledger.errors import NotFoundError, ValidationError
from shopledger.extensions import db
from shopledger.models import Item, LedgerEntry, Payment, Supplier
from shopledger.services import inventory_service, ledger_service, purchase_service


def test_part_paid_purchase(db_session, make_item, supplier):
    item = make_item(qty=5, cost=40)

    result = purchase_service.create_purchase({
        "supplier_id": supplier.id,
        "supplier_invoice_no": "INV-7781",
        "amount_paid_cents": 200,
        "payment_account": "Bank",
        "lines": [{"item_id": item.id, "quantity": 10, "unit_cost_cents": 50}],
    }, actor="storekeeper")

    assert result["purchase"]["purchase_number"] == "PUR-001"
    assert db.session.get(Supplier, supplier.id).current_balance_cents == 300

    stock = db.session.get(Item, item.id)
    assert stock.current_qty == 15
    assert stock.cost_price_cents == 50
    batches = inventory_service.list_batches(item.id)
    assert [(b.quantity_remaining, b.unit_cost_cents) for b in batches] == [(5, 40), (10, 50)]

    assert ledger_service.get_balance("Inventory Asset") == 500
    assert ledger_service.get_balance("Accounts Payable") == 300
    assert ledger_service.get_balance("Bank") == -200
    assert db.session.query(Payment).filter_by(kind="PURCHASE").one().amount_cents == 200


def test_unpaid_purchase_posts_no_tender_entry(db_session, make_item, supplier):
    item = make_item(qty=0)

    purchase_service.create_purchase({
        "supplier_id": supplier.id,
        "lines": [{"item_id": item.id, "quantity": 4, "unit_cost_cents": 25}],
    })

    assert db.session.query(LedgerEntry).filter(
        LedgerEntry.account.in_(ledger_service.PAYMENT_ACCOUNTS)
    ).count() == 0
    assert db.session.get(Supplier, supplier.id).current_balance_cents == 100
    assert db.session.get(Item, item.id).current_qty == 4


def test_overpaid_purchase_rejected(db_session, make_item, supplier):
    item = make_item()
    with pytest.raises(ValidationError):
        purchase_service.create_purchase({
            "supplier_id": supplier.id,
            "amount_paid_cents": 101,
            "lines": [{"item_id": item.id, "quantity": 1, "unit_cost_cents": 100}],
        })


def test_service_item_cannot_be_purchased(db_session, make_item, supplier):
    labour = make_item(name="Labour", qty=0, kind="SERVICE")
    with pytest.raises(ValidationError):
        purchase_service.create_purchase({
            "supplier_id": supplier.id,
            "lines": [{"item_id": labour.id, "quantity": 1, "unit_cost_cents": 100}],
        })
    assert db.session.query(LedgerEntry).count() == 0


def test_unknown_supplier(db_session, make_item):
    item = make_item()
    with pytest.raises(NotFoundError):
        purchase_service.create_purchase({
            "supplier_id": 999,
            "lines": [{"item_id": item.id, "quantity": 1, "unit_cost_cents": 100}],
        })
    assert db.session.get(Item, item.id).current_qty == 10
