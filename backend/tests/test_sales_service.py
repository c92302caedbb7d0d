"""
Sale transaction engine tests.

Verifies:
- grand_total = subtotal + delivery - discount
- Walk-in credit and stock shortages fail before any write
- A credit sale updates stock, COGS, customer balance and loyalty together
- Split payments post one ledger entry per leg
- Idempotent replay does not decrement stock twice
- Cancellation is an exact reversal and cannot run twice
- A discount cannot push a sale below zero
- COGS for a backdated sale is dated with the sale
"""

from datetime import datetime

import pytest

from shopledger.errors import (
    AlreadyCancelledError,
    CreditNotAllowedForWalkInError,
    InsufficientStockError,
    ValidationError,
)
from shopledger.extensions import db
from shopledger.models import Customer, Item, LedgerEntry, Payment, SaleLine, SaleTransaction
from shopledger.services import credit_service, inventory_service, ledger_service, sales_service


def _counts():
    return (
        db.session.query(SaleTransaction).count(),
        db.session.query(Payment).count(),
        db.session.query(LedgerEntry).count(),
    )


# =============================================================================
# VALIDATION
# =============================================================================


class TestValidation:

    def test_empty_lines_rejected(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.create_sale({"payment_mode": "Cash", "lines": []})

    def test_unknown_payment_mode_rejected(self, db_session, make_item):
        item = make_item()
        with pytest.raises(ValidationError):
            sales_service.create_sale({"payment_mode": "Barter", "lines": [{"item_id": item.id, "quantity": 1}]})

    @pytest.mark.parametrize("raw,expected", [
        ("Cash", "CASH"),
        ("credit", "CREDIT"),
        ("M-Pesa", "MOBILE_MONEY"),
        ("Bank Transfer", "BANK"),
        ("split", "SPLIT"),
    ])
    def test_payment_mode_aliases(self, raw, expected):
        assert sales_service.normalize_payment_mode(raw) == expected

    def test_walk_in_credit_fails_without_writes(self, db_session, make_item):
        item = make_item(qty=10)
        before = _counts()

        with pytest.raises(CreditNotAllowedForWalkInError):
            sales_service.create_sale({
                "customer_id": "WALK-IN",
                "payment_mode": "Credit",
                "lines": [{"item_id": item.id, "quantity": 2}],
            })

        assert _counts() == before
        assert db.session.get(Item, item.id).current_qty == 10

    def test_walk_in_partial_payment_is_credit(self, db_session, make_item):
        item = make_item(qty=10, price=1000)
        with pytest.raises(CreditNotAllowedForWalkInError):
            sales_service.create_sale({
                "payment_mode": "Cash",
                "amount_paid_cents": 400,
                "lines": [{"item_id": item.id, "quantity": 1}],
            })
        assert db.session.get(Item, item.id).current_qty == 10

    def test_stock_is_checked_across_lines_of_same_item(self, db_session, make_item):
        item = make_item(qty=5)
        before = _counts()

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale({
                "payment_mode": "Cash",
                "lines": [
                    {"item_id": item.id, "quantity": 3},
                    {"item_id": item.id, "quantity": 3},
                ],
            })

        assert exc.value.details["items"][0]["shortage"] == 1
        assert _counts() == before
        assert db.session.get(Item, item.id).current_qty == 5

    def test_overpayment_rejected(self, db_session, make_item):
        item = make_item(price=1000)
        with pytest.raises(ValidationError):
            sales_service.create_sale({
                "payment_mode": "Cash",
                "amount_paid_cents": 1500,
                "lines": [{"item_id": item.id, "quantity": 1}],
            })


# =============================================================================
# CREATE
# =============================================================================


class TestCreateSale:

    def test_grand_total_formula(self, db_session, make_item):
        cement = make_item(name="Cement", price=1000)
        nails = make_item(name="Nails", price=250)

        result = sales_service.create_sale({
            "payment_mode": "Cash",
            "delivery_charge_cents": 500,
            "discount_cents": 200,
            "lines": [
                {"item_id": cement.id, "quantity": 2},
                {"item_id": nails.id, "quantity": 4},
            ],
        }, actor="cashier")

        assert result["sale"]["subtotal_cents"] == 3000
        assert result["grand_total_cents"] == 3000 + 500 - 200
        assert result["paid_amount_cents"] == 3300
        assert result["balance_cents"] == 0
        assert result["fulfillment_status"] == sales_service.FULFILLMENT_READY
        assert ledger_service.get_balance("Cash") == 3300

    def test_receipt_numbers_continue_paper_sequence(self, db_session, make_item):
        item = make_item()
        first = sales_service.create_sale({"payment_mode": "Cash", "lines": [{"item_id": item.id, "quantity": 1}]})
        second = sales_service.create_sale({"payment_mode": "Cash", "lines": [{"item_id": item.id, "quantity": 1}]})

        assert first["transaction_id"] == "110001"
        assert second["transaction_id"] == "110002"

    def test_credit_sale_end_to_end(self, db_session, make_item, customer):
        item = make_item(qty=10, cost=50, price=100)

        result = sales_service.create_sale({
            "customer_id": customer.customer_code,
            "payment_mode": "Credit",
            "lines": [{"item_id": item.id, "quantity": 4}],
        }, actor="cashier")

        assert result["grand_total_cents"] == 400
        assert result["balance_cents"] == 400
        assert result["total_cogs_cents"] == 200

        c = db.session.get(Customer, customer.id)
        assert c.current_balance_cents == 400
        assert c.loyalty_points == 10
        assert c.purchase_count == 1
        assert db.session.get(Item, item.id).current_qty == 6

        cogs = db.session.query(LedgerEntry).filter_by(account=ledger_service.ACCOUNT_COGS).all()
        assert len(cogs) == 1
        assert cogs[0].debit_cents == 200
        assert ledger_service.get_balance("Inventory Asset") == -200
        assert result["delivery_status"] == "Pending Release (4.00 due)"

    def test_customer_can_be_referenced_by_id(self, db_session, make_item, customer):
        item = make_item(price=100)
        result = sales_service.create_sale({
            "customer_id": customer.id,
            "payment_mode": "Credit",
            "lines": [{"item_id": item.id, "quantity": 1}],
        })
        assert result["sale"]["customer_code"] == customer.customer_code

    def test_split_payment_posts_each_leg(self, db_session, make_item):
        item = make_item(price=1000)

        result = sales_service.create_sale({
            "payment_mode": "Split",
            "payments": [
                {"account": "Cash", "amount_cents": 600},
                {"account": "mpesa", "amount_cents": 400},
            ],
            "lines": [{"item_id": item.id, "quantity": 1}],
        })

        assert result["paid_amount_cents"] == 1000
        assert ledger_service.get_balance("Cash") == 600
        assert ledger_service.get_balance("Mobile Money") == 400
        assert db.session.query(Payment).filter_by(sale_id=result["sale_id"]).count() == 2

    def test_partial_payment_goes_on_account(self, db_session, make_item, customer):
        item = make_item(price=1000)

        result = sales_service.create_sale({
            "customer_id": customer.customer_code,
            "payment_mode": "Cash",
            "amount_paid_cents": 300,
            "lines": [{"item_id": item.id, "quantity": 1}],
        })

        assert result["balance_cents"] == 700
        assert result["delivery_status"] == "Pending Release (7.00 due)"
        assert db.session.get(Customer, customer.id).current_balance_cents == 700

    def test_line_spanning_batches_is_split(self, db_session, make_item):
        item = make_item(qty=2, cost=10, price=100)
        inventory_service.increase_stock(item, 3, unit_cost_cents=20, actor="tester")
        db.session.commit()

        result = sales_service.create_sale({"payment_mode": "Cash", "lines": [{"item_id": item.id, "quantity": 4}]})

        lines = db.session.query(SaleLine).filter_by(sale_id=result["sale_id"]).order_by(SaleLine.id).all()
        assert [(ln.quantity, ln.unit_cost_cents) for ln in lines] == [(2, 10), (2, 20)]
        assert {ln.line_number for ln in lines} == {1}
        assert result["total_cogs_cents"] == 2 * 10 + 2 * 20

    def test_service_line_does_not_touch_stock(self, db_session, make_item):
        delivery = make_item(name="Delivery", qty=0, price=300, kind="SERVICE")
        result = sales_service.create_sale({"payment_mode": "Cash", "lines": [{"item_id": delivery.id, "quantity": 1}]})

        assert result["grand_total_cents"] == 300
        assert result["total_cogs_cents"] == 0
        assert db.session.query(LedgerEntry).filter_by(account=ledger_service.ACCOUNT_COGS).count() == 0

    def test_negative_adjustment_pays_out(self, db_session, make_item, customer):
        adjustment = make_item(name="Price adjustment", qty=0, cost=0, price=0, kind="SERVICE")

        result = sales_service.create_sale({
            "customer_id": customer.customer_code,
            "payment_mode": "Cash",
            "lines": [{"item_id": adjustment.id, "quantity": 1, "unit_price_cents": -500}],
        })

        assert result["grand_total_cents"] == -500
        assert ledger_service.get_balance("Cash") == -500
        assert db.session.get(Customer, customer.id).loyalty_points == -10

    def test_negative_price_rejected_for_stock_items(self, db_session, make_item):
        item = make_item()
        with pytest.raises(ValidationError):
            sales_service.create_sale({
                "payment_mode": "Cash",
                "lines": [{"item_id": item.id, "quantity": 1, "unit_price_cents": -1}],
            })


class TestIdempotency:

    def test_replay_returns_original_sale(self, db_session, make_item):
        item = make_item(qty=10)
        payload = {
            "payment_mode": "Cash",
            "idempotency_key": "till-1-0001",
            "lines": [{"item_id": item.id, "quantity": 2}],
        }

        first = sales_service.create_sale(payload)
        second = sales_service.create_sale(payload)

        assert first["replayed"] is False
        assert second["replayed"] is True
        assert second["transaction_id"] == first["transaction_id"]
        assert db.session.get(Item, item.id).current_qty == 8
        assert db.session.query(SaleTransaction).count() == 1


# =============================================================================
# PAYMENTS ON A SALE
# =============================================================================


def test_payment_on_credit_sale_releases_it(db_session, make_item, customer):
    item = make_item(qty=10, cost=50, price=100)
    sale = sales_service.create_sale({
        "customer_id": customer.customer_code,
        "payment_mode": "Credit",
        "lines": [{"item_id": item.id, "quantity": 4}],
    })

    result = sales_service.record_sale_payment(sale["sale_id"], 400, account="M-Pesa")

    assert result["sale"]["fulfillment_status"] == sales_service.FULFILLMENT_READY
    assert db.session.get(Customer, customer.id).current_balance_cents == 0
    assert ledger_service.get_balance("Mobile Money") == 400


def test_payment_larger_than_due_rejected(db_session, make_item, customer):
    item = make_item(price=100)
    sale = sales_service.create_sale({
        "customer_id": customer.customer_code,
        "payment_mode": "Credit",
        "lines": [{"item_id": item.id, "quantity": 1}],
    })
    with pytest.raises(ValidationError):
        sales_service.record_sale_payment(sale["sale_id"], 101)


# =============================================================================
# CANCEL
# =============================================================================


class TestCancel:

    def test_credit_sale_round_trip(self, db_session, make_item, customer):
        item = make_item(qty=10, cost=50, price=100)
        sale = sales_service.create_sale({
            "customer_id": customer.customer_code,
            "payment_mode": "Credit",
            "lines": [{"item_id": item.id, "quantity": 4}],
        })

        result = sales_service.cancel_sale(sale["sale_id"], reason="wrong item", actor="manager")

        assert result["sale"]["status"] == sales_service.STATUS_CANCELLED
        assert result["credit_note_cents"] == 400
        assert result["cogs_reversed_cents"] == 200

        c = db.session.get(Customer, customer.id)
        assert c.current_balance_cents == 0
        assert c.loyalty_points == 0
        assert c.purchase_count == 0
        assert db.session.get(Item, item.id).current_qty == 10
        assert inventory_service.batch_quantity_total(item.id) == 10
        assert ledger_service.get_balance("COGS") == 0
        assert ledger_service.get_balance("Inventory Asset") == 0

    def test_cash_sale_is_refunded(self, db_session, make_item):
        item = make_item(price=1000)
        sale = sales_service.create_sale({"payment_mode": "Cash", "lines": [{"item_id": item.id, "quantity": 2}]})

        result = sales_service.cancel_sale(sale["sale_id"])

        assert result["refunded_cents"] == 2000
        assert ledger_service.get_balance("Cash") == 0

    def test_second_cancel_fails_and_changes_nothing(self, db_session, make_item, customer):
        item = make_item(qty=10, cost=50, price=100)
        sale = sales_service.create_sale({
            "customer_id": customer.customer_code,
            "payment_mode": "Credit",
            "lines": [{"item_id": item.id, "quantity": 4}],
        })
        sales_service.cancel_sale(sale["sale_id"])
        snapshot = (
            db.session.get(Item, item.id).current_qty,
            db.session.get(Customer, customer.id).current_balance_cents,
            db.session.get(Customer, customer.id).loyalty_points,
            db.session.query(LedgerEntry).count(),
        )

        with pytest.raises(AlreadyCancelledError):
            sales_service.cancel_sale(sale["sale_id"])

        assert snapshot == (
            db.session.get(Item, item.id).current_qty,
            db.session.get(Customer, customer.id).current_balance_cents,
            db.session.get(Customer, customer.id).loyalty_points,
            db.session.query(LedgerEntry).count(),
        )

    def test_payment_on_cancelled_sale_rejected(self, db_session, make_item, customer):
        item = make_item(price=100)
        sale = sales_service.create_sale({
            "customer_id": customer.customer_code,
            "payment_mode": "Credit",
            "lines": [{"item_id": item.id, "quantity": 1}],
        })
        sales_service.cancel_sale(sale["sale_id"])

        with pytest.raises(AlreadyCancelledError):
            sales_service.record_sale_payment(sale["sale_id"], 50)

    def test_cancel_after_customer_deleted(self, db_session, make_item, customer):
        item = make_item(qty=10, cost=50, price=100)
        sale = sales_service.create_sale({
            "customer_id": customer.customer_code,
            "payment_mode": "Cash",
            "lines": [{"item_id": item.id, "quantity": 2}],
        })
        credit_service.delete_customer(customer.id)

        result = sales_service.cancel_sale(sale["sale_id"])

        assert result["sale"]["status"] == sales_service.STATUS_CANCELLED
        assert result["refunded_cents"] == 200
        assert db.session.get(Item, item.id).current_qty == 10
        assert db.session.get(Customer, customer.id).loyalty_points == 0


# =============================================================================
# DISCOUNTS / BACKDATED SALES
# =============================================================================


class TestDiscounts:

    def test_discount_above_total_rejected_without_writes(self, db_session, make_item):
        item = make_item(qty=10, price=1000)
        before = _counts()

        with pytest.raises(ValidationError):
            sales_service.create_sale({
                "payment_mode": "Cash",
                "discount_cents": 5000,
                "lines": [{"item_id": item.id, "quantity": 1}],
            })

        assert _counts() == before
        assert db.session.get(Item, item.id).current_qty == 10

    def test_discount_may_cover_delivery_too(self, db_session, make_item):
        item = make_item(qty=10, price=1000)

        result = sales_service.create_sale({
            "payment_mode": "Cash",
            "delivery_charge_cents": 200,
            "discount_cents": 1200,
            "lines": [{"item_id": item.id, "quantity": 1}],
        })

        assert result["grand_total_cents"] == 0
        assert ledger_service.get_balance("Cash") == 0
        assert db.session.get(Item, item.id).current_qty == 9

    def test_discount_cannot_deepen_an_adjustment(self, db_session, make_item, customer):
        adjustment = make_item(name="Price adjustment", qty=0, cost=0, price=0, kind="SERVICE")
        with pytest.raises(ValidationError):
            sales_service.create_sale({
                "customer_id": customer.customer_code,
                "payment_mode": "Cash",
                "discount_cents": 100,
                "lines": [{"item_id": adjustment.id, "quantity": 1, "unit_price_cents": -500}],
            })


def test_backdated_sale_posts_cogs_on_sale_date(db_session, make_item):
    item = make_item(qty=10, cost=50, price=100)

    sales_service.create_sale({
        "payment_mode": "Cash",
        "occurred_at": "2020-01-15T10:00:00Z",
        "lines": [{"item_id": item.id, "quantity": 3}],
    })

    month_end = datetime(2020, 1, 31)
    assert ledger_service.get_balance("Cash", as_of=month_end) == 300
    assert ledger_service.get_balance("COGS", as_of=month_end) == 150
