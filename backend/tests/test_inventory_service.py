"""
Inventory ledger tests.

Verifies:
- Strict FIFO consumption across batches with exact COGS
- current_qty == SUM(batch.quantity_remaining), never negative
- COGS fallback to cost price when batch metadata is missing
- Restock into the original batch, or a new batch when unknown
- Stock status thresholds and valuation
"""

import pytest

from shopledger.errors import InsufficientStockError, ValidationError
from shopledger.extensions import db
from shopledger.models import AuditEvent, InventoryMovement, Item, StockBatch
from shopledger.services import inventory_service
from shopledger.services.inventory_service import (
    STATUS_IN,
    STATUS_LOW,
    STATUS_MEDIUM,
    STATUS_OUT,
    stock_status,
)


def _assert_batches_match(item_id):
    item = db.session.get(Item, item_id)
    batches = db.session.query(StockBatch).filter_by(item_id=item_id).all()
    assert item.current_qty == sum(b.quantity_remaining for b in batches)
    assert all(b.quantity_remaining >= 0 for b in batches)
    assert item.current_qty >= 0


# =============================================================================
# FIFO
# =============================================================================


class TestFifo:

    def test_decrease_consumes_oldest_batches_first(self, db_session, make_item):
        item = make_item(qty=5, cost=10)
        inventory_service.increase_stock(item, 5, unit_cost_cents=12, actor="tester", reference="PUR-X")
        db.session.commit()
        b1, b2 = inventory_service.list_batches(item.id)

        result = inventory_service.decrease_stock(item, 7, actor="tester", reference="T1")
        db.session.commit()

        assert result["old_qty"] == 10
        assert result["new_qty"] == 3
        assert result["total_cogs_cents"] == 5 * 10 + 2 * 12
        assert [(a["batch_id"], a["qty_deducted"], a["unit_cost_cents"]) for a in result["batch_allocations"]] == [
            (b1.id, 5, 10),
            (b2.id, 2, 12),
        ]
        _assert_batches_match(item.id)

    def test_exhausted_batches_are_kept(self, db_session, make_item):
        item = make_item(qty=3, cost=10)
        inventory_service.decrease_stock(item, 3, actor="tester")
        db.session.commit()

        batches = inventory_service.list_batches(item.id)
        assert len(batches) == 1
        assert batches[0].quantity_remaining == 0
        assert inventory_service.list_batches(item.id, include_exhausted=False) == []

    def test_insufficient_stock_changes_nothing(self, db_session, make_item):
        item = make_item(qty=4)
        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.decrease_stock(item, 5, actor="tester")
        db.session.rollback()

        assert exc.value.details["shortage"] == 1
        assert db.session.get(Item, item.id).current_qty == 4
        _assert_batches_match(item.id)

    def test_new_batch_is_appended_after_existing(self, db_session, make_item):
        item = make_item(qty=2, cost=10)
        result = inventory_service.increase_stock(item, 3, unit_cost_cents=15, actor="tester")
        db.session.commit()

        batches = inventory_service.list_batches(item.id)
        assert batches[-1].id == result["batch_id"]
        assert result["old_qty"] == 2 and result["new_qty"] == 5
        assert db.session.get(Item, item.id).cost_price_cents == 15

    def test_movements_are_recorded_per_batch(self, db_session, make_item):
        item = make_item(qty=2, cost=10)
        inventory_service.increase_stock(item, 2, unit_cost_cents=11, actor="tester")
        inventory_service.decrease_stock(item, 3, actor="tester", reference="S-1")
        db.session.commit()

        sale_moves = db.session.query(InventoryMovement).filter_by(item_id=item.id, movement_type="SALE").all()
        assert sorted(m.quantity_delta for m in sale_moves) == [-2, -1]


class TestCogsFallback:

    def test_missing_batch_metadata_uses_cost_price(self, db_session, make_item):
        item = make_item(qty=3, cost=10)
        # Legacy stock recorded without a batch
        item.current_qty = 5
        db.session.commit()

        result = inventory_service.decrease_stock(item, 5, actor="tester", reference="S-9")
        db.session.commit()

        assert result["total_cogs_cents"] == 3 * 10 + 2 * 10
        assert result["batch_allocations"][-1] == {"batch_id": None, "qty_deducted": 2, "unit_cost_cents": 10}
        events = db.session.query(AuditEvent).filter_by(event_type="inventory.cogs_fallback").all()
        assert len(events) == 1
        assert db.session.get(Item, item.id).current_qty == 0


class TestRestock:

    def test_restock_into_original_batch(self, db_session, make_item):
        item = make_item(qty=5, cost=10)
        batch = inventory_service.list_batches(item.id)[0]
        inventory_service.decrease_stock(item, 2, actor="tester")

        result = inventory_service.increase_stock_to_batch(item, batch.id, 1, actor="tester")
        db.session.commit()

        assert result["restocked_to_original"] is True
        assert db.session.get(StockBatch, batch.id).quantity_remaining == 4
        assert len(inventory_service.list_batches(item.id)) == 1
        _assert_batches_match(item.id)

    def test_unknown_batch_falls_back_to_new_batch(self, db_session, make_item):
        item = make_item(qty=5, cost=10)
        result = inventory_service.increase_stock_to_batch(item, None, 2, actor="tester")
        db.session.commit()

        assert result["restocked_to_original"] is False
        new_batch = db.session.get(StockBatch, result["batch_id"])
        assert new_batch.unit_cost_cents == 10
        assert new_batch.source_type == "RESTOCK"
        _assert_batches_match(item.id)

    def test_batch_of_another_item_is_not_used(self, db_session, make_item):
        first = make_item(name="First", qty=5)
        second = make_item(name="Second", qty=5)
        foreign = inventory_service.list_batches(first.id)[0]

        result = inventory_service.increase_stock_to_batch(second, foreign.id, 1, actor="tester")
        db.session.commit()

        assert result["restocked_to_original"] is False
        assert db.session.get(StockBatch, foreign.id).quantity_remaining == 5


# =============================================================================
# SERVICE ITEMS
# =============================================================================


class TestServiceItems:

    def test_service_items_have_no_stock(self, db_session, make_item):
        delivery = make_item(name="Delivery", qty=0, kind="SERVICE")
        assert inventory_service.check_stock(delivery, 100)["sufficient"] is True
        with pytest.raises(ValidationError):
            inventory_service.decrease_stock(delivery, 1, actor="tester")

    def test_service_item_rejects_opening_stock(self, db_session):
        with pytest.raises(ValidationError):
            inventory_service.create_item({"name": "Labour", "kind": "SERVICE", "opening_quantity": 3})

    def test_invalid_kind_rejected(self, db_session):
        with pytest.raises(ValidationError):
            inventory_service.create_item({"name": "Thing", "kind": "MAGIC"})


# =============================================================================
# DERIVED QUERIES
# =============================================================================


@pytest.mark.parametrize(
    "qty,reorder,expected",
    [
        (0, 5, STATUS_OUT),
        (3, 5, STATUS_LOW),
        (5, 5, STATUS_LOW),
        (10, 5, STATUS_MEDIUM),
        (11, 5, STATUS_IN),
        (0, 0, STATUS_OUT),
        (1, 0, STATUS_IN),
    ],
)
def test_stock_status_thresholds(qty, reorder, expected):
    assert stock_status(qty, reorder) == expected


def test_check_stock_reports_shortage(db_session, make_item):
    item = make_item(qty=4)
    assert inventory_service.check_stock(item, 6) == {"available": 4, "sufficient": False, "shortage": 2}


def test_valuation_sums_qty_times_cost(db_session, make_item):
    make_item(name="A", qty=10, cost=5000)
    make_item(name="B", qty=2, cost=100)
    make_item(name="Delivery", qty=0, cost=999, kind="SERVICE")

    valuation = inventory_service.inventory_valuation()
    assert valuation["total_value_cents"] == 10 * 5000 + 2 * 100
    assert valuation["item_count"] == 2


def test_reorder_list(db_session, make_item):
    make_item(name="Plenty", qty=50, reorder=5)
    low = make_item(name="Low", qty=2, reorder=5)

    codes = [row["item_code"] for row in inventory_service.list_reorder_items()]
    assert codes == [low.item_code]
