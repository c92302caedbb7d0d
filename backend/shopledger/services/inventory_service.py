# Overview: Inventory ledger; FIFO cost batches, stock checks and derived stock status.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Item, StockBatch, InventoryMovement, Supplier, ITEM_KIND_STOCK, ITEM_KINDS
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, validate_payload, require_positive_int, require_amount
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .identifier_service import next_identifier

"""
Inventory Invariants (authoritative)

- Item.current_qty == SUM(StockBatch.quantity_remaining) for STOCK items.
  Both are written in the same DB transaction.
- quantity_remaining >= 0 on every batch (DB check constraint too).
- Batches are consumed strictly in creation (id) order: FIFO.
- Batches are never deleted, only exhausted (quantity_remaining = 0).
- SERVICE items never touch batches or current_qty.
- Every quantity change appends an InventoryMovement row per batch touched.

COGS fallback:
- If on-hand quantity is not fully covered by batches (legacy stock with
  no batch metadata) the uncovered remainder is costed at the item's
  last-known cost_price_cents. The sale proceeds; the degradation is logged
  and recorded in the audit log.
"""

STATUS_OUT = "Out of Stock"
STATUS_LOW = "Low Stock"
STATUS_MEDIUM = "Medium Stock"
STATUS_IN = "In Stock"

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "category", "kind", "cost_price_cents", "selling_price_cents",
        "reorder_level",
    },
    required_on_create={"name"},
)


def get_item(item_id: int, *, lock: bool = False) -> Item:
    query = db.session.query(Item).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise NotFoundError(f"Item {item_id} not found", details={"item_id": item_id})
    return item


def get_item_by_code(item_code: str) -> Item:
    item = db.session.query(Item).filter_by(item_code=item_code).first()
    if item is None:
        raise NotFoundError(f"Item {item_code} not found", details={"item_code": item_code})
    return item


def create_item(payload: dict, *, actor: str | None = None) -> Item:
    """
    Create an item, optionally with an opening batch.

    payload keys: name, category, kind (STOCK|SERVICE), cost_price_cents,
    selling_price_cents, reorder_level, supplier_id, opening_quantity.
    """
    payload = dict(payload or {})
    opening_qty = payload.pop("opening_quantity", None)
    supplier_id = payload.pop("supplier_id", None)

    fields = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY)
    kind = (fields.get("kind") or ITEM_KIND_STOCK).upper()
    if kind not in ITEM_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(ITEM_KINDS)}")
    fields["kind"] = kind

    for money_field in ("cost_price_cents", "selling_price_cents"):
        if money_field in fields:
            require_amount(money_field, fields[money_field])
    if fields.get("reorder_level", 0) < 0:
        raise ValidationError("reorder_level must be >= 0")

    if opening_qty not in (None, "", 0):
        opening_qty = require_positive_int("opening_quantity", opening_qty)
        if kind != ITEM_KIND_STOCK:
            raise ValidationError("Service items cannot carry opening stock")
    else:
        opening_qty = 0

    def _op():
        if supplier_id is not None:
            if db.session.query(Supplier).filter_by(id=supplier_id).first() is None:
                raise NotFoundError(f"Supplier {supplier_id} not found")

        item = Item(
            item_code=next_identifier("ITEM", "ITM"),
            supplier_id=supplier_id,
            updated_by=actor,
            current_qty=0,
            **fields,
        )
        db.session.add(item)
        db.session.flush()

        if opening_qty:
            _append_batch(
                item,
                opening_qty,
                item.cost_price_cents or 0,
                source_type="OPENING",
                reference=item.item_code,
                actor=actor,
            )

        append_audit_event(
            event_type="item.created",
            entity_type="item",
            entity_ref=item.item_code,
            actor=actor,
            payload={"kind": kind, "opening_quantity": opening_qty},
        )
        db.session.commit()
        return item

    return run_with_retry(_op)


def check_stock(item: Item, quantity: int) -> dict:
    """Pure read: {available, sufficient, shortage}. Service items are always sufficient."""
    if item.is_service:
        return {"available": None, "sufficient": True, "shortage": 0}
    available = int(item.current_qty or 0)
    shortage = max(0, quantity - available)
    return {"available": available, "sufficient": shortage == 0, "shortage": shortage}


def _record_movement(item, batch, delta, movement_type, unit_cost, reference, actor, note=None):
    db.session.add(InventoryMovement(
        item_id=item.id,
        batch_id=batch.id if batch is not None else None,
        movement_type=movement_type,
        quantity_delta=delta,
        unit_cost_cents=unit_cost,
        reference=reference,
        note=note,
        actor=actor,
        occurred_at=utcnow(),
    ))


def _append_batch(item: Item, quantity: int, unit_cost_cents: int, *, source_type: str,
                  reference: str | None, actor: str | None) -> StockBatch:
    batch = StockBatch(
        item_id=item.id,
        batch_code=next_identifier("BATCH", "BAT"),
        quantity_received=quantity,
        quantity_remaining=quantity,
        unit_cost_cents=unit_cost_cents,
        source_type=source_type,
        source_reference=reference,
        created_by=actor,
    )
    db.session.add(batch)
    db.session.flush()

    item.current_qty = (item.current_qty or 0) + quantity
    item.updated_by = actor
    _record_movement(item, batch, quantity, source_type, unit_cost_cents, reference, actor)
    return batch


def decrease_stock(
    item: Item,
    quantity: int,
    *,
    actor: str | None = None,
    reference: str | None = None,
    movement_type: str = "SALE",
) -> dict:
    """
    FIFO decrease inside the caller's transaction.

    Returns {old_qty, new_qty, total_cogs_cents, batch_allocations[]} where each
    allocation is {batch_id, qty_deducted, unit_cost_cents}.
    """
    quantity = require_positive_int("quantity", quantity)
    if item.is_service:
        raise ValidationError(f"{item.name} is a service item and has no stock")

    old_qty = int(item.current_qty or 0)
    if quantity > old_qty:
        raise InsufficientStockError(
            f"Insufficient stock for {item.name}: requested {quantity}, available {old_qty}",
            details={"item_id": item.id, "requested": quantity, "available": old_qty,
                     "shortage": quantity - old_qty},
        )

    batches = (
        lock_for_update(
            db.session.query(StockBatch).filter(
                StockBatch.item_id == item.id,
                StockBatch.quantity_remaining > 0,
            )
        )
        .order_by(StockBatch.id)
        .all()
    )

    remaining = quantity
    allocations = []
    total_cogs = 0

    for batch in batches:
        if remaining == 0:
            break
        take = min(batch.quantity_remaining, remaining)
        batch.quantity_remaining -= take
        remaining -= take
        total_cogs += take * batch.unit_cost_cents
        allocations.append({
            "batch_id": batch.id,
            "qty_deducted": take,
            "unit_cost_cents": batch.unit_cost_cents,
        })
        _record_movement(item, batch, -take, movement_type, batch.unit_cost_cents, reference, actor)

    if remaining > 0:
        fallback_cost = int(item.cost_price_cents or 0)
        current_app.logger.warning(
            "Batch metadata missing for item %s (%s units); costing at last known price %s",
            item.item_code, remaining, fallback_cost,
        )
        append_audit_event(
            event_type="inventory.cogs_fallback",
            entity_type="item",
            entity_ref=item.item_code,
            actor=actor,
            note=f"{remaining} units costed at cost price",
            payload={"quantity": remaining, "unit_cost_cents": fallback_cost, "reference": reference},
        )
        total_cogs += remaining * fallback_cost
        allocations.append({
            "batch_id": None,
            "qty_deducted": remaining,
            "unit_cost_cents": fallback_cost,
        })
        _record_movement(item, None, -remaining, movement_type, fallback_cost, reference, actor,
                         note="no batch metadata; cost price fallback")

    item.current_qty = old_qty - quantity
    item.updated_by = actor
    db.session.flush()

    return {
        "old_qty": old_qty,
        "new_qty": item.current_qty,
        "total_cogs_cents": total_cogs,
        "batch_allocations": allocations,
    }


def increase_stock(
    item: Item,
    quantity: int,
    *,
    unit_cost_cents: int,
    actor: str | None = None,
    reference: str | None = None,
    source_type: str = "PURCHASE",
    update_cost_price: bool = True,
) -> dict:
    """Append a new batch after all existing ones (preserves FIFO order)."""
    quantity = require_positive_int("quantity", quantity)
    unit_cost_cents = require_amount("unit_cost_cents", unit_cost_cents)
    if item.is_service:
        raise ValidationError(f"{item.name} is a service item and has no stock")

    old_qty = int(item.current_qty or 0)
    batch = _append_batch(item, quantity, unit_cost_cents, source_type=source_type,
                          reference=reference, actor=actor)
    if update_cost_price:
        item.cost_price_cents = unit_cost_cents
    db.session.flush()
    return {"old_qty": old_qty, "new_qty": item.current_qty, "batch_id": batch.id}


def increase_stock_to_batch(
    item: Item,
    batch_id: int | None,
    quantity: int,
    *,
    actor: str | None = None,
    reference: str | None = None,
    movement_type: str = "RETURN",
    fallback_unit_cost_cents: int | None = None,
) -> dict:
    """
    Restock into the original batch so cost history is not distorted.

    Falls back to a new batch (at fallback_unit_cost_cents, else the item's
    cost price) when the batch is unknown or belongs to another item.
    """
    quantity = require_positive_int("quantity", quantity)
    if item.is_service:
        raise ValidationError(f"{item.name} is a service item and has no stock")

    batch = None
    if batch_id is not None:
        batch = lock_for_update(
            db.session.query(StockBatch).filter_by(id=batch_id, item_id=item.id)
        ).first()

    if batch is None:
        unit_cost = fallback_unit_cost_cents
        if unit_cost is None:
            unit_cost = int(item.cost_price_cents or 0)
        result = increase_stock(
            item, quantity, unit_cost_cents=unit_cost, actor=actor, reference=reference,
            source_type="RESTOCK", update_cost_price=False,
        )
        result["restocked_to_original"] = False
        return result

    old_qty = int(item.current_qty or 0)
    batch.quantity_remaining += quantity
    item.current_qty = old_qty + quantity
    item.updated_by = actor
    _record_movement(item, batch, quantity, movement_type, batch.unit_cost_cents, reference, actor)
    db.session.flush()
    return {
        "old_qty": old_qty,
        "new_qty": item.current_qty,
        "batch_id": batch.id,
        "restocked_to_original": True,
    }


def stock_status(quantity: int, reorder_level: int) -> str:
    if quantity <= 0:
        return STATUS_OUT
    if quantity <= reorder_level:
        return STATUS_LOW
    if quantity <= 2 * reorder_level:
        return STATUS_MEDIUM
    return STATUS_IN


def get_stock_status(item: Item) -> dict:
    if item.is_service:
        status = "Service"
    else:
        status = stock_status(item.current_qty, item.reorder_level)
    return {
        "item_id": item.id,
        "item_code": item.item_code,
        "name": item.name,
        "category": item.category,
        "kind": item.kind,
        "current_qty": item.current_qty,
        "reorder_level": item.reorder_level,
        "status": status,
        "value_cents": item.current_qty * item.cost_price_cents if not item.is_service else 0,
    }


def list_stock_status(*, category: str | None = None, status: str | None = None) -> list[dict]:
    q = db.session.query(Item).filter(Item.is_active.is_(True))
    if category:
        q = q.filter(Item.category == category)
    rows = [get_stock_status(item) for item in q.order_by(Item.name).all()]
    if status:
        rows = [r for r in rows if r["status"] == status]
    return rows


def list_reorder_items() -> list[dict]:
    """STOCK items at or below their reorder level."""
    return [
        r for r in list_stock_status()
        if r["kind"] == ITEM_KIND_STOCK and r["status"] in (STATUS_OUT, STATUS_LOW)
    ]


def inventory_valuation() -> dict:
    """Valuation = SUM(current_qty * cost_price) over STOCK items."""
    total = db.session.query(
        func.coalesce(func.sum(Item.current_qty * Item.cost_price_cents), 0)
    ).filter(Item.kind == ITEM_KIND_STOCK, Item.is_active.is_(True)).scalar()

    item_count = db.session.query(func.count(Item.id)).filter(
        Item.kind == ITEM_KIND_STOCK, Item.is_active.is_(True)
    ).scalar()

    return {"item_count": int(item_count or 0), "total_value_cents": int(total or 0)}


def batch_quantity_total(item_id: int) -> int:
    return int(db.session.query(
        func.coalesce(func.sum(StockBatch.quantity_remaining), 0)
    ).filter(StockBatch.item_id == item_id).scalar() or 0)


def list_batches(item_id: int, *, include_exhausted: bool = True) -> list[StockBatch]:
    get_item(item_id)
    q = db.session.query(StockBatch).filter_by(item_id=item_id)
    if not include_exhausted:
        q = q.filter(StockBatch.quantity_remaining > 0)
    return q.order_by(StockBatch.id).all()


def list_movements(item_id: int, *, limit: int = 200) -> list[InventoryMovement]:
    get_item(item_id)
    limit = max(1, min(limit, 500))
    return (
        db.session.query(InventoryMovement)
        .filter_by(item_id=item_id)
        .order_by(InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )
