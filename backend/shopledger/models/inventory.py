from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_sheet_datetime

ITEM_KIND_STOCK = "STOCK"
ITEM_KIND_SERVICE = "SERVICE"
ITEM_KINDS = (ITEM_KIND_STOCK, ITEM_KIND_SERVICE)


class Item(db.Model):
    """
    Item master data.

    kind is a tagged variant fixed at creation time:
    - STOCK items carry FIFO cost batches; current_qty == SUM(batches.quantity_remaining)
    - SERVICE items (manual charges, labour, delivery) never touch batches
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_category_name", "category", "name"),
        db.CheckConstraint("current_qty >= 0", name="ck_items_current_qty_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(128), nullable=True)
    kind = db.Column(db.String(16), nullable=False, default=ITEM_KIND_STOCK)

    # Last-known purchase cost; FIFO fallback when batch metadata is missing
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    current_qty = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    updated_by = db.Column(db.String(64), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_service(self) -> bool:
        return self.kind == ITEM_KIND_SERVICE

    def __repr__(self) -> str:
        return f"<Item id={self.id} code={self.item_code!r} name={self.name!r} qty={self.current_qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_code": self.item_code,
            "name": self.name,
            "category": self.category,
            "kind": self.kind,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "current_qty": self.current_qty,
            "reorder_level": self.reorder_level,
            "supplier_id": self.supplier_id,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
            "updated_by": self.updated_by,
        }

    def to_row(self) -> dict:
        return {
            "ItemID": self.item_code,
            "Name": self.name,
            "Category": self.category or "",
            "CostPrice": self.cost_price_cents,
            "SellingPrice": self.selling_price_cents,
            "CurrentQty": self.current_qty,
            "ReorderLevel": self.reorder_level,
            "Supplier": self.supplier.supplier_code if self.supplier else "",
            "LastUpdated": to_sheet_datetime(self.updated_at),
            "UpdatedBy": self.updated_by or "",
        }


class StockBatch(db.Model):
    """
    FIFO cost lot for a STOCK item.

    Batches are consumed strictly in creation (id) order and are never
    deleted; an exhausted batch stays at quantity_remaining = 0 for audit.
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        db.CheckConstraint("quantity_remaining >= 0", name="ck_stock_batches_remaining_non_negative"),
        db.Index("ix_stock_batches_item_remaining", "item_id", "quantity_remaining"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    batch_code = db.Column(db.String(64), nullable=False, unique=True)

    quantity_received = db.Column(db.Integer, nullable=False)
    quantity_remaining = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    # OPENING, PURCHASE, RESTOCK (cancel/return into a new lot)
    source_type = db.Column(db.String(32), nullable=False)
    source_reference = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    created_by = db.Column(db.String(64), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    item = db.relationship("Item", backref=db.backref("batches", lazy=True, order_by="StockBatch.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "batch_code": self.batch_code,
            "quantity_received": self.quantity_received,
            "quantity_remaining": self.quantity_remaining,
            "unit_cost_cents": self.unit_cost_cents,
            "source_type": self.source_type,
            "source_reference": self.source_reference,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
        }


class InventoryMovement(db.Model):
    """Append-only stock audit trail; one row per batch touched."""
    __tablename__ = "inventory_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=True, index=True)

    # SALE, PURCHASE, OPENING, SALE_CANCEL, RETURN
    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    reference = db.Column(db.String(64), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    actor = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "batch_id": self.batch_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "unit_cost_cents": self.unit_cost_cents,
            "reference": self.reference,
            "note": self.note,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }
