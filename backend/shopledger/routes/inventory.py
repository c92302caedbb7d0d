# Overview: Flask API routes for items, stock status, batches and valuation.

from flask import Blueprint, jsonify, request

from ..errors import ServiceError
from ..services import inventory_service
from . import current_actor, error_response, internal_error, json_body

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/items")
def create_item_route():
    """
    Request body:
    {
        "name": "Cement 50kg",
        "category": "Building",
        "kind": "STOCK" | "SERVICE",
        "cost_price_cents": 5000,
        "selling_price_cents": 10000,
        "reorder_level": 5,
        "opening_quantity": 10
    }
    """
    try:
        item = inventory_service.create_item(json_body(), actor=current_actor())
        return jsonify({"success": True, "message": f"Item {item.item_code} created", "item": item.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("create_item", e)


@inventory_bp.get("/items/<int:item_id>")
def get_item_route(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
        return jsonify({"success": True, "item": item.to_dict(), "stock": inventory_service.get_stock_status(item)})
    except ServiceError as e:
        return error_response(e)


@inventory_bp.get("/items/by-code/<item_code>")
def get_item_by_code_route(item_code: str):
    try:
        item = inventory_service.get_item_by_code(item_code)
        return jsonify({"success": True, "item": item.to_dict(), "stock": inventory_service.get_stock_status(item)})
    except ServiceError as e:
        return error_response(e)


@inventory_bp.get("/status")
def stock_status_route():
    """GetStockStatus: ?category=&status=Low%20Stock"""
    rows = inventory_service.list_stock_status(
        category=request.args.get("category"),
        status=request.args.get("status"),
    )
    return jsonify({"success": True, "items": rows})


@inventory_bp.get("/reorder")
def reorder_route():
    return jsonify({"success": True, "items": inventory_service.list_reorder_items()})


@inventory_bp.get("/valuation")
def valuation_route():
    return jsonify({"success": True, **inventory_service.inventory_valuation()})


@inventory_bp.get("/items/<int:item_id>/batches")
def batches_route(item_id: int):
    include_exhausted = request.args.get("include_exhausted", "true").lower() != "false"
    try:
        batches = inventory_service.list_batches(item_id, include_exhausted=include_exhausted)
        return jsonify({"success": True, "batches": [b.to_dict() for b in batches]})
    except ServiceError as e:
        return error_response(e)


@inventory_bp.get("/items/<int:item_id>/movements")
def movements_route(item_id: int):
    limit = request.args.get("limit", default=200, type=int)
    try:
        movements = inventory_service.list_movements(item_id, limit=limit)
        return jsonify({"success": True, "movements": [m.to_dict() for m in movements]})
    except ServiceError as e:
        return error_response(e)
