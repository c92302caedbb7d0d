# Overview: Flask API routes for supplier purchases.

from flask import Blueprint, jsonify, request

from ..errors import ServiceError
from ..services import purchase_service
from . import current_actor, error_response, internal_error, json_body

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.post("")
def create_purchase_route():
    """
    Request body:
    {
        "supplier_id": 1,
        "supplier_invoice_no": "INV-7781",
        "lines": [{"item_id": 1, "quantity": 10, "unit_cost_cents": 5000}],
        "amount_paid_cents": 20000,
        "payment_account": "Bank"
    }
    """
    try:
        result = purchase_service.create_purchase(json_body(), actor=current_actor())
        number = result["purchase"]["purchase_number"]
        return jsonify({"success": True, "message": f"Purchase {number} recorded", **result}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("create_purchase", e)


@purchases_bp.get("")
def list_purchases_route():
    purchases = purchase_service.list_purchases(supplier_id=request.args.get("supplier_id", type=int))
    return jsonify({"success": True, "purchases": [p.to_dict() for p in purchases]})


@purchases_bp.get("/<int:purchase_id>")
def get_purchase_route(purchase_id: int):
    try:
        return jsonify({"success": True, "purchase": purchase_service.get_purchase(purchase_id).to_dict()})
    except ServiceError as e:
        return error_response(e)
