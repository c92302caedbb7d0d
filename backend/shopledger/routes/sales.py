# Overview: Flask API routes for sales, cancellations, returns and sale payments.

"""
Sales API Routes

- POST /api/sales                    CreateSale
- POST /api/sales/<id>/cancel        CancelSale
- POST /api/sales/<id>/returns       ProcessReturn
- POST /api/sales/<id>/payments      payment against the amount due

Every response is a {success, message, ...} envelope.
"""

from flask import Blueprint, jsonify, request

from ..errors import ServiceError
from ..services import return_service, sales_service
from . import current_actor, error_response, internal_error, json_body

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def create_sale_route():
    """
    Request body:
    {
        "customer_id": "CUS-001" | "WALK-IN",
        "payment_mode": "Cash" | "Credit" | "Split" | "M-Pesa" | "Bank",
        "lines": [{"item_id": 1, "quantity": 2, "unit_price_cents": 1500}],
        "delivery_charge_cents": 0,
        "discount_cents": 0,
        "amount_paid_cents": 3000,            (optional)
        "payments": [{"account": "Cash", "amount_cents": 1000}],  (SPLIT)
        "idempotency_key": "till-3-000182"    (optional)
    }
    """
    try:
        result = sales_service.create_sale(json_body(), actor=current_actor())
        status = 200 if result["replayed"] else 201
        message = "Sale already recorded" if result["replayed"] else f"Sale {result['transaction_id']} created"
        return jsonify({"success": True, "message": message, **result}), status
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("create_sale", e)


@sales_bp.get("")
def list_sales_route():
    status = request.args.get("status")
    customer_id = request.args.get("customer_id", type=int)
    limit = request.args.get("limit", default=100, type=int)
    sales = sales_service.list_sales(status=status, customer_id=customer_id, limit=limit)
    return jsonify({"success": True, "sales": [s.to_dict() for s in sales]})


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({
            "success": True,
            "sale": sale.to_dict(),
            "lines": [line.to_dict() for line in sale.lines],
            "payments": [p.to_dict() for p in sale.payments],
        })
    except ServiceError as e:
        return error_response(e)


@sales_bp.get("/by-number/<transaction_number>")
def get_sale_by_number_route(transaction_number: str):
    try:
        sale = sales_service.get_sale_by_number(transaction_number)
        return jsonify({"success": True, "sale": sale.to_dict(), "lines": [line.to_dict() for line in sale.lines]})
    except ServiceError as e:
        return error_response(e)


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    """Request body: {"reason": "Customer changed mind"}"""
    try:
        data = json_body()
        result = sales_service.cancel_sale(sale_id, reason=data.get("reason"), actor=current_actor())
        return jsonify({"success": True, "message": "Sale cancelled", **result})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("cancel_sale", e)


@sales_bp.post("/<int:sale_id>/returns")
def process_return_route(sale_id: int):
    """
    Request body:
    {
        "lines": [{"sale_line_id": 12, "quantity": 1}],
        "reason": "Damaged",
        "refund_account": "Cash"
    }
    """
    try:
        data = json_body()
        result = return_service.process_return(
            sale_id,
            data.get("lines"),
            reason=data.get("reason"),
            actor=current_actor(),
            refund_account=data.get("refund_account"),
        )
        return jsonify({"success": True, "message": "Return processed", **result}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("process_return", e)


@sales_bp.get("/<int:sale_id>/returns")
def list_returns_route(sale_id: int):
    try:
        returns = return_service.list_returns(sale_id)
        return jsonify({"success": True, "returns": [r.to_dict() for r in returns]})
    except ServiceError as e:
        return error_response(e)


@sales_bp.post("/<int:sale_id>/payments")
def sale_payment_route(sale_id: int):
    """Request body: {"amount_cents": 2000, "account": "M-Pesa"}"""
    try:
        data = json_body()
        result = sales_service.record_sale_payment(
            sale_id,
            data.get("amount_cents"),
            account=data.get("account"),
            actor=current_actor(),
            note=data.get("note"),
        )
        return jsonify({"success": True, "message": "Payment recorded", **result}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("record_sale_payment", e)
