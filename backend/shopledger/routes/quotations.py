# Overview: Flask API routes for quotations and quotation conversion.

from flask import Blueprint, jsonify, request

from ..errors import ServiceError
from ..services import quotation_service
from . import current_actor, error_response, internal_error, json_body

quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")


@quotations_bp.post("")
def create_quotation_route():
    try:
        quotation = quotation_service.create_quotation(json_body(), actor=current_actor())
        return jsonify({
            "success": True,
            "message": f"Quotation {quotation.quotation_number} created",
            "quotation": quotation.to_dict(),
        }), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("create_quotation", e)


@quotations_bp.get("")
def list_quotations_route():
    quotations = quotation_service.list_quotations(status=request.args.get("status"))
    return jsonify({"success": True, "quotations": [q.to_dict() for q in quotations]})


@quotations_bp.get("/<int:quotation_id>")
def get_quotation_route(quotation_id: int):
    try:
        return jsonify({"success": True, "quotation": quotation_service.get_quotation(quotation_id).to_dict()})
    except ServiceError as e:
        return error_response(e)


@quotations_bp.post("/<int:quotation_id>/accept")
def accept_quotation_route(quotation_id: int):
    try:
        quotation = quotation_service.accept_quotation(quotation_id, actor=current_actor())
        return jsonify({"success": True, "message": "Quotation accepted", "quotation": quotation.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("accept_quotation", e)


@quotations_bp.post("/<int:quotation_id>/reject")
def reject_quotation_route(quotation_id: int):
    try:
        quotation = quotation_service.reject_quotation(quotation_id, actor=current_actor())
        return jsonify({"success": True, "message": "Quotation rejected", "quotation": quotation.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("reject_quotation", e)


@quotations_bp.post("/<int:quotation_id>/convert")
def convert_quotation_route(quotation_id: int):
    """Request body: {"payment_mode": "Cash", "amount_paid_cents": 5000}"""
    try:
        data = json_body()
        result = quotation_service.convert_quotation(
            quotation_id,
            data.get("payment_mode"),
            actor=current_actor(),
            amount_paid_cents=data.get("amount_paid_cents"),
            payments=data.get("payments"),
            location=data.get("location"),
        )
        return jsonify({
            "success": True,
            "message": f"Quotation converted to sale {result['transaction_id']}",
            **result,
        }), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("convert_quotation", e)
