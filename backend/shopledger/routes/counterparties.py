# Overview: Flask API routes for customers and suppliers: records, payments and statements.

from flask import Blueprint, jsonify, request

from ..errors import ServiceError
from ..services import credit_service, statement_service
from . import current_actor, error_response, internal_error, json_body

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


# =============================================================================
# CUSTOMERS
# =============================================================================

@customers_bp.post("")
def create_customer_route():
    try:
        customer = credit_service.create_customer(json_body(), actor=current_actor())
        return jsonify({
            "success": True,
            "message": f"Customer {customer.customer_code} created",
            "customer": customer.to_dict(),
        }), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("create_customer", e)


@customers_bp.get("")
def list_customers_route():
    return jsonify({"success": True, "customers": [c.to_dict() for c in credit_service.list_customers()]})


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        return jsonify({"success": True, "customer": credit_service.get_customer(customer_id).to_dict()})
    except ServiceError as e:
        return error_response(e)


@customers_bp.delete("/<int:customer_id>")
def delete_customer_route(customer_id: int):
    try:
        credit_service.delete_customer(customer_id, actor=current_actor())
        return jsonify({"success": True, "message": "Customer deleted"})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("delete_customer", e)


@customers_bp.post("/<int:customer_id>/payments")
def customer_payment_route(customer_id: int):
    """Request body: {"amount_cents": 10000, "account": "M-Pesa", "reference": "QK12..."}"""
    try:
        data = json_body()
        result = credit_service.record_customer_payment(
            customer_id,
            data.get("amount_cents"),
            account=data.get("account"),
            reference=data.get("reference"),
            note=data.get("note"),
            actor=current_actor(),
        )
        return jsonify({"success": True, "message": "Payment recorded", **result}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("record_customer_payment", e)


@customers_bp.get("/<int:customer_id>/statement")
def customer_statement_route(customer_id: int):
    """GetCustomerStatement: ?start=&end="""
    try:
        statement = statement_service.customer_statement(
            customer_id, request.args.get("start"), request.args.get("end")
        )
        return jsonify({"success": True, **statement})
    except ServiceError as e:
        return error_response(e)
    except ValueError:
        return jsonify({"success": False, "message": "start and end must be ISO-8601 datetimes"}), 400


# =============================================================================
# SUPPLIERS
# =============================================================================

@suppliers_bp.post("")
def create_supplier_route():
    try:
        supplier = credit_service.create_supplier(json_body(), actor=current_actor())
        return jsonify({
            "success": True,
            "message": f"Supplier {supplier.supplier_code} created",
            "supplier": supplier.to_dict(),
        }), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("create_supplier", e)


@suppliers_bp.get("")
def list_suppliers_route():
    return jsonify({"success": True, "suppliers": [s.to_dict() for s in credit_service.list_suppliers()]})


@suppliers_bp.delete("/<int:supplier_id>")
def delete_supplier_route(supplier_id: int):
    try:
        credit_service.delete_supplier(supplier_id, actor=current_actor())
        return jsonify({"success": True, "message": "Supplier deleted"})
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("delete_supplier", e)


@suppliers_bp.post("/<int:supplier_id>/payments")
def supplier_payment_route(supplier_id: int):
    try:
        data = json_body()
        result = credit_service.record_supplier_payment(
            supplier_id,
            data.get("amount_cents"),
            account=data.get("account"),
            reference=data.get("reference"),
            note=data.get("note"),
            actor=current_actor(),
        )
        return jsonify({"success": True, "message": "Payment recorded", **result}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("record_supplier_payment", e)


@suppliers_bp.post("/<int:supplier_id>/credit-notes")
def supplier_credit_note_route(supplier_id: int):
    """Request body: {"amount_cents": 1500, "reference": "CN-4471", "note": "Two bags split"}"""
    try:
        data = json_body()
        result = credit_service.record_supplier_credit_note(
            supplier_id,
            data.get("amount_cents"),
            reference=data.get("reference"),
            note=data.get("note"),
            actor=current_actor(),
        )
        return jsonify({"success": True, "message": "Credit note recorded", **result}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("record_supplier_credit_note", e)


@suppliers_bp.get("/<int:supplier_id>/statement")
def supplier_statement_route(supplier_id: int):
    try:
        statement = statement_service.supplier_statement(
            supplier_id, request.args.get("start"), request.args.get("end")
        )
        return jsonify({"success": True, **statement})
    except ServiceError as e:
        return error_response(e)
    except ValueError:
        return jsonify({"success": False, "message": "start and end must be ISO-8601 datetimes"}), 400
