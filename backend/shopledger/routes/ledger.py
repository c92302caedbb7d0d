# Overview: Flask API routes for ledger accounts, statements and transfers.

from flask import Blueprint, jsonify, request

from ..errors import ServiceError
from ..services import ledger_service
from . import current_actor, error_response, internal_error, json_body

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- as_of and end filtering is inclusive: occurred_at <= as_of.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("/accounts")
def list_accounts_route():
    return jsonify({"success": True, "accounts": ledger_service.list_accounts()})


@ledger_bp.get("/accounts/<path:name>/balance")
def balance_route(name: str):
    try:
        account = ledger_service.canonical_account(name)
        balance = ledger_service.get_balance(account, as_of=request.args.get("as_of"))
        return jsonify({"success": True, "account": account, "balance_cents": balance})
    except ServiceError as e:
        return error_response(e)
    except ValueError:
        return jsonify({"success": False, "message": "as_of must be an ISO-8601 datetime"}), 400


@ledger_bp.get("/accounts/<path:name>/statement")
def account_statement_route(name: str):
    """GetAccountStatement: ?start=2024-01-01T00:00:00Z&end=..."""
    try:
        statement = ledger_service.account_statement(
            name, request.args.get("start"), request.args.get("end")
        )
        return jsonify({"success": True, **statement})
    except ServiceError as e:
        return error_response(e)
    except ValueError:
        return jsonify({"success": False, "message": "start and end must be ISO-8601 datetimes"}), 400


@ledger_bp.get("/entries")
def list_entries_route():
    try:
        entries = ledger_service.list_entries(
            reference=request.args.get("reference"),
            account=request.args.get("account"),
            limit=request.args.get("limit", default=200, type=int),
        )
        return jsonify({"success": True, "entries": [e.to_dict() for e in entries]})
    except ServiceError as e:
        return error_response(e)


@ledger_bp.post("/transfers")
def transfer_route():
    """Request body: {"from_account": "Cash", "to_account": "Bank", "amount_cents": 50000}"""
    try:
        data = json_body()
        result = ledger_service.transfer(
            data.get("from_account"),
            data.get("to_account"),
            data.get("amount_cents"),
            actor=current_actor(),
            description=data.get("description"),
        )
        return jsonify({"success": True, "message": "Transfer posted", **result}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("transfer", e)
