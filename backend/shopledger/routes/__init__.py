# Overview: Shared helpers for JSON API routes.

from __future__ import annotations

from flask import current_app, jsonify, request

from ..errors import ServiceError
from ..services.audit_service import log_error


def current_actor() -> str | None:
    """Acting user name; authentication happens upstream and forwards it."""
    return request.headers.get("X-Actor") or None


def error_response(exc: ServiceError):
    return jsonify(exc.to_dict()), exc.http_status


def internal_error(function_name: str, exc: Exception):
    current_app.logger.exception("Unhandled error in %s", function_name)
    log_error(function_name, exc, actor=current_actor())
    return jsonify({"success": False, "message": "Internal server error"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
