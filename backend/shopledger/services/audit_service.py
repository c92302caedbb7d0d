# Overview: Append-only audit and error log.

from __future__ import annotations

import json
import traceback

from flask import current_app

from ..extensions import db
from ..models import AuditEvent, ErrorLog
from ..time_utils import utcnow

"""
Audit invariants:

- audit_events is append-only; no updates or deletes.
- append_audit_event() runs inside the caller's transaction, so a rolled back
  operation leaves no audit row behind.
- log_error() commits on its own after the failed work was rolled back and
  never raises: a broken error log must not mask the original failure.
"""


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_ref: str | None = None,
    actor: str | None = None,
    note: str | None = None,
    payload: dict | None = None,
) -> AuditEvent:
    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_ref=entity_ref,
        actor=actor,
        note=note[:255] if note else None,
        payload=json.dumps(payload, sort_keys=True, default=str) if payload else None,
        occurred_at=utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def log_error(function_name: str, exc: BaseException, actor: str | None = None) -> None:
    try:
        db.session.rollback()
        db.session.add(ErrorLog(
            function_name=function_name,
            message=str(exc) or exc.__class__.__name__,
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            actor=actor,
            occurred_at=utcnow(),
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Could not write error log entry for %s", function_name)


def list_audit_events(*, entity_ref: str | None = None, event_type: str | None = None, limit: int = 200):
    q = db.session.query(AuditEvent)
    if entity_ref:
        q = q.filter(AuditEvent.entity_ref == entity_ref)
    if event_type:
        q = q.filter(AuditEvent.event_type == event_type)
    limit = max(1, min(limit, 500))
    return q.order_by(AuditEvent.id.desc()).limit(limit).all()
