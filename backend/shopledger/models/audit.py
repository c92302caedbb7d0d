from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only audit log for cross-cutting domain events.

    Written inside the same DB transaction as the event it records.
    """
    __tablename__ = "audit_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_ref = db.Column(db.String(64), nullable=True, index=True)
    actor = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_ref": self.entity_ref,
            "actor": self.actor,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class ErrorLog(db.Model):
    """Unexpected internal failures (function, message, stack)."""
    __tablename__ = "error_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    function_name = db.Column(db.String(128), nullable=False)
    message = db.Column(db.Text, nullable=False)
    stack = db.Column(db.Text, nullable=True)
    actor = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "function_name": self.function_name,
            "message": self.message,
            "stack": self.stack,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }
