# Overview: Sequential document identifiers allocated under a bounded per-sequence lock.

"""
Identifier Service

Allocates unique, monotonically increasing document identifiers.

RULES:
- Unique: the counter row is advanced with one atomic UPDATE, never read-then-write.
- Gap-tolerant: an allocation inside a transaction that later rolls back
  leaves a gap; that is acceptable, duplicates are not.
- Bounded: each sequence has its own in-process lock, acquired with a
  timeout. On timeout the caller gets BusyError instead of waiting forever.
  Unrelated sequences never wait on each other.

FORMAT POLICY (keyed by prefix):
- Default: zero-padded fixed width, e.g. PUR-001, RET-014.
- Flat sequences continue the shop's pre-printed paper numbering from a
  fixed baseline and render as the bare number: sale receipts start at
  110001, quotations at 5001.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import BusyError, ValidationError
from ..extensions import db
from ..models import DocumentSequence


@dataclass(frozen=True)
class SequencePolicy:
    baseline: int = 1
    width: int = 3
    flat: bool = False

    def render(self, prefix: str, number: int) -> str:
        if self.flat:
            return str(number)
        return f"{prefix}-{number:0{self.width}d}"


DEFAULT_POLICY = SequencePolicy()

SEQUENCE_POLICIES = {
    "SALE": SequencePolicy(baseline=110001, flat=True),
    "QUO": SequencePolicy(baseline=5001, flat=True),
}

_registry_lock = threading.Lock()
_sequence_locks: dict[str, threading.Lock] = {}


def policy_for(prefix: str) -> SequencePolicy:
    return SEQUENCE_POLICIES.get(prefix, DEFAULT_POLICY)


def sequence_lock(sequence_name: str) -> threading.Lock:
    with _registry_lock:
        lock = _sequence_locks.get(sequence_name)
        if lock is None:
            lock = threading.Lock()
            _sequence_locks[sequence_name] = lock
        return lock


def _advance(sequence_name: str, baseline: int) -> int:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.sequence_name == sequence_name)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        db.session.add(DocumentSequence(sequence_name=sequence_name, next_number=baseline + 1))
        try:
            db.session.flush()
        except IntegrityError:
            # Another process created the row first; the caller's unit of work is lost
            db.session.rollback()
            raise BusyError(
                f"Sequence {sequence_name} was initialised concurrently, try again",
                details={"sequence_name": sequence_name},
            )
        return baseline

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(sequence_name=sequence_name)
        .scalar()
    )
    return current - 1


def next_identifier(sequence_name: str, prefix: str, *, timeout: float | None = None) -> str:
    """
    Allocate the next identifier for sequence_name, formatted per prefix policy.

    Runs inside the caller's transaction (flush only, no commit).
    Raises BusyError if the sequence lock is not acquired within timeout.
    """
    if not sequence_name:
        raise ValidationError("sequence_name is required")
    if prefix is None:
        raise ValidationError("prefix is required")

    if timeout is None:
        timeout = current_app.config.get("IDENTIFIER_LOCK_TIMEOUT_SECONDS", 30)

    policy = policy_for(prefix)
    lock = sequence_lock(sequence_name)

    if not lock.acquire(timeout=timeout):
        current_app.logger.warning("Identifier lock timeout for sequence %s", sequence_name)
        raise BusyError(
            f"Sequence {sequence_name} is busy, try again",
            details={"sequence_name": sequence_name, "timeout_seconds": timeout},
        )
    try:
        number = _advance(sequence_name, policy.baseline)
    finally:
        lock.release()

    return policy.render(prefix, number)


def peek_next_number(sequence_name: str, prefix: str) -> int:
    """Number the next allocation would receive (for display only; not reserved)."""
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(sequence_name=sequence_name)
        .scalar()
    )
    if current is None:
        return policy_for(prefix).baseline
    return current
