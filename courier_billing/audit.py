"""
courier_billing/audit.py

Audit trail helpers for party rate slabs.

Goals:
- Capture WHO changed WHICH rate slab, with BEFORE/AFTER snapshots.
- Store the username (not the user id) so the trail survives user deletion.

IMPORTANT:
- This helper ADDS PartyRateSlabAudit entries to the current SQLAlchemy session.
  The caller flushes the slab first and commits once, so the slab change and its
  audit row land in the same transaction or not at all.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import PartyRateSlab, PartyRateSlabAudit, _json_value

AUDIT_ACTIONS = ("create", "update", "delete")


def serialize_model(instance: Any) -> Dict[str, Any]:
    """
    Snapshot a model instance's scalar columns (relationships are skipped).

    Dates and decimals become strings so the snapshot is JSON-safe and compares
    equal across SQLite and PostgreSQL.
    """
    return {column.name: _json_value(getattr(instance, column.name)) for column in instance.__table__.columns}


def _actor() -> Optional[str]:
    if has_request_context() and current_user and current_user.is_authenticated:
        return current_user.username
    return None


def log_action(
    slab: PartyRateSlab,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> PartyRateSlabAudit:
    """
    Add an audit row for `slab` to the current db session.

    action: create (after only) / update (before + after) / delete (before only).
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")

    if slab.id is None:
        raise ValueError("log_action needs a flushed slab (id is None).")

    entry = PartyRateSlabAudit(
        party_rate_slab_id=slab.id,
        action=action,
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        changed_by=_actor(),
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    return entry
