"""
AuditMixin: common columns carried by every portal table.

Adds:
  - del_yn soft-delete flag ('N' = live, 'Y' = deleted)
  - guid: random UUID assigned on insert
  - created_at / created_by, updated_at / updated_by

Usage:
    class MyModel(AuditMixin, db.Model):
        ...

    select(MyModel).where(MyModel.active_filter(), ...)
"""

import uuid
from datetime import datetime, timezone

from flask import g, has_request_context

from it_portal.models import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _current_actor() -> str | None:
    """Employee number of the authenticated caller, if any."""
    if not has_request_context():
        return None
    user_id = getattr(g, "jwt_user_id", None)
    return str(user_id) if user_id is not None else None


class AuditMixin:
    """Mixin that adds audit and soft-delete columns to any SQLAlchemy model."""

    del_yn = db.Column(db.String(1), nullable=False, default="N", comment="N | Y")
    guid = db.Column(db.String(38), nullable=False, default=lambda: str(uuid.uuid4()))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by = db.Column(db.String(32), nullable=True, default=_current_actor)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    updated_by = db.Column(
        db.String(32), nullable=True, default=_current_actor, onupdate=_current_actor
    )

    @classmethod
    def active_filter(cls):
        """SQL clause excluding soft-deleted rows."""
        return cls.del_yn == "N"
