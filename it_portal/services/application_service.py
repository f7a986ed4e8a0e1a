"""
Application service layer.

Submission, lookup and decision entry points for approval applications.

Rules:
  - db.session.commit() happens only through unit_of_work(); helpers here
    flush at most.
  - Identifiers come from named IdSequence counters:
        application  APF_{yyyy}{8-digit seq}   e.g. APF_202600000001
        origin link  APF_REL_{seq}
  - Applications, steps and origin links are created together in one
    transaction and never re-ordered afterwards.
"""

from __future__ import annotations

import json
import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from it_portal.core.exceptions import ApplicationNotFound, ValidationError
from it_portal.models import db
from it_portal.models.application import (
    DECISION_NONE,
    STATUS_APPROVED,
    STATUS_PENDING,
    Application,
    ApprovalStep,
    IdSequence,
    OriginLink,
)
from it_portal.services import approval_chain
from it_portal.services.helpers.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

APPLICATION_SEQUENCE = "S_APF"
ORIGIN_LINK_SEQUENCE = "S_APF_REL_SNO"

# Statuses that freeze the governed business record against edits / deletes.
LOCKING_STATUSES = (STATUS_PENDING, STATUS_APPROVED)


# ── Identifier generation ─────────────────────────────────────────────────────


def next_sequence_value(name: str) -> int:
    """Increment and return the named counter (row-locked where supported)."""
    seq = db.session.execute(
        select(IdSequence).where(IdSequence.name == name).with_for_update()
    ).scalar_one_or_none()
    if seq is None:
        seq = IdSequence(name=name, last_value=0)
        db.session.add(seq)
    seq.last_value = (seq.last_value or 0) + 1
    db.session.flush()
    return seq.last_value


def new_application_id(today: date | None = None) -> str:
    year = (today or date.today()).year
    return f"APF_{year}{next_sequence_value(APPLICATION_SEQUENCE):08d}"


def new_origin_link_id() -> str:
    return f"APF_REL_{next_sequence_value(ORIGIN_LINK_SEQUENCE)}"


# ── Validation ────────────────────────────────────────────────────────────────


def _clean_approver_ids(raw) -> list[str]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(
            "approver_ids must be a non-empty ordered array",
            details={"approver_ids": "non-empty array required"},
        )
    cleaned = []
    for i, value in enumerate(raw):
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ValidationError(
                f"approver_ids[{i}] is blank",
                details={f"approver_ids[{i}]": "required"},
            )
        if len(text) > 32:
            raise ValidationError(
                f"approver_ids[{i}] must be ≤ 32 characters",
                details={f"approver_ids[{i}]": "too long"},
            )
        cleaned.append(text)
    return cleaned


def _clean_detail_document(raw) -> str | None:
    """Accept a JSON string as-is, or serialise an object the caller sent inline."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, ensure_ascii=False)
    raise ValidationError(
        "detail_document must be a JSON string or object",
        details={"detail_document": "invalid type"},
    )


def _clean_origin(data: dict) -> tuple[str, str, int | None] | None:
    table = (data.get("origin_table") or "").strip()
    if not table:
        return None
    pk = str(data.get("origin_pk") or "").strip()
    if not pk:
        raise ValidationError(
            "origin_pk is required when origin_table is given",
            details={"origin_pk": "required"},
        )
    if len(table) > 10:
        raise ValidationError("origin_table must be ≤ 10 characters", details={"origin_table": "too long"})
    sno = data.get("origin_sno")
    if sno is None or sno == "":
        return table, pk, None
    try:
        return table, pk, int(sno)
    except (TypeError, ValueError):
        raise ValidationError(
            "origin_sno must be an integer",
            details={"origin_sno": "integer required"},
        ) from None


# ── Submit ────────────────────────────────────────────────────────────────────


def submit(data: dict, requester_id: str | None = None) -> str:
    """Create an application, its origin link and its ordered approval chain.

    Args:
        data: {title, detail_document, requester_id?, requester_opinion,
               approver_ids: [...], origin_table?, origin_pk?, origin_sno?}
        requester_id: Fallback requester (the authenticated caller) used
                      when the body carries none.

    Returns:
        The new application id.

    Raises:
        ValidationError: malformed approver list, origin or document.
    """
    approver_ids = _clean_approver_ids(data.get("approver_ids"))
    detail = _clean_detail_document(data.get("detail_document"))
    origin = _clean_origin(data)
    title = (data.get("title") or "").strip() or None
    if title and len(title) > 200:
        raise ValidationError("title must be ≤ 200 characters", details={"title": "too long"})
    requester = (str(data.get("requester_id") or "").strip() or requester_id or None)

    with unit_of_work(label="submit"):
        today = date.today()
        application = Application(
            id=new_application_id(today),
            status=STATUS_PENDING,
            title=title,
            detail_document=detail,
            requester_id=requester,
            request_date=today,
            requester_opinion=data.get("requester_opinion"),
        )
        db.session.add(application)

        if origin is not None:
            table, pk, sno = origin
            db.session.add(OriginLink(
                id=new_origin_link_id(),
                application_id=application.id,
                origin_table=table,
                origin_pk=pk,
                origin_sno=sno,
            ))

        last = len(approver_ids)
        for sequence, approver_id in enumerate(approver_ids, start=1):
            db.session.add(ApprovalStep(
                application_id=application.id,
                sequence=sequence,
                approver_id=approver_id,
                decision_kind=DECISION_NONE,
                is_final=sequence == last,
            ))
        db.session.flush()
        application_id = application.id

    logger.info(
        "Application submitted: %s with %d approvers",
        application_id,
        len(approver_ids),
        extra={"application_id": application_id, "event_type": "submit"},
    )
    return application_id


# ── Decide ────────────────────────────────────────────────────────────────────


def decide(application_id: str, approver_id: str | None, opinion: str | None, outcome) -> dict:
    """Record one decision in its own transaction."""
    with unit_of_work(label="decide", application_id=application_id):
        result = approval_chain.record_decision(application_id, approver_id, opinion, outcome)
    return result.to_dict()


# ── Queries ───────────────────────────────────────────────────────────────────


def get_application(application_id: str) -> dict:
    """Header plus ordered steps. Raises ApplicationNotFound."""
    application, steps = approval_chain.load_chain(application_id)
    data = application.to_dict(include_steps=False)
    data["approvers"] = [s.to_dict() for s in steps]
    current = approval_chain.current_step(steps)
    data["current_approver_id"] = current.approver_id if current else None
    return data


def get_applications(application_ids: list[str]) -> tuple[list[dict], list[str]]:
    """Look up several applications; returns (found, missing ids) in request order."""
    found, missing = [], []
    for application_id in application_ids:
        try:
            found.append(get_application(application_id))
        except ApplicationNotFound:
            missing.append(application_id)
    return found, missing


def pending_for_approver(approver_id: str) -> list[dict]:
    """Open applications whose currently actionable step belongs to ``approver_id``."""
    open_steps = (
        select(ApprovalStep.application_id)
        .where(
            ApprovalStep.approver_id == approver_id,
            ApprovalStep.decision_kind == DECISION_NONE,
        )
    )
    candidates = db.session.execute(
        select(Application)
        .where(
            Application.status == STATUS_PENDING,
            Application.active_filter(),
            Application.id.in_(open_steps),
        )
        .options(selectinload(Application.steps))
        .order_by(Application.id.asc())
    ).scalars().all()

    pending = []
    for application in candidates:
        current = approval_chain.current_step(application.steps)
        if current is not None and current.approver_id == approver_id:
            data = application.to_dict(include_steps=False)
            data["current_sequence"] = current.sequence
            pending.append(data)
    return pending


def _origin_filters(origin_table: str, origin_pk: str, origin_sno: int | None) -> list:
    filters = [
        OriginLink.origin_table == origin_table,
        OriginLink.origin_pk == origin_pk,
        OriginLink.active_filter(),
    ]
    if origin_sno is None:
        filters.append(OriginLink.origin_sno.is_(None))
    else:
        filters.append(OriginLink.origin_sno == origin_sno)
    return filters


def find_applications_for_origin(
    origin_table: str,
    origin_pk: str,
    origin_sno: int | None = None,
) -> list[Application]:
    """Applications linked to a business record, newest first."""
    return list(db.session.execute(
        select(Application)
        .join(OriginLink, OriginLink.application_id == Application.id)
        .where(*_origin_filters(origin_table, origin_pk, origin_sno))
        .order_by(OriginLink.created_at.desc(), Application.id.desc())
    ).scalars().all())


def is_origin_locked(origin_table: str, origin_pk: str, origin_sno: int | None = None) -> bool:
    """True while any linked application is PENDING or APPROVED.

    The project and cost services refuse edits and deletes of a record in
    that state.
    """
    row = db.session.execute(
        select(OriginLink.id)
        .join(Application, OriginLink.application_id == Application.id)
        .where(
            *_origin_filters(origin_table, origin_pk, origin_sno),
            Application.status.in_(LOCKING_STATUSES),
            Application.active_filter(),
        )
        .limit(1)
    ).first()
    return row is not None


def origin_summary(origin_table: str, origin_pk: str, origin_sno: int | None = None) -> dict:
    """Latest linked application (id + status) and the lock flag for a record."""
    applications = find_applications_for_origin(origin_table, origin_pk, origin_sno)
    latest = applications[0] if applications else None
    return {
        "origin_table": origin_table,
        "origin_pk": origin_pk,
        "origin_sno": origin_sno,
        "latest_application_id": latest.id if latest else None,
        "latest_status": latest.status if latest else None,
        "application_count": len(applications),
        "locked": is_origin_locked(origin_table, origin_pk, origin_sno),
    }
