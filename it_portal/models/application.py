"""
Approval application models.

Four tables:
  Application        one header row per approval request.
  ApprovalStep       ordered approval chain, one row per (application, sequence).
  OriginLink         ties an application to the business record it governs
                     (project, cost item, ...).
  IdSequence         named counters used to mint application / link ids.

Status lifecycle (Application.status):
    PENDING → APPROVED   (final step approved, directly or by cascade)
            → REJECTED   (any step rejected)

Step lifecycle (ApprovalStep.decision_kind):
    NONE → DECIDED  (outcome APPROVED | REJECTED, never reverted)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from it_portal.models import db
from it_portal.models.base import AuditMixin

# ── Constants ─────────────────────────────────────────────────────────────────

STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"

DECISION_NONE = "NONE"
DECISION_DECIDED = "DECIDED"

OUTCOME_APPROVED = "APPROVED"
OUTCOME_REJECTED = "REJECTED"


@dataclass(frozen=True)
class Decision:
    """One approver action, applied verbatim to every step it covers."""

    outcome: str
    opinion: str | None
    decided_on: date


# ── Application ──────────────────────────────────────────────────────────────


class Application(AuditMixin, db.Model):
    """Approval request header.

    Business rules:
    - id is minted at submission (APF_{yyyy}{8-digit seq}) and never changes.
    - status is only written by the approval chain engine.
    - detail_document is an opaque JSON blob rendered by the front end; its
      approvalLine member mirrors the step records but is not authoritative.
    - version is bumped on every decision; a stale version at flush means a
      concurrent decision won the race.
    """

    __tablename__ = "applications"

    id = db.Column(db.String(32), primary_key=True)
    status = db.Column(
        db.String(32),
        nullable=False,
        default=STATUS_PENDING,
        index=True,
        comment="PENDING | APPROVED | REJECTED",
    )
    title = db.Column(db.String(200), nullable=True)
    detail_document = db.Column(
        db.Text,
        nullable=True,
        comment="Free-form JSON; approvalLine entries carry {id, date?}",
    )
    requester_id = db.Column(db.String(32), nullable=True, index=True)
    request_date = db.Column(db.Date, nullable=True)
    requester_opinion = db.Column(db.String(1000), nullable=True)
    version = db.Column(db.Integer, nullable=False)

    steps = db.relationship(
        "ApprovalStep",
        back_populates="application",
        order_by="ApprovalStep.sequence",
        lazy="select",
        cascade="all, delete-orphan",
    )
    origin_links = db.relationship(
        "OriginLink",
        back_populates="application",
        lazy="select",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_steps: bool = True) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "detail_document": self.detail_document,
            "status": self.status,
            "requester_id": self.requester_id,
            "request_date": self.request_date.isoformat() if self.request_date else None,
            "requester_opinion": self.requester_opinion,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_steps:
            data["approvers"] = [s.to_dict() for s in self.steps]
        return data

    def __repr__(self) -> str:
        return f"<Application {self.id} {self.status}>"


# ── ApprovalStep ─────────────────────────────────────────────────────────────


class ApprovalStep(AuditMixin, db.Model):
    """One slot in an application's approval chain.

    Composite key (application_id, sequence); sequence starts at 1 and
    defines the only order in which steps may be decided.
    """

    __tablename__ = "approval_steps"

    application_id = db.Column(
        db.String(32),
        db.ForeignKey("applications.id", ondelete="CASCADE"),
        primary_key=True,
    )
    sequence = db.Column(db.Integer, primary_key=True, autoincrement=False)
    approver_id = db.Column(db.String(32), nullable=False, index=True)
    decision_kind = db.Column(
        db.String(16),
        nullable=False,
        default=DECISION_NONE,
        comment="NONE | DECIDED",
    )
    decision_date = db.Column(db.Date, nullable=True)
    opinion = db.Column(db.String(1000), nullable=True)
    outcome = db.Column(
        db.String(16),
        nullable=True,
        comment="APPROVED | REJECTED (only when DECIDED)",
    )
    is_final = db.Column(db.Boolean, nullable=False, default=False)

    application = db.relationship("Application", back_populates="steps")

    @property
    def is_decided(self) -> bool:
        return self.decision_kind == DECISION_DECIDED

    @property
    def is_approved(self) -> bool:
        return self.is_decided and self.outcome == OUTCOME_APPROVED

    def apply_decision(self, decision: Decision) -> "ApprovalStep":
        """Transition NONE → DECIDED. Returns the updated step; caller saves it."""
        if self.is_decided:
            raise ValueError(
                f"step {self.application_id}#{self.sequence} is already decided"
            )
        self.decision_kind = DECISION_DECIDED
        self.outcome = decision.outcome
        self.decision_date = decision.decided_on
        self.opinion = decision.opinion
        return self

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "approver_id": self.approver_id,
            "decision_kind": self.decision_kind,
            "decision_date": self.decision_date.isoformat() if self.decision_date else None,
            "opinion": self.opinion,
            "outcome": self.outcome,
            "is_final": self.is_final,
        }

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.application_id}#{self.sequence} "
            f"{self.approver_id} {self.decision_kind}/{self.outcome}>"
        )


# ── OriginLink ───────────────────────────────────────────────────────────────


class OriginLink(AuditMixin, db.Model):
    """Link between an application and the business record it governs.

    origin_table is the owning table code (BPRJTM = project, BCOSTM = cost
    item); origin_pk / origin_sno are that record's key columns.
    """

    __tablename__ = "application_origins"

    id = db.Column(db.String(36), primary_key=True)
    application_id = db.Column(
        db.String(32),
        db.ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    origin_table = db.Column(db.String(10), nullable=False)
    origin_pk = db.Column(db.String(32), nullable=False)
    origin_sno = db.Column(db.Integer, nullable=True)

    application = db.relationship("Application", back_populates="origin_links")

    __table_args__ = (
        db.Index("ix_application_origin", "origin_table", "origin_pk", "origin_sno"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "origin_table": self.origin_table,
            "origin_pk": self.origin_pk,
            "origin_sno": self.origin_sno,
        }


# ── IdSequence ───────────────────────────────────────────────────────────────


class IdSequence(db.Model):
    """Named counter standing in for a database sequence (portable to SQLite)."""

    __tablename__ = "id_sequences"

    name = db.Column(db.String(40), primary_key=True)
    last_value = db.Column(db.BigInteger, nullable=False, default=0)
