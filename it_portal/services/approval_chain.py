"""
Approval chain engine.

Owns every state transition of an application's approval chain:

    1. find the step whose turn it is (first undecided step behind an
       all-approved prefix)
    2. check the caller is that step's approver
    3. record the decision, cascading an approval over immediately
       following steps held by the same approver
    4. mirror the decision dates into the detail document
    5. close the application when the chain is finished

Rules:
  - Steps are decided strictly in ascending sequence order.
  - A rejection anywhere halts the chain for good.
  - Nothing here commits. Callers wrap record_decision() in
    ``unit_of_work()``; this module only flushes so that the optimistic
    version check fires inside the caller's transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import select

from it_portal.core.exceptions import (
    ApplicationNotFound,
    ApproverRequired,
    InvalidOutcome,
    NoActionableStep,
    WrongApprover,
)
from it_portal.models import db
from it_portal.models.application import (
    OUTCOME_APPROVED,
    OUTCOME_REJECTED,
    STATUS_APPROVED,
    STATUS_REJECTED,
    Application,
    ApprovalStep,
    Decision,
)
from it_portal.services import detail_document
from it_portal.services.detail_document import SyncResult

logger = logging.getLogger(__name__)

# Accepted spellings → canonical outcome. The portal UI sends the Korean labels.
_OUTCOME_ALIASES = {
    "APPROVED": OUTCOME_APPROVED,
    "APPROVE": OUTCOME_APPROVED,
    "승인": OUTCOME_APPROVED,
    "REJECTED": OUTCOME_REJECTED,
    "REJECT": OUTCOME_REJECTED,
    "반려": OUTCOME_REJECTED,
}


@dataclass
class DecisionResult:
    application_id: str
    status: str
    decided_sequences: list[int] = field(default_factory=list)
    sync: SyncResult = field(default_factory=SyncResult)

    def to_dict(self) -> dict:
        return {
            "application_id": self.application_id,
            "status": self.status,
            "decided_sequences": self.decided_sequences,
            "document_synced": self.sync.changed,
        }


def _today() -> date:
    return date.today()


# ── Pure chain rules ──────────────────────────────────────────────────────────


def parse_outcome(value) -> str:
    """Normalise an outcome label; raise InvalidOutcome if unrecognised."""
    if value is None or not isinstance(value, str):
        raise InvalidOutcome(value)
    key = value.strip()
    canonical = _OUTCOME_ALIASES.get(key.upper()) or _OUTCOME_ALIASES.get(key)
    if canonical is None:
        raise InvalidOutcome(value)
    return canonical


def current_step(steps: list[ApprovalStep]) -> ApprovalStep | None:
    """Return the step eligible for a decision, or None.

    ``steps`` must be in ascending sequence order. None means every step is
    decided or a non-approved decision halted the chain upstream.
    """
    for step in steps:
        if not step.is_decided:
            return step
        if step.outcome != OUTCOME_APPROVED:
            return None
    return None


def cascade_run(steps: list[ApprovalStep], candidate: ApprovalStep) -> list[ApprovalStep]:
    """Candidate plus the undecided steps right after it held by the same approver."""
    start = steps.index(candidate)
    run = [candidate]
    for step in steps[start + 1:]:
        if step.approver_id != candidate.approver_id or step.is_decided:
            break
        run.append(step)
    return run


def close(application: Application, decision: Decision, last_step: ApprovalStep) -> str:
    """Set the terminal status if the decision ends the chain.

    Always touches the header so the version counter is bumped and a
    concurrent decision on the same application fails its version check.
    """
    if decision.outcome == OUTCOME_REJECTED:
        application.status = STATUS_REJECTED
    elif last_step.is_final:
        application.status = STATUS_APPROVED
    application.updated_at = datetime.now(timezone.utc)
    return application.status


# ── Persistence helpers ───────────────────────────────────────────────────────


def load_chain(application_id: str, lock: bool = False) -> tuple[Application, list[ApprovalStep]]:
    """Fetch a live application and its steps in sequence order.

    With ``lock=True`` the header row is selected FOR UPDATE so concurrent
    decisions on the same application queue behind each other (no-op on
    SQLite).
    """
    stmt = select(Application).where(
        Application.id == application_id,
        Application.active_filter(),
    )
    if lock:
        stmt = stmt.with_for_update()
    application = db.session.execute(
        stmt.execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if application is None:
        raise ApplicationNotFound(application_id)

    steps = db.session.execute(
        select(ApprovalStep)
        .where(ApprovalStep.application_id == application_id)
        .order_by(ApprovalStep.sequence.asc())
        .execution_options(populate_existing=True)
    ).scalars().all()
    return application, list(steps)


def _save(step: ApprovalStep) -> ApprovalStep:
    db.session.add(step)
    return step


# ── Public API ────────────────────────────────────────────────────────────────


def record_decision(
    application_id: str,
    acting_approver_id: str,
    opinion: str | None,
    outcome,
) -> DecisionResult:
    """Apply one approver's decision to the application's chain.

    Args:
        application_id:     Target application.
        acting_approver_id: Employee number of the caller.
        opinion:            Free-text comment, copied to every cascaded step.
        outcome:            APPROVED / REJECTED (aliases accepted, see
                            parse_outcome).

    Returns:
        DecisionResult with the new status and the sequences decided.

    Raises:
        InvalidOutcome:      outcome missing or unrecognised.
        ApproverRequired:    acting_approver_id missing.
        ApplicationNotFound: unknown or soft-deleted application.
        NoActionableStep:    chain completed or halted by a rejection.
        WrongApprover:       caller is not the current step's approver.
    """
    canonical = parse_outcome(outcome)
    if not acting_approver_id or not str(acting_approver_id).strip():
        raise ApproverRequired()
    acting_approver_id = str(acting_approver_id).strip()

    application, steps = load_chain(application_id, lock=True)

    candidate = current_step(steps)
    if candidate is None:
        raise NoActionableStep(application_id)
    if candidate.approver_id != acting_approver_id:
        raise WrongApprover(application_id, expected=candidate.approver_id, actual=acting_approver_id)

    decision = Decision(outcome=canonical, opinion=opinion, decided_on=_today())
    decided = [_save(candidate.apply_decision(decision))]
    if canonical == OUTCOME_APPROVED:
        for step in cascade_run(steps, candidate)[1:]:
            decided.append(_save(step.apply_decision(decision)))

    sync = detail_document.synchronize(application, steps, decided, decision.decided_on)
    status = close(application, decision, decided[-1])
    db.session.flush()

    logger.info(
        "Decision recorded: %s %s steps=%s status=%s",
        application_id,
        canonical,
        [s.sequence for s in decided],
        status,
        extra={
            "application_id": application_id,
            "approver_id": acting_approver_id,
            "event_type": "decision",
        },
    )
    return DecisionResult(
        application_id=application_id,
        status=status,
        decided_sequences=[s.sequence for s in decided],
        sync=sync,
    )
