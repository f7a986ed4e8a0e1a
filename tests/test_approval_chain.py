"""
Approval chain engine tests.

Tests cover:
  - Outcome parsing (canonical, English aliases, Korean labels)
  - current_step scan: ordering and halt on rejection
  - Cascade over consecutive steps held by the same approver
  - Completion / rejection closing the application
  - Wrong approver and unknown application leave nothing behind
  - The two-approver walkthrough ending in NoActionableStep
  - A decision losing a race to a concurrent commit
  - Soft-deleted applications stay invisible
"""
from datetime import date

import pytest
from sqlalchemy import event, update

from it_portal.core.exceptions import (
    ApplicationNotFound,
    ApproverRequired,
    BatchItemFailure,
    ConcurrentDecision,
    InvalidOutcome,
    NoActionableStep,
    WrongApprover,
)
from it_portal.models import db
from it_portal.models.application import (
    DECISION_DECIDED,
    DECISION_NONE,
    OUTCOME_APPROVED,
    OUTCOME_REJECTED,
    STATUS_REJECTED,
    Application,
    ApprovalStep,
)
from it_portal.services import application_service, approval_chain, bulk_approval, detail_document


def _step(sequence, approver_id, outcome=None, is_final=False):
    return ApprovalStep(
        application_id="APF_TEST",
        sequence=sequence,
        approver_id=approver_id,
        decision_kind=DECISION_DECIDED if outcome else DECISION_NONE,
        outcome=outcome,
        is_final=is_final,
    )


def _steps(application_id):
    return application_service.get_application(application_id)["approvers"]


@pytest.fixture()
def fixed_today(monkeypatch):
    today = date(2026, 3, 2)
    monkeypatch.setattr(approval_chain, "_today", lambda: today)
    return today


# ═════════════════════════════════════════════════════════════════════════
# OUTCOME PARSING
# ═════════════════════════════════════════════════════════════════════════

class TestParseOutcome:
    @pytest.mark.parametrize("value", ["APPROVED", "approved", "Approve", " APPROVED ", "승인"])
    def test_approve_labels(self, value):
        assert approval_chain.parse_outcome(value) == OUTCOME_APPROVED

    @pytest.mark.parametrize("value", ["REJECTED", "reject", "반려"])
    def test_reject_labels(self, value):
        assert approval_chain.parse_outcome(value) == OUTCOME_REJECTED

    @pytest.mark.parametrize("value", [None, "", "MAYBE", 1, "NONE"])
    def test_unknown_outcome(self, value):
        with pytest.raises(InvalidOutcome):
            approval_chain.parse_outcome(value)


# ═════════════════════════════════════════════════════════════════════════
# CHAIN SCAN (pure)
# ═════════════════════════════════════════════════════════════════════════

class TestCurrentStep:
    def test_first_undecided_step(self):
        steps = [_step(1, "A", OUTCOME_APPROVED), _step(2, "B"), _step(3, "C", is_final=True)]
        assert approval_chain.current_step(steps).sequence == 2

    def test_fresh_chain_starts_at_one(self):
        steps = [_step(1, "A"), _step(2, "B", is_final=True)]
        assert approval_chain.current_step(steps).sequence == 1

    def test_rejection_halts_chain(self):
        steps = [_step(1, "A", OUTCOME_REJECTED), _step(2, "B"), _step(3, "C", is_final=True)]
        assert approval_chain.current_step(steps) is None

    def test_completed_chain(self):
        steps = [_step(1, "A", OUTCOME_APPROVED), _step(2, "B", OUTCOME_APPROVED, is_final=True)]
        assert approval_chain.current_step(steps) is None

    def test_cascade_run_stops_at_other_approver(self):
        steps = [_step(1, "A"), _step(2, "A"), _step(3, "B"), _step(4, "A", is_final=True)]
        run = approval_chain.cascade_run(steps, steps[0])
        assert [s.sequence for s in run] == [1, 2]

    def test_cascade_run_single(self):
        steps = [_step(1, "A"), _step(2, "B", is_final=True)]
        assert approval_chain.cascade_run(steps, steps[0]) == [steps[0]]


# ═════════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════════

class TestRecordDecision:
    def test_two_approver_walkthrough(self, make_application, fixed_today):
        aid = make_application(["A", "B"])

        result = application_service.decide(aid, "A", "ok", "APPROVED")
        assert result["status"] == "PENDING"
        assert result["decided_sequences"] == [1]
        steps = _steps(aid)
        assert steps[0]["outcome"] == OUTCOME_APPROVED
        assert steps[0]["decision_date"] == "2026-03-02"
        assert steps[1]["decision_kind"] == DECISION_NONE

        result = application_service.decide(aid, "B", "fine", "APPROVED")
        assert result["status"] == "APPROVED"
        assert _steps(aid)[1]["outcome"] == OUTCOME_APPROVED

        with pytest.raises(NoActionableStep):
            application_service.decide(aid, "B", None, "APPROVED")
        with pytest.raises(NoActionableStep):
            application_service.decide(aid, "A", None, "REJECTED")

    def test_steps_decided_in_order(self, make_application):
        aid = make_application(["A", "B", "C"])
        with pytest.raises(WrongApprover):
            application_service.decide(aid, "B", None, "APPROVED")

        application_service.decide(aid, "A", None, "APPROVED")
        application_service.decide(aid, "B", None, "APPROVED")
        data = application_service.get_application(aid)
        assert data["current_approver_id"] == "C"
        assert data["status"] == "PENDING"

    def test_cascade_same_approver(self, make_application):
        aid = make_application(["A", "A", "B"])
        result = application_service.decide(aid, "A", "both", "APPROVED")

        assert result["decided_sequences"] == [1, 2]
        assert result["status"] == "PENDING"
        steps = _steps(aid)
        assert [s["outcome"] for s in steps] == [OUTCOME_APPROVED, OUTCOME_APPROVED, None]
        assert steps[1]["opinion"] == "both"
        assert application_service.get_application(aid)["current_approver_id"] == "B"

    def test_cascade_into_final_step_completes(self, make_application):
        aid = make_application(["A", "B", "B"])
        application_service.decide(aid, "A", None, "APPROVED")
        result = application_service.decide(aid, "B", None, "APPROVED")
        assert result["decided_sequences"] == [2, 3]
        assert result["status"] == "APPROVED"

    def test_rejection_does_not_cascade(self, make_application):
        aid = make_application(["A", "A", "B"])
        result = application_service.decide(aid, "A", "no budget", "REJECTED")

        assert result["decided_sequences"] == [1]
        assert result["status"] == "REJECTED"
        steps = _steps(aid)
        assert steps[0]["outcome"] == OUTCOME_REJECTED
        assert steps[1]["decision_kind"] == DECISION_NONE

        with pytest.raises(NoActionableStep):
            application_service.decide(aid, "A", None, "APPROVED")

    def test_single_step_chain(self, make_application):
        aid = make_application(["A"])
        result = application_service.decide(aid, "A", None, "승인")
        assert result["status"] == "APPROVED"

    def test_wrong_approver_changes_nothing(self, make_application):
        aid = make_application(["A", "B"])
        before = application_service.get_application(aid)

        with pytest.raises(WrongApprover) as exc_info:
            application_service.decide(aid, "B", None, "APPROVED")
        assert exc_info.value.expected == "A"
        assert exc_info.value.actual == "B"

        after = application_service.get_application(aid)
        assert after["status"] == "PENDING"
        assert after["version"] == before["version"]
        assert all(s["decision_kind"] == DECISION_NONE for s in after["approvers"])

    def test_invalid_outcome_checked_before_lookup(self):
        with pytest.raises(InvalidOutcome):
            application_service.decide("APF_DOES_NOT_EXIST", "A", None, "MAYBE")

    def test_missing_approver(self, make_application):
        aid = make_application(["A"])
        with pytest.raises(ApproverRequired):
            application_service.decide(aid, "  ", None, "APPROVED")

    def test_unknown_application(self):
        with pytest.raises(ApplicationNotFound):
            application_service.decide("APF_209900000001", "A", None, "APPROVED")

    def test_version_bumped_per_decision(self, make_application):
        aid = make_application(["A", "B"])
        v0 = application_service.get_application(aid)["version"]
        application_service.decide(aid, "A", None, "APPROVED")
        assert application_service.get_application(aid)["version"] == v0 + 1


# ═════════════════════════════════════════════════════════════════════════
# CONCURRENT DECISIONS
# ═════════════════════════════════════════════════════════════════════════

def _commit_competing_rejection(application_id):
    """Another connection rejects step 1 and bumps the version, then commits."""
    with db.engine.begin() as conn:
        conn.execute(
            update(ApprovalStep.__table__)
            .where(ApprovalStep.__table__.c.application_id == application_id,
                   ApprovalStep.__table__.c.sequence == 1)
            .values(decision_kind=DECISION_DECIDED, outcome=OUTCOME_REJECTED)
        )
        conn.execute(
            update(Application.__table__)
            .where(Application.__table__.c.id == application_id)
            .values(status=STATUS_REJECTED, version=Application.__table__.c.version + 1)
        )


@pytest.fixture()
def competing_decision(monkeypatch):
    """Commit a rival decision after the chain scan, before the flush."""
    original = detail_document.synchronize

    def _synchronize(application, *args, **kwargs):
        result = original(application, *args, **kwargs)
        _commit_competing_rejection(application.id)
        return result

    monkeypatch.setattr(detail_document, "synchronize", _synchronize)


class TestConcurrentDecision:
    def test_lost_race_raises_and_keeps_winner(self, make_application, competing_decision):
        aid = make_application(["A", "B"])

        with pytest.raises(ConcurrentDecision) as exc_info:
            application_service.decide(aid, "A", None, "APPROVED")
        assert exc_info.value.application_id == aid

        db.session.expire_all()
        data = application_service.get_application(aid)
        assert data["status"] == STATUS_REJECTED
        assert [s["outcome"] for s in data["approvers"]] == [OUTCOME_REJECTED, None]

    def test_lost_race_in_bulk_rolls_back_batch(self, make_application, competing_decision):
        aid = make_application(["A", "B"])

        with pytest.raises(BatchItemFailure) as exc_info:
            bulk_approval.bulk_approve([{"application_id": aid, "approver_id": "A", "outcome": "APPROVED"}])
        assert isinstance(exc_info.value.cause, ConcurrentDecision)

        db.session.expire_all()
        data = application_service.get_application(aid)
        assert data["status"] == STATUS_REJECTED
        assert data["approvers"][0]["outcome"] == OUTCOME_REJECTED


# ═════════════════════════════════════════════════════════════════════════
# SOFT-DELETED APPLICATIONS
# ═════════════════════════════════════════════════════════════════════════

class TestSoftDeleted:
    def _delete(self, application_id):
        application = db.session.get(Application, application_id)
        application.del_yn = "Y"
        db.session.commit()

    def test_hidden_from_lookup_and_decisions(self, make_application):
        aid = make_application(["A"])
        self._delete(aid)

        with pytest.raises(ApplicationNotFound):
            application_service.get_application(aid)
        with pytest.raises(ApplicationNotFound):
            application_service.decide(aid, "A", None, "APPROVED")

    def test_excluded_from_pending_and_origin_lock(self, make_application):
        kept = make_application(["A"])
        deleted = make_application(["A"], origin_table="PRJ", origin_pk="P-9")
        assert application_service.is_origin_locked("PRJ", "P-9") is True
        self._delete(deleted)

        assert [p["id"] for p in application_service.pending_for_approver("A")] == [kept]
        assert application_service.is_origin_locked("PRJ", "P-9") is False


# ═════════════════════════════════════════════════════════════════════════
# PENDING QUERY
# ═════════════════════════════════════════════════════════════════════════

class TestPendingQuery:
    def test_steps_loaded_without_per_application_queries(self, make_application):
        ids = [make_application(["A", "B"]) for _ in range(3)]
        make_application(["B", "A"])
        db.session.expire_all()

        statements = []

        def _count(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        event.listen(db.engine, "before_cursor_execute", _count)
        try:
            pending = application_service.pending_for_approver("A")
        finally:
            event.remove(db.engine, "before_cursor_execute", _count)

        assert [p["id"] for p in pending] == ids
        assert all(p["current_sequence"] == 1 for p in pending)
        assert len(statements) <= 2
