"""
Detail document synchronizer.

The application's ``detail_document`` is a free-form JSON blob rendered by
the front end. Its ``approvalLine`` member draws the sign-off widget:

    {
      "approvalLine": {
        "drafter":  {"id": "E001", "name": "..."},
        "reviewer": {"id": "E001", "name": "..."},
        "head":     {"id": "E002", "name": "...", "date": "2026.03.02"}
      },
      ...
    }

The widget is a mirror, never the source of truth. After each decision the
entries belonging to the steps just decided receive a ``date``
(``yyyy.MM.dd``) so the widget matches the ApprovalStep rows.

Matching rule:
    JSON key names and key order are unrelated to step sequence, and one
    approver id may appear several times on both sides (cascade case).
    Steps and entries are therefore correlated by (approver id, occurrence
    index): the Nth step held by E001 corresponds to the Nth approvalLine
    entry whose id is E001, counted in each side's own order.

A malformed document never blocks a decision: failures are returned as a
typed ``DocumentSyncFailure`` and logged, the document is left untouched.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from it_portal.core.exceptions import DocumentSyncFailure
from it_portal.models.application import Application, ApprovalStep

logger = logging.getLogger(__name__)

APPROVAL_LINE_KEY = "approvalLine"
DATE_FORMAT = "%Y.%m.%d"


@dataclass
class SyncResult:
    """What a synchronize() call did to the document."""

    changed: bool = False
    dated_entries: int = 0
    failure: DocumentSyncFailure | None = None


def format_line_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def decided_occurrences(
    all_steps: list[ApprovalStep],
    decided_steps: list[ApprovalStep],
) -> dict[str, set[int]]:
    """Map approver id → 1-based occurrence indexes of the decided steps.

    ``all_steps`` must be in sequence order; occurrences are counted over
    the whole chain, not just the decided slice.
    """
    decided_keys = {(s.application_id, s.sequence) for s in decided_steps}
    seen: dict[str, int] = defaultdict(int)
    targets: dict[str, set[int]] = defaultdict(set)
    for step in all_steps:
        seen[step.approver_id] += 1
        if (step.application_id, step.sequence) in decided_keys:
            targets[step.approver_id].add(seen[step.approver_id])
    return dict(targets)


def stamp_approval_line(
    approval_line: dict,
    targets: dict[str, set[int]],
    stamp: str,
) -> int:
    """Write ``date`` into matching entries in place; return how many changed."""
    seen: dict[str, int] = defaultdict(int)
    dated = 0
    for entry in approval_line.values():
        if not isinstance(entry, dict):
            continue
        entry_id = entry.get("id")
        if entry_id is None:
            continue
        entry_id = str(entry_id)
        seen[entry_id] += 1
        if seen[entry_id] in targets.get(entry_id, ()):
            entry["date"] = stamp
            dated += 1
    return dated


def synchronize(
    application: Application,
    all_steps: list[ApprovalStep],
    decided_steps: list[ApprovalStep],
    decided_on: date | None = None,
) -> SyncResult:
    """Mirror the decision date of ``decided_steps`` into the approvalLine.

    Args:
        application:    Owner of the document; ``detail_document`` is replaced
                        in place when an entry changed.
        all_steps:      The full chain in ascending sequence order.
        decided_steps:  Steps decided by the current action (candidate plus
                        cascade).
        decided_on:     Date to write; defaults to the first decided step's
                        decision_date.

    Returns:
        SyncResult. ``failure`` is set (and nothing written) when the document
        is not a readable JSON object or could not be serialised.
    """
    raw = application.detail_document
    if not raw or not raw.strip() or not decided_steps:
        return SyncResult()

    try:
        document = json.loads(raw)
    except (ValueError, TypeError) as exc:
        return _failed(application, f"unparseable JSON: {exc}")

    if not isinstance(document, dict):
        return _failed(application, f"root is {type(document).__name__}, expected object")
    approval_line = document.get(APPROVAL_LINE_KEY)
    if not isinstance(approval_line, dict):
        return SyncResult()

    stamp_date = decided_on or decided_steps[0].decision_date or date.today()
    targets = decided_occurrences(all_steps, decided_steps)
    dated = stamp_approval_line(approval_line, targets, format_line_date(stamp_date))
    if not dated:
        return SyncResult()

    try:
        application.detail_document = json.dumps(document, ensure_ascii=False)
    except (ValueError, TypeError) as exc:
        return _failed(application, f"re-serialisation failed: {exc}")

    logger.debug(
        "approvalLine synced: %d entr%s dated",
        dated,
        "y" if dated == 1 else "ies",
        extra={"application_id": application.id, "event_type": "document_sync"},
    )
    return SyncResult(changed=True, dated_entries=dated)


def _failed(application: Application, reason: str) -> SyncResult:
    failure = DocumentSyncFailure(application.id, reason)
    logger.warning(
        "%s",
        failure,
        extra={"application_id": application.id, "event_type": "document_sync_failed"},
    )
    return SyncResult(failure=failure)
