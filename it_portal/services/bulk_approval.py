"""
Bulk approval coordinator.

Runs a list of decisions through the approval chain engine inside a single
unit of work. The batch is all-or-nothing: the first failing item rolls back
every item applied before it and the call fails with BatchItemFailure naming
the item. A returned summary therefore always reports failure_count == 0.
"""

from __future__ import annotations

import logging

from flask import current_app, has_app_context
from sqlalchemy.orm.exc import StaleDataError

from it_portal.core.exceptions import BatchItemFailure, ConcurrentDecision, ValidationError
from it_portal.services import approval_chain
from it_portal.services.helpers.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 100
SUCCESS_MESSAGE = "Processed"


def _max_items() -> int:
    if has_app_context():
        return int(current_app.config.get("BULK_APPROVAL_MAX_ITEMS", DEFAULT_MAX_ITEMS))
    return DEFAULT_MAX_ITEMS


def validate_items(items) -> list[dict]:
    """Shape check only; business rules are enforced per item by the engine."""
    if not isinstance(items, list) or not items:
        raise ValidationError(
            "approvals must be a non-empty array",
            details={"approvals": "non-empty array required"},
        )
    limit = _max_items()
    if len(items) > limit:
        raise ValidationError(
            f"A bulk request may contain at most {limit} approvals",
            details={"approvals": f"max {limit} items"},
        )
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(
                f"approvals[{i}] must be an object",
                details={f"approvals[{i}]": "object required"},
            )
        if not item.get("application_id"):
            raise ValidationError(
                f"approvals[{i}].application_id is required",
                details={f"approvals[{i}].application_id": "required"},
            )
    return items


def bulk_approve(items: list[dict]) -> dict:
    """Apply every decision in ``items`` atomically.

    Each item: {application_id, approver_id, opinion?, outcome}.

    Returns:
        {"total_count", "success_count", "failure_count", "results": [
            {"application_id", "success", "message"}, ...]}

    Raises:
        ValidationError:  malformed batch (nothing attempted).
        BatchItemFailure: an item failed; nothing was committed.
    """
    validate_items(items)

    results = []
    try:
        with unit_of_work(label="bulk_approve"):
            for index, item in enumerate(items):
                application_id = item["application_id"]
                try:
                    approval_chain.record_decision(
                        application_id,
                        item.get("approver_id"),
                        item.get("opinion"),
                        item.get("outcome"),
                    )
                except StaleDataError as exc:
                    cause = ConcurrentDecision(application_id)
                    raise BatchItemFailure(index, application_id, cause) from exc
                except Exception as exc:
                    raise BatchItemFailure(index, application_id, exc) from exc
                results.append({
                    "application_id": application_id,
                    "success": True,
                    "message": SUCCESS_MESSAGE,
                })
    except BatchItemFailure as failure:
        logger.warning(
            "Bulk approval rolled back at item %d: %s",
            failure.index,
            failure.cause,
            extra={"application_id": failure.application_id, "event_type": "bulk_rollback"},
        )
        raise

    logger.info(
        "Bulk approval committed: %d items",
        len(results),
        extra={"event_type": "bulk_commit"},
    )
    return {
        "total_count": len(items),
        "success_count": len(results),
        "failure_count": 0,
        "results": results,
    }
