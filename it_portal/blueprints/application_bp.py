"""
Approval Application Blueprint.

Routes:
  POST   /applications                      – submit an application with its approval chain
  GET    /applications/<aid>                – header + ordered approval steps
  POST   /applications/<aid>/decide         – approve / reject the current step
  POST   /applications/bulk-decide          – all-or-nothing batch of decisions
  POST   /applications/bulk-get             – look up several applications
  GET    /applications/pending              – applications awaiting an approver
  GET    /applications/by-origin            – latest application + lock flag for a business record

The acting employee is the id given in the body / query string, falling back
to the JWT subject when a valid Bearer token is sent.
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request
from werkzeug.exceptions import HTTPException

from it_portal.blueprints import paginate_list
from it_portal.core.exceptions import (
    ApprovalStateError,
    BatchItemFailure,
    ConcurrentDecision,
    NotFoundError,
    ValidationError,
    WrongApprover,
)
from it_portal.services import application_service, bulk_approval
from it_portal.utils.errors import E, api_error, status_for

logger = logging.getLogger(__name__)

application_bp = Blueprint("application_bp", __name__, url_prefix="/api/v1")


# ── helpers ──────────────────────────────────────────────────────────────


def _current_user() -> str | None:
    """Employee number from the JWT, if one was presented."""
    user_id = getattr(g, "jwt_user_id", None)
    return str(user_id) if user_id is not None else None


def _json_object() -> dict:
    """Request body as a dict; an absent body reads as empty."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(
            "Request body must be a JSON object",
            details={"body": "object required"},
        )
    return data


def _error_code(error: Exception) -> str:
    if isinstance(error, NotFoundError):
        return E.NOT_FOUND
    if isinstance(error, ValidationError):
        return E.VALIDATION_INVALID
    if isinstance(error, WrongApprover):
        return E.WRONG_APPROVER
    if isinstance(error, ConcurrentDecision):
        return E.CONFLICT_CONCURRENT
    if isinstance(error, ApprovalStateError):
        return E.CONFLICT_STATE
    return E.INTERNAL


# ── Error handlers ───────────────────────────────────────────────────────


@application_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@application_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@application_bp.errorhandler(WrongApprover)
def _handle_wrong_approver(error: WrongApprover):
    return api_error(E.WRONG_APPROVER, str(error), details={"application_id": error.application_id})


@application_bp.errorhandler(ApprovalStateError)
def _handle_state(error: ApprovalStateError):
    return api_error(_error_code(error), str(error), details={"application_id": error.application_id})


@application_bp.errorhandler(BatchItemFailure)
def _handle_batch(error: BatchItemFailure):
    code = _error_code(error.cause)
    return api_error(
        code,
        str(error),
        status=status_for(code),
        details={
            "index": error.index,
            "application_id": error.application_id,
            "reason": str(error.cause),
        },
    )


@application_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in application_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════════
# SUBMIT / DECIDE
# ═════════════════════════════════════════════════════════════════════════════


@application_bp.route("/applications", methods=["POST"])
def submit_application():
    """Submit an application.

    Body: {
        title, detail_document, requester_id?, requester_opinion,
        approver_ids: [...ordered employee numbers],
        origin_table?, origin_pk?, origin_sno?
    }
    Returns: {"id": <application id>} (201) with a Location header.
    """
    data = _json_object()
    if "approver_ids" not in data:
        return api_error(E.VALIDATION_REQUIRED, "approver_ids is required")

    application_id = application_service.submit(data, requester_id=_current_user())
    response = jsonify({"id": application_id})
    response.status_code = 201
    response.headers["Location"] = f"/api/v1/applications/{application_id}"
    return response


@application_bp.route("/applications/<application_id>/decide", methods=["POST"])
def decide(application_id):
    """Approve or reject the application's current step.

    Body: { approver_id, opinion?, outcome: "APPROVED"|"REJECTED"|"승인"|"반려" }
    Returns: empty 200 on success.
    """
    data = _json_object()
    approver_id = data.get("approver_id") or _current_user()
    application_service.decide(
        application_id,
        approver_id,
        data.get("opinion"),
        data.get("outcome"),
    )
    return "", 200


@application_bp.route("/applications/bulk-decide", methods=["POST"])
def bulk_decide():
    """Apply several decisions atomically.

    Body: { approvals: [{application_id, approver_id, opinion?, outcome}, ...] }
    Returns: {total_count, success_count, failure_count, results}; on any
    failure nothing is committed and the error names the failing item.
    """
    data = _json_object()
    approvals = data.get("approvals")
    user = _current_user()
    if user and isinstance(approvals, list):
        approvals = [
            {**item, "approver_id": user}
            if isinstance(item, dict) and not item.get("approver_id") else item
            for item in approvals
        ]
    return jsonify(bulk_approval.bulk_approve(approvals))


# ═════════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════════


@application_bp.route("/applications/pending", methods=["GET"])
def pending_applications():
    """Applications whose current step awaits the given approver.

    Query params: approver_id (defaults to the JWT subject), limit, offset.
    """
    approver_id = request.args.get("approver_id") or _current_user()
    if not approver_id:
        return api_error(E.VALIDATION_REQUIRED, "approver_id is required")
    items, total = paginate_list(application_service.pending_for_approver(approver_id))
    return jsonify({"items": items, "total": total})


@application_bp.route("/applications/by-origin", methods=["GET"])
def application_by_origin():
    """Latest application linked to a business record.

    Query params: origin_table, origin_pk (required), origin_sno (optional int).
    """
    origin_table = (request.args.get("origin_table") or "").strip()
    origin_pk = (request.args.get("origin_pk") or "").strip()
    if not origin_table or not origin_pk:
        return api_error(E.VALIDATION_REQUIRED, "origin_table and origin_pk are required")
    raw_sno = request.args.get("origin_sno")
    origin_sno = None
    if raw_sno not in (None, ""):
        try:
            origin_sno = int(raw_sno)
        except ValueError:
            return api_error(E.VALIDATION_INVALID, "origin_sno must be an integer")
    return jsonify(application_service.origin_summary(origin_table, origin_pk, origin_sno))


@application_bp.route("/applications/bulk-get", methods=["POST"])
def bulk_get_applications():
    """Body: { ids: [...] }. Returns found applications and the ids not found."""
    data = _json_object()
    ids = data.get("ids")
    if not isinstance(ids, list) or not ids:
        return api_error(E.VALIDATION_REQUIRED, "ids must be a non-empty array")
    found, missing = application_service.get_applications([str(i) for i in ids])
    return jsonify({"items": found, "not_found": missing})


@application_bp.route("/applications/<application_id>", methods=["GET"])
def get_application(application_id):
    """Header fields plus the ordered approval steps."""
    return jsonify(application_service.get_application(application_id))
