"""
Portal-wide exception hierarchy.

Services raise these types; the blueprint registers one handler per family
and maps it to a status code and machine-readable error code, so callers get
a consistent body everywhere.

Usage:
    from it_portal.core.exceptions import ApplicationNotFound, WrongApprover

    raise ApplicationNotFound("APF_202600000001")
    raise WrongApprover("APF_202600000001", expected="E002", actual="E001")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Application").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Approval workflow ────────────────────────────────────────────────────────


class ApprovalError(Exception):
    """Base for failures raised by the approval chain engine."""

    def __init__(self, message: str, application_id: str | None = None) -> None:
        self.application_id = application_id
        super().__init__(message)


class ApplicationNotFound(NotFoundError):
    """Unknown application id."""

    def __init__(self, application_id: str) -> None:
        self.application_id = application_id
        super().__init__("Application", application_id)


class ApprovalStateError(ApprovalError):
    """The chain is in a state that does not allow the requested decision."""


class NoActionableStep(ApprovalStateError):
    """Every step is decided, or an earlier rejection halted the chain."""

    def __init__(self, application_id: str) -> None:
        super().__init__(
            f"Application {application_id} has no step awaiting a decision "
            "(already completed or halted by a rejection)",
            application_id,
        )


class ConcurrentDecision(ApprovalStateError):
    """Another decision on the same application committed first."""

    def __init__(self, application_id: str) -> None:
        super().__init__(
            f"Application {application_id} was modified by a concurrent decision; "
            "reload and retry",
            application_id,
        )


class WrongApprover(ApprovalError):
    """The caller is not the designated approver of the current step."""

    def __init__(self, application_id: str, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Approver {actual} is not the current approver of application {application_id}",
            application_id,
        )


class InvalidOutcome(ValidationError):
    """Outcome missing or not one of approve / reject."""

    def __init__(self, value) -> None:
        self.value = value
        super().__init__(
            f"Invalid outcome {value!r}; expected APPROVED or REJECTED",
            details={"outcome": "must be APPROVED or REJECTED"},
        )


class ApproverRequired(ValidationError):
    """No acting approver was given and none could be taken from the token."""

    def __init__(self) -> None:
        super().__init__("approver_id is required", details={"approver_id": "required"})


class DocumentSyncFailure(Exception):
    """The detail document is not a readable JSON object, or could not be written back.

    Never propagated: the synchronizer logs it and hands it back in its
    result so the decision itself still commits.
    """

    def __init__(self, application_id: str, reason: str) -> None:
        self.application_id = application_id
        self.reason = reason
        super().__init__(f"approvalLine sync failed for {application_id}: {reason}")


class BatchItemFailure(ApprovalError):
    """One item of a bulk decision failed; the whole batch was rolled back.

    Args:
        index: Zero-based position of the failing item in the request.
        application_id: Application the failing item targeted.
        cause: The underlying error.
    """

    def __init__(self, index: int, application_id: str | None, cause: Exception) -> None:
        self.index = index
        self.cause = cause
        super().__init__(
            f"Bulk decision failed at item {index} (application {application_id}): {cause}",
            application_id,
        )
