class DisclosureError(Exception):
    status_code = 400
    code = "disclosure_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.context}


class BadRequest(DisclosureError):
    status_code = 400
    code = "bad_request"


class NotFound(DisclosureError):
    status_code = 404
    code = "not_found"


class Expired(DisclosureError):
    """The grant exists but its ``expires_at`` has passed."""

    status_code = 410
    code = "expired"


class InvalidTransition(DisclosureError):
    """A state-machine guard refused the requested transition."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, message: str, guard: str, **context):
        super().__init__(message, guard=guard, **context)
        self.guard = guard


class ValidationFailed(DisclosureError):
    """Completion gate failure; carries the structured validation payload."""

    status_code = 422
    code = "validation_failed"

    def __init__(self, message: str, errors=None, warnings=None, **context):
        super().__init__(message, errors=errors or [], warnings=warnings or [], **context)
        self.errors = errors or []
        self.warnings = warnings or []


class CollaboratorError(DisclosureError):
    status_code = 502
    code = "collaborator_failed"
