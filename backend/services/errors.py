from __future__ import annotations


class PlanError(ValueError):
    """Base class for plan engine errors surfaced to the request layer."""

    status_code = 400

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"detail": self.message, "field": self.field}


class NotFoundError(PlanError):
    status_code = 404


class PlanValidationError(PlanError):
    """Rejected input; `field` names the offending form field when known."""

    status_code = 422


class ConflictError(PlanError):
    status_code = 409
