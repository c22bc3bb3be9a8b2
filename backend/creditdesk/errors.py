"""
Domain error taxonomy.

Every service raises one of these instead of a bare exception so routes can
map it to a structured JSON response. Each error carries the HTTP status the
API should answer with and a `details` dict naming the offending field or
the current state of the record.
"""

from __future__ import annotations


class CreditDeskError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(CreditDeskError):
    """400-level input problem. The caller must correct the input."""


class EmptyTransactionError(ValidationError):
    """Totals were requested over an empty line list."""

    def __init__(self, message: str = "Transaction must have at least one line", details: dict | None = None):
        super().__init__(message, details or {"field": "lines"})


class NotFoundError(CreditDeskError):
    """Referenced customer, product, transaction or return does not exist."""

    status_code = 404

    def __init__(self, entity: str, identifier):
        super().__init__(
            f"{entity} {identifier} not found",
            details={"entity": entity, "id": identifier},
        )


class InvalidStateError(CreditDeskError):
    """
    Transition attempted from a state that does not permit it.

    Retrying without a state change fails identically.
    """

    status_code = 409

    def __init__(self, current_state: str, action: str, entity: str | None = None):
        label = f"{entity} in state {current_state}" if entity else f"state {current_state}"
        super().__init__(
            f"Cannot {action.lower()} {label}",
            details={"current_state": current_state, "action": action},
        )
        self.current_state = current_state
        self.action = action


class ConflictError(CreditDeskError):
    """409-level concurrent write collision. Safe to retry once after re-fetch."""

    status_code = 409
