"""
errors.py — Error taxonomy for the evaluation engine.

Every failure the engine surfaces to a caller is an EvaluationError with
a stable machine-readable ``code`` (e.g. "score-out-of-range") and a
``category`` the HTTP layer maps to a status code:

  validation     → malformed or missing input
  not-found      → template / assignment / decision / scores absent
  out-of-bounds  → score outside the criterion's permitted range
  state-conflict → duplicate live assignment, illegal status transition
"""

from __future__ import annotations


class EvaluationError(Exception):
    """Base class for everything the engine raises on purpose."""

    category = "error"

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "category": self.category}


class InvalidInputError(EvaluationError, ValueError):
    category = "validation"


class NotFoundError(EvaluationError, LookupError):
    category = "not-found"


class OutOfBoundsError(EvaluationError, ValueError):
    category = "out-of-bounds"


class StateConflictError(EvaluationError):
    category = "state-conflict"
