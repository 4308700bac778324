"""
habitat.errors — Domain error taxonomy
=======================================

Every rejection the core produces carries a machine-readable ``code`` and
the HTTP status the presentation layer should use.  Services raise these;
:mod:`habitat.api.main` renders them.
"""

from __future__ import annotations


class HabitatError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationError(HabitatError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(HabitatError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(HabitatError):
    """A precondition the request cannot satisfy (already completed, ...)."""
    code = "CONFLICT"
    status_code = 400


# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------
HABIT_NOT_FOUND = "HABIT_NOT_FOUND"
ATOM_NOT_FOUND = "ATOM_NOT_FOUND"
VOTE_NOT_FOUND = "VOTE_NOT_FOUND"
USER_NOT_FOUND = "USER_NOT_FOUND"
CATEGORY_NOT_FOUND = "CATEGORY_NOT_FOUND"
INVALID_VOTE_TYPE = "INVALID_VOTE_TYPE"
ALREADY_COMPLETED = "ALREADY_COMPLETED"
NOT_APPLICABLE_TODAY = "NOT_APPLICABLE_TODAY"
IMAGE_REQUIRED_FOR_SHAREABLE = "IMAGE_REQUIRED_FOR_SHAREABLE"
PERSONAL_HABIT_NOT_SHAREABLE = "PERSONAL_HABIT_NOT_SHAREABLE"
SETTING_NOT_FOUND = "SETTING_NOT_FOUND"
UNKNOWN_SETTING = "UNKNOWN_SETTING"
