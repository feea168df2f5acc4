from __future__ import annotations

from typing import Optional


class ReportsError(Exception):
    """
    Base class for failures raised by the reporting core.

    ``kind`` is a short machine-readable tag (``malformed_date``,
    ``week_not_reportable`` ...) so the presentation layer can pick a message
    without parsing ``str(exc)``.
    """

    default_kind = "error"

    def __init__(self, message: str, kind: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind


class InvalidInputError(ReportsError, ValueError):
    default_kind = "invalid_input"


class PermissionDeniedError(ReportsError):
    default_kind = "permission_denied"


class NotFoundError(ReportsError):
    default_kind = "not_found"


class NotAuthenticatedError(ReportsError):
    default_kind = "not_authenticated"


class ConfigurationError(ReportsError):
    default_kind = "configuration"
