from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    UPSTREAM_NOT_FOUND = "UPSTREAM_NOT_FOUND"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_RATE_LIMITED = "UPSTREAM_RATE_LIMITED"
    INFRASTRUCTURE_FAILURE = "INFRASTRUCTURE_FAILURE"
    INVALID_INPUT = "INVALID_INPUT"


class CatalogError(Exception):
    """Raised for all expected failure conditions in the catalog layer.

    Upstream codes (``UPSTREAM_*``) are absorbed by the Resolver and turned
    into ``not_found`` / ``unavailable`` resolutions. ``INFRASTRUCTURE_FAILURE``
    always propagates to the caller. ``recoverable`` tells the caller whether
    retrying later can change the outcome.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    @property
    def is_upstream(self) -> bool:
        return self.code in (
            ErrorCode.UPSTREAM_NOT_FOUND,
            ErrorCode.UPSTREAM_UNAVAILABLE,
            ErrorCode.UPSTREAM_RATE_LIMITED,
        )

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


def infrastructure_error(component: str, exc: BaseException) -> CatalogError:
    """Wrap a cache/store driver error so it crosses the layer boundary typed."""
    return CatalogError(
        code=ErrorCode.INFRASTRUCTURE_FAILURE,
        message=f"{component} failure: {exc}",
        suggestion="The local catalog database is unreachable. Check disk and permissions.",
        recoverable=True,
    )
