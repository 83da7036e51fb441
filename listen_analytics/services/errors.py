"""
Analytics Errors

Failure taxonomy shared by the store, the dispatcher and the analytics facade.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

# Codes reported when a precomputed aggregation does not exist in the store
NOT_INSTALLED_CODES = frozenset({"42883", "PGRST202", "not_installed"})

# Codes reported when the caller is not signed in or lacks access
AUTHORIZATION_CODES = frozenset({"AUTH1", "42501", "PGRST301", "401", "403", "unauthorized"})

TRANSPORT_CODES = frozenset({"transport", "timeout"})


class AnalyticsError(Exception):
    """Base failure returned by analytics operations."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "code": self.code,
        }


class TransportFailure(AnalyticsError):
    """The store could not be reached."""


class AuthorizationFailure(AnalyticsError):
    """The store refused the request for the current user."""


class CapabilityUnavailable(AnalyticsError):
    """A precomputed aggregation is not installed in the store."""


class StoreError(Exception):
    """Raised by store implementations with the backend's error code."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


def classify_code(code: str | None) -> type[AnalyticsError]:
    """Map a store error code to the matching failure class."""
    if code is None:
        return AnalyticsError
    if code in NOT_INSTALLED_CODES:
        return CapabilityUnavailable
    if code in AUTHORIZATION_CODES:
        return AuthorizationFailure
    # SQLSTATE class 08 = connection exception
    if code in TRANSPORT_CODES or code.startswith("08"):
        return TransportFailure
    return AnalyticsError


@dataclass
class AnalyticsResult(Generic[T]):
    """Success-or-failure value returned by every analytics operation."""

    success: bool
    data: T | None = None
    error: AnalyticsError | None = None

    @classmethod
    def ok(cls, data: T) -> AnalyticsResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: AnalyticsError) -> AnalyticsResult[T]:
        return cls(success=False, error=error)
