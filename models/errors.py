"""
Failure taxonomy.

Only fire() failures reach the caller; they all derive from GateError.
Socket drops and malformed push frames are recovered inside BattleSocket and
never surface as exceptions.
"""

from __future__ import annotations


class ApiError(Exception):
    """Non-2xx response from the REST backend."""

    def __init__(self, status: int, detail: str, retry_after: int | None = None) -> None:
        super().__init__(f"HTTP {status}: {detail}")
        self.status = status
        self.detail = detail
        # Structured retry hint, only when the backend sends retry_after_seconds
        self.retry_after = retry_after


class GateError(Exception):
    """Base class for every way a fire attempt can fail."""

    @property
    def user_message(self) -> str:
        return str(self)


class PreconditionNotMet(GateError):
    """Rejected locally — no request was sent."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class RateLimited(GateError):
    """Backend throttled the action. retry_after is None if no wait time was found."""

    def __init__(self, detail: str, retry_after: int | None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.retry_after = retry_after


class RemoteFailure(GateError):
    """Any other failed fire. status is None for transport-level failures."""

    def __init__(self, detail: str, status: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status = status
