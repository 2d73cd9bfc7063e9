"""Custom exception hierarchy for pyripple."""

from __future__ import annotations


class RippleError(Exception):
    """Base exception for all pyripple errors."""


class RippleConfigError(RippleError):
    """Invalid or missing configuration."""


class StoreError(RippleError):
    """Failure reported by the underlying live-value store.

    Terminal for the affected subscription.  Consumers must treat a path
    in this state as *unknown*, never as empty.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str = "",
        status_code: int | None = None,
    ) -> None:
        self.path = path
        self.status_code = status_code
        super().__init__(message)


class StorePermissionError(StoreError):
    """Read/write/listen denied by the store (or auth revoked mid-stream)."""


class StoreNetworkError(StoreError):
    """Transport-level failure (connection, timeout, invalid payload)."""


class ConflictExhaustedError(RippleError):
    """A bounded-retry transaction gave up after repeated conflicts.

    Only raised when a counter is configured with ``max_retries``; the
    default counter retries without limit.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str = "",
        attempts: int = 0,
    ) -> None:
        self.path = path
        self.attempts = attempts
        super().__init__(message)


class SubscriptionClosedError(RippleError):
    """A snapshot stream was consumed after close or iterated twice."""


class ViewComputeError(RippleError):
    """A derived view's ``compute`` callable raised.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, message: str, *, view_name: str = "") -> None:
        self.view_name = view_name
        super().__init__(message)
