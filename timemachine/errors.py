# timemachine/errors.py
from __future__ import annotations

from typing import Optional


class TimeMachineError(RuntimeError):
    """Base class for every failure the pipeline raises on purpose."""


class UpstreamError(TimeMachineError):
    def __init__(self, message: str = "", status: Optional[int] = None):
        self.status = status
        self.message = message
        super().__init__(f"Upstream HTTP {status}: {message}" if status else message)


class InvalidCredential(UpstreamError):
    pass


class RateLimited(UpstreamError):
    pass


class UpstreamUnavailable(UpstreamError):
    """Image generation is not offered for this key/region. Switch tracks, never shown to users."""


class NoFactsExtracted(TimeMachineError):
    pass


class PlaybackDecodeFailure(TimeMachineError):
    pass


_INVALID_KEY_MARKERS = ("API_KEY_INVALID", "PERMISSION_DENIED")
_UNAVAILABLE_MARKERS = ("not available in your country", "not support")


def classify_upstream(status: Optional[int], message: str) -> UpstreamError:
    """
    Map an upstream HTTP status + embedded message onto the error taxonomy.
    Order matters: an invalid key wins over everything else.
    """
    msg = message or ""
    if status in (401, 403) or any(m in msg for m in _INVALID_KEY_MARKERS):
        return InvalidCredential(msg, status)
    if status == 429:
        return RateLimited(msg, status)
    if any(m in msg for m in _UNAVAILABLE_MARKERS):
        return UpstreamUnavailable(msg, status)
    return UpstreamError(msg, status)


# MediaPartialFailure has no class here: a fact without images
# or audio is a degraded result, see core/media.py.


def user_message(exc: BaseException) -> str:
    if isinstance(exc, InvalidCredential):
        return "The API key is invalid. Please enter it again."
    if isinstance(exc, RateLimited):
        return "Too many requests. Please wait a moment and try again."
    if isinstance(exc, NoFactsExtracted):
        return "Could not extract any historical facts. Please try a different date or place."
    if isinstance(exc, UpstreamError):
        return f"Research failed: {exc.message or 'unknown upstream error'}"
    return str(exc) or "An unexpected error occurred."


class SessionStateError(TimeMachineError):
    """A session operation was called in a state that does not allow it."""


class TravelFailed(TimeMachineError):
    """What the UI gets when research or media synthesis fails."""

    def __init__(self, message: str, reason: BaseException):
        self.message = message
        self.reason = reason
        self.needs_credential = isinstance(reason, InvalidCredential)
        self.retryable = isinstance(reason, (RateLimited, NoFactsExtracted))
        super().__init__(message)
