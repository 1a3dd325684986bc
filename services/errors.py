"""Error taxonomy for the chat relay.

Each error carries the HTTP status and the user-facing message it is
rendered with. Messages never contain upstream or internal detail.
"""
from typing import Dict, Optional


class RelayError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.headers = headers or {}
        super().__init__(self.message)


class Unauthenticated(RelayError):
    status_code = 401
    default_message = "Unauthorized"


class BadRequest(RelayError):
    status_code = 400
    default_message = "Bad request."


class Forbidden(RelayError):
    status_code = 403
    default_message = "Your plan does not include this model. Upgrade to unlock it."


class RateLimited(RelayError):
    status_code = 429
    default_message = "Too many requests. Please slow down."

    def __init__(self, remaining: int = 0, retry_after: int = 60):
        super().__init__(headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Remaining": str(remaining),
        })


class QuotaExceeded(RelayError):
    status_code = 429
    default_message = "Daily limit reached. Upgrade your plan for more."


class PoolExhaustedError(RelayError):
    status_code = 429
    default_message = "Daily request limit reached. Please try again tomorrow."


class UpstreamUnavailable(RelayError):
    status_code = 502
    default_message = "AI service temporarily unavailable. Please try again."


class InternalFailure(RelayError):
    status_code = 500
