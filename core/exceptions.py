"""
Exception hierarchy for the Scrape API.

Every failure the service knows how to describe is raised as a subclass of
`ScraperAPIException`. Each carries a stable `error_code` and a `details`
dictionary so that the middleware can turn it into a uniform JSON body and the
scrape job can narrate it to the live stream.

Failure taxonomy of a scrape attempt:
- `ProfileNotFoundError`: the target handle does not exist upstream. Terminal,
  no partial data.
- `AuthenticationRequiredError`: the upstream source refuses to serve posts
  without a logged-in session. Terminal, no partial data.
- `ScrapeFaultError`: network or parse failure not otherwise classified. A
  single post-level fault is tolerated by the orchestrator; an escaped one is
  terminal.
- `DatabaseConnectionError`: persistence failed. Propagated, never retried.
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class ScraperAPIException(Exception):
    """Base exception class for the Scrape API"""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str = "SCRAPER_API_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ProfileNotFoundError(ScraperAPIException):
    """Raised when the upstream source has no profile for a handle"""

    status_code = 404

    def __init__(self, username: str, reason: Optional[str] = None):
        message = f"Profile not found: @{username}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            "PROFILE_NOT_FOUND",
            {"username": username, "reason": reason},
        )


class AuthenticationRequiredError(ScraperAPIException):
    """Raised when posts cannot be fetched without a logged-in session"""

    status_code = 401

    def __init__(self, username: str, reason: Optional[str] = None):
        super().__init__(
            "Authentication required to fetch posts for "
            f"@{username}. Provide sessionUsername with a saved instaloader "
            "session (instaloader --login <user>).",
            "AUTHENTICATION_REQUIRED",
            {"username": username, "reason": reason},
        )


class ScrapeFaultError(ScraperAPIException):
    """Raised for network or parse failures talking to the upstream source"""

    status_code = 502

    def __init__(self, username: str, reason: str):
        super().__init__(
            f"Scrape failed for @{username}: {reason}",
            "SCRAPE_FAULT",
            {"username": username, "reason": reason},
        )


class DatabaseConnectionError(ScraperAPIException):
    """Raised when database operations fail"""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Database operation '{operation}' failed: {reason}",
            "DATABASE_ERROR",
            {"operation": operation, "reason": reason},
        )


class ValidationError(ScraperAPIException):
    """Raised when input validation fails"""

    status_code = 400

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            f"Validation failed for field '{field}': {reason}",
            "VALIDATION_ERROR",
            {"field": field, "value": str(value), "reason": reason},
        )


def to_http_exception(exc: ScraperAPIException) -> HTTPException:
    """Convert ScraperAPIException to FastAPI HTTPException"""

    status_code_map = {
        "PROFILE_NOT_FOUND": 404,
        "AUTHENTICATION_REQUIRED": 401,
        "VALIDATION_ERROR": 400,
        "SCRAPE_FAULT": 502,
        "DATABASE_ERROR": 500,
    }

    status_code = status_code_map.get(exc.error_code, exc.status_code)

    return HTTPException(
        status_code=status_code,
        detail={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )
