"""
Application error taxonomy.

Expected, user-facing conditions (not found, expired, already used, unauthorized
intent) are raised as AppError subclasses and rendered by the exception handler
in app.main as `{"success": false, "message": ..., "code": ...}` with a 4xx status.
UpstreamError covers persistence and delivery failures and is rendered as a
generic 500 without internals.
"""
from fastapi import status


class AppError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "bad_request"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ExpiredError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "expired"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class AlreadyUsedError(ConflictError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "already_used"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class UnauthorizedIntentError(ForbiddenError):
    """A caller tried to obtain a role nobody granted them."""

    code = "unauthorized_intent"


class UpstreamError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "upstream_error"
