"""Error taxonomy shared by the REST layer and the WebSocket gateway.

Every business error is raised before any state change happens, so callers
can surface it directly: REST routes render it through the exception handler
registered in ``chatcore.main``; the gateway sends it back to the originating
session as a ``message_error`` frame.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class ChatError(Exception):
    """Base class for all errors the chat core reports to a caller."""

    code: str = "chat_error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(ChatError):
    """A required field is missing or malformed."""

    code = "validation_error"
    status_code = 400


class AuthenticationError(ChatError):
    """The caller could not be identified (missing, invalid or expired token)."""

    code = "authentication_error"
    status_code = 401


class AuthorizationError(ChatError):
    """The caller is not a participant, or not an admin for an admin-only mutation."""

    code = "authorization_error"
    status_code = 403


class NotFoundError(ChatError):
    """A referenced user, conversation or message does not exist."""

    code = "not_found"
    status_code = 404


class ConflictError(ChatError):
    """The request contradicts current state (duplicate member, last admin, ...)."""

    code = "conflict"
    status_code = 409


class StorageError(ChatError):
    """The persistence layer is unavailable. Retryable by the caller."""

    code = "storage_error"
    status_code = 503


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Render a ChatError as a JSON response with its HTTP status."""
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)
