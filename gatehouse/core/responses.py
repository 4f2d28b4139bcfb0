"""Response envelope models.

Consistent error format for all API endpoints, plus the small payloads the
auth and avatar routes return.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.get("/list-sessions")
        async def list_sessions(...) -> DataResponse[list[SessionSchema]]:
            return DataResponse(data=sessions)
    """

    data: T


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        details: Optional list of field-level errors (for validation).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope.

    All API errors use {"error": {...}} envelope.

    Usage in exception handlers:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=exc.code, message=exc.message)
            ).model_dump(),
        )
    """

    error: ErrorDetail


class GuardRejection(BaseModel):
    """401 body for a missing session (non-HTML clients).

    Produced by the guard pipeline and by endpoints that require a session.

    Flat shape (not the API envelope) so fetch callers can branch on
    ``error`` directly.
    """

    error: str = "UNAUTHORIZED"
    message: str = "Authentication required"


class AvatarResult(BaseModel):
    """Result of any avatar change."""

    url: str
