from typing import Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ChatServiceError(HTTPException):
    """
    Base error of the messaging subsystem.

    Subclasses HTTPException so services can raise it directly, the same way
    route handlers do; `code` is the stable machine-readable name sent to
    REST and WebSocket clients.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"
    default_detail = "Request failed"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail}


class Forbidden(ChatServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_detail = "Access denied"


class NotFound(ChatServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_detail = "Not found"


class ChatClosed(ChatServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "chat_closed"
    default_detail = "Chat is closed"


class ValidationFailed(ChatServiceError):
    status_code = 422
    code = "validation_failed"
    default_detail = "Invalid message"


class UploadFailed(ChatServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upload_failed"
    default_detail = "Failed to upload file"


class TransportUnavailable(ChatServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "transport_unavailable"
    default_detail = "Realtime channel unavailable"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (Forbidden, NotFound, ChatClosed, ValidationFailed, UploadFailed, TransportUnavailable)
}


async def chat_service_error_handler(request: Request, exc: ChatServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Renders FastAPI's own body/query validation errors as ValidationFailed."""
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        problems.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    failure = ValidationFailed("; ".join(problems) or None)
    return JSONResponse(status_code=failure.status_code, content=failure.to_dict())
