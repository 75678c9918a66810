from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class RosterError(ApiError):
    """Base class for leave roster engine failures."""

    status_code = 400
    code = "ROSTER_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(self.status_code, code or self.code, message)


class ValidationError(RosterError):
    status_code = 422
    code = "VALIDATION_ERROR"


class ConflictError(RosterError):
    status_code = 409
    code = "CONFLICT"


class TransportError(RosterError):
    status_code = 502
    code = "TRANSPORT_ERROR"


class NotFoundError(RosterError):
    status_code = 404
    code = "NOT_FOUND"


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
