"""
api/responses.py -- The single error envelope every failure is rendered into.

    {"error": {"code": "<machine code>", "message": "<short text>"}}

Kept apart from api/main.py so route modules can build the same envelope
without importing the application module.
"""

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.errors import AuthError


def error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
    )


def auth_error_response(exc: AuthError) -> JSONResponse:
    return error_response(exc.status_code, exc.error_code, exc.message)
