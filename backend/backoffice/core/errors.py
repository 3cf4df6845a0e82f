"""
Application errors

Services raise these exceptions. The handler registered in main.py turns them
into a JSON body {"success": false, "error", "code", "details"} with the
status code carried by the exception.

Author: Backoffice API team
Date: 2026-02-09
"""
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class BackofficeError(Exception):
    """Base error with a stable machine-readable code"""

    status_code = 400
    default_code = "ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BackofficeError):
    status_code = 400
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)


class NotFoundError(BackofficeError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(BackofficeError):
    status_code = 409
    default_code = "CONFLICT"


class IntegrationError(BackofficeError):
    """A third-party API (Focus NFe, Pagar.me, fal...) refused or failed the call"""
    status_code = 502
    default_code = "INTEGRATION_ERROR"


async def backoffice_error_handler(request: Request, exc: BackofficeError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
