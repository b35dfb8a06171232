"""Application-level exceptions and FastAPI exception handlers."""


from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)

class NotFoundError(AppException):
    def __init__(self, entity: str, entity_id: str | None = None):
        msg = f"{entity} not found" if not entity_id else f"{entity} '{entity_id}' not found"
        super().__init__(msg, status_code=404, code="NOT_FOUND")

class ConflictError(AppException):
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, status_code=409, code=code)

class ValidationError(AppException):
    def __init__(self, message: str):
        super().__init__(message, status_code=422, code="VALIDATION_ERROR")

class AlreadySubmittedError(ConflictError):
    """The recipient already completed their step. Not retryable."""

    def __init__(self, message: str = "Recipient has already submitted their portion"):
        super().__init__(message, code="ALREADY_SUBMITTED")

class OutOfTurnError(ConflictError):
    """An earlier recipient in the workflow has not completed yet."""

    def __init__(self, message: str = "An earlier recipient has not completed their portion yet"):
        super().__init__(message, code="OUT_OF_TURN")

class DocumentGenerationError(AppException):
    """Raised when the source document cannot be loaded, filled or flattened."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500, code="DOCUMENT_GENERATION_ERROR")

class AuditGenerationError(AppException):
    """Raised when the audit document cannot be compiled or stored."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500, code="AUDIT_GENERATION_ERROR")

class StorageError(AppException):
    """Raised when a document cannot be read from or written to the store."""

    def __init__(self, message: str):
        super().__init__(message, status_code=500, code="STORAGE_ERROR")

class NotificationDispatchError(AppException):
    """Raised by gateways when an outbound message could not be handed off."""

    def __init__(self, message: str):
        super().__init__(message, status_code=502, code="NOTIFICATION_DISPATCH_ERROR")

# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def _error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.code, exc.message),
        )

    @app.exception_handler(404)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=_error_body("NOT_FOUND", "Resource not found"),
        )

    @app.exception_handler(500)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content=_error_body("INTERNAL_ERROR", "An unexpected error occurred"),
        )
