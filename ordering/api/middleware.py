"""
Error handling for requests that fail outside GraphQL execution.
"""
import logging

from django.http import JsonResponse

from ordering.domain.errors import (
    ConflictError,
    NotFoundError,
    OrderingError,
    PermissionDenied,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ErrorHandler:
    """Error handler for API responses."""

    ERROR_CODES = {
        "VALIDATION_ERROR": 400,
        "INVALID_JSON": 400,
        "UNAUTHENTICATED": 401,
        "FORBIDDEN": 403,
        "NOT_FOUND": 404,
        "CONFLICT": 409,
        "DUPLICATE_REQUEST": 409,
        "INTERNAL_ERROR": 500,
    }

    # Most specific first.
    ERROR_CLASSES = (
        (ValidationError, 400),
        (PermissionDenied, 403),
        (NotFoundError, 404),
        (ConflictError, 409),
    )

    @classmethod
    def status_for(cls, error: OrderingError) -> int:
        if error.code in cls.ERROR_CODES:
            return cls.ERROR_CODES[error.code]
        for error_class, status_code in cls.ERROR_CLASSES:
            if isinstance(error, error_class):
                return status_code
        return 500

    @classmethod
    def error_response(cls, code: str, message: str) -> JsonResponse:
        return JsonResponse(
            {
                "error": {
                    "code": code,
                    "message": message,
                }
            },
            status=cls.ERROR_CODES.get(code, 400),
        )

    @classmethod
    def handle_error(cls, error: Exception) -> JsonResponse:
        """Handle error and return JSON response."""
        if isinstance(error, OrderingError):
            return JsonResponse(
                {
                    "error": {
                        "code": error.code,
                        "message": error.message,
                    }
                },
                status=cls.status_for(error),
            )

        # Log unexpected errors
        logger.error(
            "unexpected_error",
            extra={
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )

        return cls.error_response("INTERNAL_ERROR", "An internal error occurred")
