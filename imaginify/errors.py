import json
import logging
from typing import NoReturn

logger = logging.getLogger(__name__)

GENERIC_DETAIL = "An unexpected error occurred."


class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, code: str = "INTERNAL_SERVER_ERROR", expose: bool = True):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        # Wrapped foreign errors keep their text for the logs only
        self.expose = expose

    def to_dict(self):
        return {"error": self.code, "detail": self.message if self.expose else GENERIC_DETAIL}


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404, "NOT_FOUND")


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, 403, "UNAUTHORIZED")


class MissingConfigurationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 500, "MISSING_CONFIGURATION")


class UpstreamError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 502, "UPSTREAM_FAILURE")


class ValidationFailure(AppError):
    def __init__(self, message: str):
        super().__init__(message, 400, "VALIDATION_FAILURE")


def handle_error(error) -> NoReturn:
    """Log ``error`` and raise it as an ``AppError``.

    Meant to be called from an ``except`` block. Errors that are already
    ``AppError`` instances pass through untouched.
    """
    if isinstance(error, AppError):
        logger.error(f"[{error.code}] {error.message}")
        raise error

    if isinstance(error, Exception):
        name = type(error).__name__
        logger.error(f"[ERROR] {name}: {error}")
        raise AppError(str(error), 500, name.upper(), expose=False) from error

    if isinstance(error, str):
        logger.error(f"[ERROR] {error}")
        raise AppError(error, 500, "UNKNOWN_ERROR", expose=False)

    logger.error(f"[ERROR] Unknown error: {error!r}")
    raise AppError(f"Unknown error: {json.dumps(error, default=str)}", 500, "UNKNOWN_ERROR", expose=False)
