"""
Domain errors, the structured error envelope, and global exception handlers.

Every error returned by the API follows this envelope:

    {
        "error": "snake_case_code",
        "message": "Human-readable description.",
        "detail": { ... }   // optional, only in debug mode
    }

Inside the service the same exception classes double as tagged failure
values: the clustering pipeline catches them at its boundary and reports
`code` in its outcome instead of letting the exception escape.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from project_clusters.core.config import get_settings

logger = logging.getLogger(__name__)

HTTP_499_CLIENT_CLOSED_REQUEST = 499


# --------------------------------------------------------------------------- #
# Canonical error envelope
# --------------------------------------------------------------------------- #

def error_response(
    code: str,
    message: str,
    status_code: int,
    detail: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body: dict[str, Any] = {"error": code, "message": message}
    if detail is not None:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body, headers=headers)


# --------------------------------------------------------------------------- #
# Custom exception classes
# --------------------------------------------------------------------------- #

class ClusteringAPIError(Exception):
    """Base exception for all domain errors raised inside services."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.headers = headers
        super().__init__(message)


class InsufficientDataError(ClusteringAPIError):
    def __init__(self, eligible: int, required: int = 2) -> None:
        super().__init__(
            "insufficient_data",
            f"Clustering needs at least {required} projects with a prompt; "
            f"got {eligible}.",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
        )


class EmbeddingUnavailableError(ClusteringAPIError):
    def __init__(self, message: str) -> None:
        super().__init__("embedding_unavailable", message, status.HTTP_502_BAD_GATEWAY)


class ProviderError(ClusteringAPIError):
    """Raised by embedding / naming providers on any failure."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(
            "provider_error",
            f"{provider}: {message}",
            status.HTTP_502_BAD_GATEWAY,
        )


class PipelineBusyError(ClusteringAPIError):
    def __init__(self) -> None:
        super().__init__(
            "busy",
            "A clustering run is already in progress. Try again when it finishes.",
            status.HTTP_409_CONFLICT,
        )


class ClusteringCancelledError(ClusteringAPIError):
    def __init__(self) -> None:
        super().__init__(
            "cancelled",
            "The clustering run was cancelled before it completed.",
            HTTP_499_CLIENT_CLOSED_REQUEST,
        )


class BatchTooLargeError(ClusteringAPIError):
    def __init__(self, received: int, max_allowed: int) -> None:
        super().__init__(
            "batch_too_large",
            f"Request contains {received} projects; maximum allowed is {max_allowed}.",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
        )


class UnauthorizedError(ClusteringAPIError):
    def __init__(self) -> None:
        super().__init__(
            "unauthorized",
            "Missing or invalid X-Api-Key header.",
            status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "ApiKey"},
        )


# --------------------------------------------------------------------------- #
# K-Means input errors. These signal a defect in how the caller built the
# engine input, never a user-facing condition.
# --------------------------------------------------------------------------- #

class ClusterEngineError(ClusteringAPIError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class EmptyInputError(ClusterEngineError):
    def __init__(self, message: str = "At least one non-empty vector is required.") -> None:
        super().__init__("empty_input", message)


class DimensionMismatchError(ClusterEngineError):
    def __init__(self, index: int, got: int, expected: int) -> None:
        super().__init__(
            "dimension_mismatch",
            f"Vector at index {index} has {got} dimensions; expected {expected}.",
        )


class InvalidKError(ClusterEngineError):
    def __init__(self, message: str) -> None:
        super().__init__("invalid_k", message)


# --------------------------------------------------------------------------- #
# FastAPI exception handlers, registered via register_exception_handlers()
# --------------------------------------------------------------------------- #

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ClusteringAPIError)
    async def clustering_api_error_handler(
        request: Request, exc: ClusteringAPIError
    ) -> JSONResponse:
        logger.warning("ClusteringAPIError [%s]: %s", exc.code, exc.message)
        return error_response(exc.code, exc.message, exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug("RequestValidationError: %s", exc.errors())
        return error_response(
            code="validation_error",
            message="Request body or query parameters failed validation.",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=jsonable_errors(exc.errors()),
        )

    @app.exception_handler(ValidationError)
    async def pydantic_validation_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        return error_response(
            code="validation_error",
            message="Internal data validation error.",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=jsonable_errors(exc.errors()),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return error_response(
            code="internal_error",
            message="An unexpected error occurred. Please try again later.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{type(exc).__name__}: {exc}" if get_settings().debug else None,
        )


def jsonable_errors(errors: Any) -> list[dict[str, Any]]:
    """Drop the non-serialisable `ctx` / `input` members of pydantic errors."""
    return [
        {key: value for key, value in err.items() if key in {"type", "loc", "msg"}}
        for err in errors
    ]
