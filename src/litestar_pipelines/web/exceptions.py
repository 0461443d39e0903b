"""Exception handling for pipeline web endpoints.

This module maps the library's exceptions onto HTTP responses so route handlers
can let them propagate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from litestar import Response
from litestar.status_codes import HTTP_400_BAD_REQUEST, HTTP_404_NOT_FOUND, HTTP_409_CONFLICT

from litestar_pipelines.exceptions import (
    RunAlreadyTerminalError,
    RunNotFoundError,
    TriggerConfigurationError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

    from litestar import Request

__all__ = [
    "EXCEPTION_HANDLERS",
    "conflict_handler",
    "not_found_handler",
    "trigger_configuration_handler",
    "validation_error_handler",
]


def _error_response(error: str, message: str, status_code: int, **extra: Any) -> Response:
    return Response(
        content={"error": error, "message": message, **extra},
        status_code=status_code,
        media_type="application/json",
    )


def validation_error_handler(_request: Request, exc: WorkflowValidationError) -> Response:
    """Return a 400 listing every problem found in a workflow document.

    Args:
        request: The Litestar request object.
        exc: The validation error.

    Returns:
        Response with the error kind and the individual messages.
    """
    return _error_response(
        "invalid_workflow",
        "Workflow definition is invalid",
        HTTP_400_BAD_REQUEST,
        kind=type(exc).__name__,
        errors=list(exc.errors),
    )


def not_found_handler(_request: Request, exc: WorkflowNotFoundError | RunNotFoundError) -> Response:
    return _error_response("not_found", str(exc), HTTP_404_NOT_FOUND)


def conflict_handler(_request: Request, exc: RunAlreadyTerminalError) -> Response:
    return _error_response("run_terminal", str(exc), HTTP_409_CONFLICT, status=exc.status)


def trigger_configuration_handler(_request: Request, exc: TriggerConfigurationError) -> Response:
    return _error_response("invalid_trigger", str(exc), HTTP_400_BAD_REQUEST)


EXCEPTION_HANDLERS: dict[type[Exception], Callable[[Request, Any], Response]] = {
    WorkflowValidationError: validation_error_handler,
    WorkflowNotFoundError: not_found_handler,
    RunNotFoundError: not_found_handler,
    RunAlreadyTerminalError: conflict_handler,
    TriggerConfigurationError: trigger_configuration_handler,
}
"""Handlers registered on the API router by the plugin."""
