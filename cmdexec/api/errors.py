from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cmdexec.runtime.service import UnknownCommandError
from cmdexec.storage.registry import ExecutionNotFoundError
from cmdexec.utils.logging import get_logger


logger = get_logger(__name__)


@dataclass
class APIError(Exception):
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


def not_found(key: str) -> APIError:
    return APIError(status_code=404, code="not_found", message="Execution not found.", details={"key": key})


def unknown_command(command: str) -> APIError:
    # Message text kept from the legacy service, clients match on it.
    return APIError(status_code=404, code="unknown_command", message="command not found", details={"command": command})


def kill_failed(key: str) -> APIError:
    return APIError(status_code=500, code="kill_failed", message="Failed to terminate the process.", details={"key": key})


def error_response(*, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=int(status_code), content=payload)


def _render(exc: APIError) -> JSONResponse:
    return error_response(status_code=exc.status_code, code=exc.code, message=exc.message, details=exc.details)


async def api_error_handler(_req: Request, exc: APIError) -> JSONResponse:
    return _render(exc)


async def execution_not_found_handler(_req: Request, exc: ExecutionNotFoundError) -> JSONResponse:
    return _render(not_found(exc.execution_id))


async def unknown_command_handler(_req: Request, exc: UnknownCommandError) -> JSONResponse:
    return _render(unknown_command(exc.command))


async def validation_error_handler(_req: Request, exc: RequestValidationError) -> JSONResponse:
    # Undecodable JSON and schema mismatches both land here.
    return error_response(
        status_code=400,
        code="invalid_argument",
        message="Request validation failed.",
        details={"errors": [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]},
    )


async def unhandled_error_handler(req: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", path=str(req.url.path), error_type=type(exc).__name__, error=str(exc))
    return error_response(
        status_code=500,
        code="internal",
        message="Internal server error.",
        details={"type": type(exc).__name__},
    )


def install_error_handlers(app: FastAPI) -> None:
    """Map domain exceptions to the JSON error envelope."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(ExecutionNotFoundError, execution_not_found_handler)
    app.add_exception_handler(UnknownCommandError, unknown_command_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
