from __future__ import annotations

from fastapi import Request

from cmdexec.api.errors import APIError
from cmdexec.runtime.service import ExecutionService


def get_execution_service(request: Request) -> ExecutionService:
    """FastAPI dependency: the process-wide ExecutionService built in the app lifespan."""
    service = getattr(request.app.state, "execution_service", None)
    if not isinstance(service, ExecutionService):
        raise APIError(status_code=503, code="unavailable", message="Execution service is not running.")
    return service
