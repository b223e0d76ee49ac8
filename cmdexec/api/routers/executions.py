from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cmdexec.api.dependencies import get_execution_service
from cmdexec.api.errors import kill_failed, not_found
from cmdexec.runtime.cancellation import KillOutcome
from cmdexec.runtime.service import ExecutionService
from cmdexec.storage.registry import ExecutionState


router = APIRouter()


class CommandRequest(BaseModel):
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)


class ExecutionKeyRequest(BaseModel):
    key: str = Field(min_length=1)


_KILL_MESSAGES = {
    KillOutcome.KILLED: "killed!",
    KillOutcome.ALREADY_TERMINAL: "already killed",
}


def _status(service: ExecutionService, key: str) -> dict[str, Any]:
    # ExecutionNotFoundError is mapped to 404 by the app error handlers.
    return {"execution": service.status(key).to_dict()}


def _kill(service: ExecutionService, key: str) -> dict[str, Any]:
    outcome = service.kill(key)
    if outcome == KillOutcome.NOT_FOUND:
        raise not_found(key)
    if outcome == KillOutcome.FAILED:
        raise kill_failed(key)
    return {"key": key, "outcome": outcome.value, "message": _KILL_MESSAGES[outcome]}


@router.post("/request")
def submit_command(
    body: CommandRequest,
    service: ExecutionService = Depends(get_execution_service),
) -> dict[str, Any]:
    return {"key": service.submit(body.command, body.args)}


@router.post("/status")
def command_status(
    body: ExecutionKeyRequest,
    service: ExecutionService = Depends(get_execution_service),
) -> dict[str, Any]:
    return _status(service, body.key)


@router.post("/kill")
def command_kill(
    body: ExecutionKeyRequest,
    service: ExecutionService = Depends(get_execution_service),
) -> dict[str, Any]:
    return _kill(service, body.key)


@router.get("/executions")
def list_executions(
    state: ExecutionState | None = Query(default=None),
    service: ExecutionService = Depends(get_execution_service),
) -> dict[str, Any]:
    items = service.list_executions(state=state)
    return {"items": [s.to_dict() for s in items], "count": len(items)}


@router.get("/executions/{key}")
def get_execution(key: str, service: ExecutionService = Depends(get_execution_service)) -> dict[str, Any]:
    return _status(service, key)


@router.post("/executions/{key}/kill")
def kill_execution(key: str, service: ExecutionService = Depends(get_execution_service)) -> dict[str, Any]:
    return _kill(service, key)
