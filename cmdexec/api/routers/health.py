from __future__ import annotations

import importlib.metadata
import time
from typing import Any

from fastapi import APIRouter, Request


router = APIRouter()


def _pkg_version(name: str) -> str | None:
    try:
        return str(importlib.metadata.version(name))
    except importlib.metadata.PackageNotFoundError:
        return None


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/version")
def version() -> dict[str, Any]:
    return {
        "service": "cmdexec",
        "api": "v1",
        "version": _pkg_version("cmdexec"),
        "deps": {
            "fastapi": _pkg_version("fastapi"),
            "uvicorn": _pkg_version("uvicorn"),
            "structlog": _pkg_version("structlog"),
        },
        "ts": time.time(),
    }


@router.get("/system/sweeper")
def system_sweeper(request: Request) -> dict[str, Any]:
    # Minimal runtime observability: sweeper thread plus record counts.
    service = getattr(request.app.state, "execution_service", None)
    if service is None:
        return {"ts": time.time(), "enabled": False}
    return {"ts": time.time(), "enabled": True, **service.status_snapshot()}
