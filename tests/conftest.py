from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest


# Ensure `import cmdexec...` works when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from cmdexec.config.load_config import AppConfig, build_app_config  # noqa: E402


def _make_config(
    *,
    timeout_s: int = 5,
    cache_time_s: int = 60,
    sweep_interval_s: float = 10.0,
    programs: tuple[str, ...] = ("echo", "sleep", "sh"),
) -> AppConfig:
    raw: dict[str, Any] = {
        "execution": {"timeout_s": timeout_s},
        "programs": {"allowed": list(programs)},
        "cache": {"cache_time_s": cache_time_s, "sweep_interval_s": sweep_interval_s},
    }
    return build_app_config(raw)


@pytest.fixture
def make_config() -> Callable[..., AppConfig]:
    return _make_config
