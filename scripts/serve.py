#!/usr/bin/env python3
from __future__ import annotations

import os
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from cmdexec.config.load_config import ConfigError, load_app_config  # noqa: E402


def main() -> int:
    # Fail fast on a bad config before uvicorn starts accepting connections.
    try:
        cfg = load_app_config()
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    host = os.getenv("CMDEXEC_HOST", cfg.server.host)
    port = int(os.getenv("CMDEXEC_PORT", str(cfg.server.port)))
    reload = os.getenv("CMDEXEC_RELOAD", "0").strip().lower() in {"1", "true", "yes", "y", "on"}

    import uvicorn

    uvicorn.run(
        "cmdexec.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=os.getenv("CMDEXEC_LOG_LEVEL", cfg.logging.level),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
