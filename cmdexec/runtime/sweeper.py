from __future__ import annotations

import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any

from cmdexec.storage.registry import ExecutionRegistry
from cmdexec.utils.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class SweeperConfig:
    retention_s: float
    interval_s: float = 10.0


class EvictionSweeper:
    """Background thread that drops finished executions past the retention window."""

    def __init__(self, registry: ExecutionRegistry, config: SweeperConfig) -> None:
        self._registry = registry
        self._config = config
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._last_sweep_at: float | None = None
        self._evicted_total = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "interval_s": float(self._config.interval_s),
            "retention_s": float(self._config.retention_s),
            "last_sweep_at": self._last_sweep_at,
            "evicted_total": int(self._evicted_total),
        }

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        logger.info(
            "sweeper_starting",
            interval_s=self._config.interval_s,
            retention_s=self._config.retention_s,
        )
        self._thread = threading.Thread(target=self._run_loop, name="cmdexec-sweeper", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 5.0) -> None:
        self._stop.set()
        t = self._thread
        if t is None:
            return
        t.join(timeout=timeout_s)
        self._thread = None

    def sweep_once(self, *, now: float | None = None) -> list[str]:
        ts = time.time() if now is None else float(now)
        removed = self._registry.sweep_terminal(ts - self._config.retention_s)
        self._last_sweep_at = ts
        self._evicted_total += len(removed)
        if removed:
            logger.info("sweeper_evicted", count=len(removed), execution_ids=removed)
        return removed

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.sweep_once()
            except Exception as e:
                # Never let one bad tick end the loop.
                logger.error("sweeper_tick_failed", error=str(e), traceback=traceback.format_exc())
            self._stop.wait(self._config.interval_s)
