from __future__ import annotations

import time
from typing import Any

from cmdexec.config.load_config import AppConfig
from cmdexec.runtime.cancellation import KillOutcome, kill_execution
from cmdexec.runtime.runner import CommandRunner, RunnerConfig
from cmdexec.runtime.sweeper import EvictionSweeper, SweeperConfig
from cmdexec.storage.registry import ExecutionRegistry, ExecutionSnapshot, ExecutionState
from cmdexec.utils.logging import get_logger


logger = get_logger(__name__)


class UnknownCommandError(ValueError):
    """Raised when a submitted command is not in the configured whitelist."""

    def __init__(self, command: str) -> None:
        super().__init__(f"Command not allowed: {command!r}")
        self.command = command


class ExecutionService:
    """Wires submit/status/kill onto the registry, runner and sweeper.

    Submit returns as soon as the record exists; the command itself runs on
    a runner thread. Status reads never wait on a runner.
    """

    def __init__(self, config: AppConfig, *, registry: ExecutionRegistry | None = None) -> None:
        self._config = config
        self.registry = registry or ExecutionRegistry()
        self.runner = CommandRunner(self.registry, RunnerConfig(timeout_s=float(config.execution.timeout_s)))
        self.sweeper = EvictionSweeper(
            self.registry,
            SweeperConfig(
                retention_s=float(config.cache.cache_time_s),
                interval_s=float(config.cache.sweep_interval_s),
            ),
        )

    @property
    def config(self) -> AppConfig:
        return self._config

    def start(self) -> None:
        self.sweeper.start()

    def stop(self, *, kill_running: bool = True) -> int:
        """Stop the sweeper and (by default) kill executions that are still running.

        Returns the number of executions killed.
        """
        self.sweeper.stop()
        if not kill_running:
            return 0
        killed = 0
        for execution_id in self.registry.running_ids():
            if kill_execution(self.registry, execution_id) == KillOutcome.KILLED:
                killed += 1
        if killed:
            logger.info("shutdown_killed_running", count=killed)
        return killed

    def submit(self, command: str, args: list[str] | None = None) -> str:
        # Matched and stored exactly as given, no normalization.
        if not self._config.programs.is_allowed(command):
            logger.info("execution_rejected", command=command)
            raise UnknownCommandError(command)

        execution_id = self.registry.create(command, list(args or []))
        logger.info("execution_submitted", execution_id=execution_id, command=command)
        self.runner.spawn(execution_id)
        return execution_id

    def status(self, execution_id: str) -> ExecutionSnapshot:
        return self.registry.get(execution_id)

    def kill(self, execution_id: str) -> KillOutcome:
        return kill_execution(self.registry, execution_id)

    def list_executions(self, *, state: ExecutionState | None = None) -> list[ExecutionSnapshot]:
        return self.registry.list_snapshots(state=state)

    def wait(
        self,
        execution_id: str,
        *,
        timeout_s: float | None = None,
        poll_interval_s: float = 0.05,
    ) -> ExecutionSnapshot:
        """Poll until the execution is terminal or `timeout_s` elapses.

        Returns the latest snapshot either way; raises ExecutionNotFoundError
        if the record disappears.
        """
        deadline = None if timeout_s is None else time.monotonic() + float(timeout_s)
        while True:
            snap = self.registry.get(execution_id)
            if snap.terminated:
                return snap
            if deadline is not None and time.monotonic() >= deadline:
                return snap
            time.sleep(poll_interval_s)

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "sweeper": self.sweeper.status_snapshot(),
            "executions_by_state": self.registry.count_by_state(),
            "timeout_s": int(self._config.execution.timeout_s),
            "programs": list(self._config.programs.allowed),
        }
