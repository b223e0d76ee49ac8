from __future__ import annotations

import subprocess
import threading
import traceback
from dataclasses import dataclass

from cmdexec.storage.registry import (
    ExecutionNotFoundError,
    ExecutionRegistry,
    ExecutionState,
    LiveExecution,
)
from cmdexec.utils.cancel import ProcessHandle
from cmdexec.utils.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class RunnerConfig:
    timeout_s: float
    # Upper bound for draining output after the runner force-stops a child.
    drain_timeout_s: float = 5.0


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace")


class CommandRunner:
    """Drives one execution from pending to a terminal state.

    Each execution gets its own daemon thread. The thread only holds the
    execution id; every read or write of the record goes back through the
    registry.
    """

    def __init__(self, registry: ExecutionRegistry, config: RunnerConfig) -> None:
        self._registry = registry
        self._config = config

    def spawn(self, execution_id: str) -> threading.Thread:
        t = threading.Thread(
            target=self.run,
            args=(execution_id,),
            name=f"cmdexec-run-{execution_id[-8:]}",
            daemon=True,
        )
        t.start()
        return t

    def run(self, execution_id: str) -> None:
        try:
            argv = self._registry.with_live(execution_id, self._begin)
        except ExecutionNotFoundError:
            logger.warning("execution_vanished_before_start", execution_id=execution_id)
            return
        if argv is None:
            # Already started or finished elsewhere: never spawn twice.
            return

        try:
            self._execute(execution_id, argv)
        except Exception as e:
            logger.error(
                "execution_runner_crashed",
                execution_id=execution_id,
                error=str(e),
                traceback=traceback.format_exc(),
            )
            self._finalize(
                execution_id,
                ExecutionState.COMPLETED,
                output=str(e),
                exit_code=-1,
                error=f"runner_unhandled_exception: {e}",
            )

    @staticmethod
    def _begin(record: LiveExecution) -> list[str] | None:
        if record.state != ExecutionState.PENDING:
            return None
        record.mark_running()
        return [record.command, *record.args]

    def _execute(self, execution_id: str, argv: list[str]) -> None:
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                # Own process group, so a kill or timeout reaches grandchildren too.
                start_new_session=True,
            )
        except OSError as e:
            logger.warning("execution_spawn_failed", execution_id=execution_id, error=str(e))
            self._finalize(
                execution_id,
                ExecutionState.COMPLETED,
                output=str(e),
                exit_code=-1,
                error=f"spawn_failed: {e}",
            )
            return

        handle = ProcessHandle(process)
        logger.info("execution_started", execution_id=execution_id, command=argv[0], args=argv[1:], pid=handle.pid)
        try:
            self._registry.with_live(execution_id, lambda r: r.install_handle(handle))
        except ExecutionNotFoundError:
            handle.kill_group()
            process.communicate()
            return

        try:
            raw, _ = process.communicate(timeout=self._config.timeout_s)
        except subprocess.TimeoutExpired:
            handle.kill_group()
            try:
                # Returns everything written before the deadline as well.
                raw, _ = process.communicate(timeout=self._config.drain_timeout_s)
            except subprocess.TimeoutExpired:
                # A process that left the group still holds the pipe.
                raw = b""
                if process.stdout is not None:
                    process.stdout.close()
                process.wait()
            committed = self._finalize(
                execution_id,
                ExecutionState.TIMED_OUT,
                output=_decode(raw),
                exit_code=process.poll(),
                error=f"timeout_after_{self._config.timeout_s:g}s",
            )
            if committed:
                logger.info("execution_timed_out", execution_id=execution_id, timeout_s=self._config.timeout_s)
            return

        committed = self._finalize(
            execution_id,
            ExecutionState.COMPLETED,
            output=_decode(raw),
            exit_code=process.returncode,
        )
        if committed:
            logger.info("execution_finished", execution_id=execution_id, exit_code=process.returncode)

    def _finalize(
        self,
        execution_id: str,
        state: ExecutionState,
        *,
        output: str,
        exit_code: int | None,
        error: str | None = None,
    ) -> bool:
        """Commit a terminal state unless another writer got there first."""

        def _apply(record: LiveExecution) -> bool:
            if record.state != ExecutionState.RUNNING:
                return False
            record.finish(state, output=output, exit_code=exit_code, error=error)
            return True

        try:
            return self._registry.with_live(execution_id, _apply)
        except ExecutionNotFoundError:
            return False
