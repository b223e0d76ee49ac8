from __future__ import annotations

import enum
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from cmdexec.utils.cancel import ProcessHandle


T = TypeVar("T")


class ExecutionState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({ExecutionState.COMPLETED, ExecutionState.TIMED_OUT, ExecutionState.KILLED})


class ExecutionNotFoundError(KeyError):
    """Raised when an execution id is unknown or already evicted."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(execution_id)
        self.execution_id = execution_id

    def __str__(self) -> str:
        return f"Execution not found: {self.execution_id}"


class InvalidTransitionError(RuntimeError):
    pass


def _utc_ts() -> float:
    return time.time()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class ExecutionSnapshot:
    """Immutable copy of an execution record, safe to hand to any reader."""

    execution_id: str
    command: str
    args: tuple[str, ...]
    state: ExecutionState
    output: str
    exit_code: int | None
    started_at: float
    ended_at: float | None
    error: str | None

    @property
    def terminated(self) -> bool:
        return self.state.terminal

    @property
    def killed(self) -> bool:
        return self.state == ExecutionState.KILLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.execution_id,
            "command": self.command,
            "args": list(self.args),
            "state": self.state.value,
            "output": self.output,
            "exit_code": self.exit_code,
            "started_at": float(self.started_at),
            "ended_at": float(self.ended_at) if self.ended_at is not None else None,
            "error": self.error,
            "terminated": self.terminated,
            "killed": self.killed,
        }


@dataclass
class ExecutionRecord:
    """Stored execution data. Holds nothing that cannot be serialized."""

    execution_id: str
    command: str
    args: tuple[str, ...]
    started_at: float
    state: ExecutionState = ExecutionState.PENDING
    output: str = ""
    exit_code: int | None = None
    ended_at: float | None = None
    error: str | None = None

    def snapshot(self) -> ExecutionSnapshot:
        return ExecutionSnapshot(
            execution_id=self.execution_id,
            command=self.command,
            args=self.args,
            state=self.state,
            output=self.output,
            exit_code=self.exit_code,
            started_at=self.started_at,
            ended_at=self.ended_at,
            error=self.error,
        )


class LiveExecution:
    """Write access to one record and its process handle.

    Only built by `ExecutionRegistry.with_live`, and only valid while that
    call holds the registry lock. Transition methods enforce the state machine:
    pending -> running -> {completed, timed_out, killed}.
    """

    def __init__(self, record: ExecutionRecord, handles: dict[str, ProcessHandle]) -> None:
        self.record = record
        self._handles = handles

    @property
    def execution_id(self) -> str:
        return self.record.execution_id

    @property
    def command(self) -> str:
        return self.record.command

    @property
    def args(self) -> tuple[str, ...]:
        return self.record.args

    @property
    def state(self) -> ExecutionState:
        return self.record.state

    @property
    def terminal(self) -> bool:
        return self.record.state.terminal

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handles.get(self.record.execution_id)

    def mark_running(self) -> None:
        if self.record.state != ExecutionState.PENDING:
            raise InvalidTransitionError(f"{self.execution_id}: {self.record.state.value} -> running")
        self.record.state = ExecutionState.RUNNING

    def install_handle(self, handle: ProcessHandle) -> None:
        if self.record.state != ExecutionState.RUNNING:
            raise InvalidTransitionError(f"{self.execution_id}: cannot install handle in {self.record.state.value}")
        self._handles[self.record.execution_id] = handle

    def finish(
        self,
        state: ExecutionState,
        *,
        output: str = "",
        exit_code: int | None = None,
        error: str | None = None,
    ) -> None:
        if state not in TERMINAL_STATES:
            raise InvalidTransitionError(f"{self.execution_id}: {state.value} is not terminal")
        if self.record.state != ExecutionState.RUNNING:
            raise InvalidTransitionError(f"{self.execution_id}: {self.record.state.value} -> {state.value}")
        r = self.record
        r.state = state
        r.output = output
        r.exit_code = exit_code
        r.error = error
        r.ended_at = _utc_ts()
        self._handles.pop(r.execution_id, None)

    def snapshot(self) -> ExecutionSnapshot:
        return self.record.snapshot()


class ExecutionRegistry:
    """In-memory store of execution records keyed by id.

    A single lock guards the record map, the process handle map and every
    record in them. Readers get frozen snapshots; writers go through
    `with_live`. No record or handle reference escapes the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, ExecutionRecord] = {}
        # Present only while the execution is running with a spawned process.
        self._handles: dict[str, ProcessHandle] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def create(self, command: str, args: list[str] | tuple[str, ...] | None = None) -> str:
        record = ExecutionRecord(
            execution_id=_new_id("exec"),
            command=str(command),
            args=tuple(str(a) for a in (args or ())),
            started_at=_utc_ts(),
        )
        with self._lock:
            while record.execution_id in self._records:
                record.execution_id = _new_id("exec")
            self._records[record.execution_id] = record
        return record.execution_id

    def get(self, execution_id: str) -> ExecutionSnapshot:
        with self._lock:
            record = self._records.get(execution_id)
            if record is None:
                raise ExecutionNotFoundError(execution_id)
            return record.snapshot()

    def with_live(self, execution_id: str, fn: Callable[[LiveExecution], T]) -> T:
        """Apply `fn` to the live record while holding the registry lock.

        `fn` must not block for long: it runs while every reader waits.
        """
        with self._lock:
            record = self._records.get(execution_id)
            if record is None:
                raise ExecutionNotFoundError(execution_id)
            return fn(LiveExecution(record, self._handles))

    def sweep_terminal(self, older_than: float) -> list[str]:
        """Remove terminal records whose `ended_at` is before `older_than`."""
        with self._lock:
            expired = [
                rid
                for rid, r in self._records.items()
                if r.state.terminal and r.ended_at is not None and r.ended_at < older_than
            ]
            for rid in expired:
                del self._records[rid]
                self._handles.pop(rid, None)
        return expired

    def list_snapshots(self, *, state: ExecutionState | None = None) -> list[ExecutionSnapshot]:
        with self._lock:
            snaps = [r.snapshot() for r in self._records.values() if state is None or r.state == state]
        snaps.sort(key=lambda s: (s.started_at, s.execution_id))
        return snaps

    def count_by_state(self) -> dict[str, int]:
        counts = {s.value: 0 for s in ExecutionState}
        with self._lock:
            for r in self._records.values():
                counts[r.state.value] += 1
        return counts

    def running_ids(self) -> list[str]:
        with self._lock:
            return [rid for rid, r in self._records.items() if r.state == ExecutionState.RUNNING]

    def handle_count(self) -> int:
        with self._lock:
            return len(self._handles)
