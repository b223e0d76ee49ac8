from __future__ import annotations

import os
import signal
import subprocess


class ProcessHandle:
    """Cancellation handle for one spawned child process.

    The child is started as the leader of its own session, so signalling its
    process group also reaches anything it spawned. Kept by the registry in a
    map beside the execution record and never serialized.
    """

    def __init__(self, process: subprocess.Popen) -> None:
        self._process = process

    @property
    def pid(self) -> int:
        return int(self._process.pid)

    @property
    def exited(self) -> bool:
        return self._process.poll() is not None

    def kill(self) -> None:
        """SIGKILL the child's process group.

        Raises ProcessLookupError if the child has already exited, and OSError
        if the signal cannot be delivered.
        """
        if self.exited:
            raise ProcessLookupError(f"process {self.pid} already exited")
        os.killpg(self.pid, signal.SIGKILL)

    def kill_group(self) -> bool:
        """SIGKILL whatever is left of the process group, leader or not.

        Returns False when no process in the group remains.
        """
        try:
            os.killpg(self.pid, signal.SIGKILL)
        except ProcessLookupError:
            return False
        return True
