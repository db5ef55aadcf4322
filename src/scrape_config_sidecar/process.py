"""
Process control for the Telegraf agent.

The materializer only needs two things from the agent process: its pid and a
way to ask it to re-read its configuration. Both are expressed by the
`ProcessController` protocol so tests can substitute a fake; the production
implementation reads the agent's PID file and sends it SIGHUP.
"""
from __future__ import annotations

import logging
import os
import re
import signal
from pathlib import Path
from typing import Protocol, Union

LOGGER = logging.getLogger(__name__)
_PID_PATTERN = re.compile(r"[+-]?[0-9]+")


class ProcessControlError(RuntimeError):
    """Raised when the agent pid cannot be determined or the agent cannot be signalled."""


class ProcessController(Protocol):
    def current_pid(self) -> int:
        ...

    def reload(self, pid: int) -> None:
        ...


class PidFileProcessController:
    """
    Locates the agent through its PID file and reloads it with a signal.

    Attributes:
        pid_file: Path of the file the agent writes its pid into.
        reload_signal: Signal asking the agent to reload (SIGHUP by default).
    """

    def __init__(
        self,
        pid_file: Union[str, Path],
        reload_signal: signal.Signals = signal.SIGHUP,
    ) -> None:
        self.pid_file = Path(pid_file)
        self.reload_signal = reload_signal

    def current_pid(self) -> int:
        """
        Reads the agent pid from the PID file.

        Exactly one trailing newline is tolerated; any other surrounding text
        makes the file unparsable.

        Raises:
            ProcessControlError: If the file is missing, unreadable or does not
                hold an integer.
        """
        try:
            raw = self.pid_file.read_text()
        except OSError as exc:
            raise ProcessControlError(f"unable to read pid file {self.pid_file}: {exc}") from exc

        if raw.endswith("\n"):
            raw = raw[:-1]
        if not _PID_PATTERN.fullmatch(raw):
            raise ProcessControlError(f"invalid pid in {self.pid_file}: {raw!r}")
        return int(raw)

    def reload(self, pid: int) -> None:
        """
        Sends the reload signal to ``pid``.

        Raises:
            ProcessControlError: If the signal could not be delivered.
        """
        try:
            os.kill(pid, self.reload_signal)
        except OSError as exc:
            raise ProcessControlError(
                f"unable to send {self.reload_signal.name} to pid {pid}: {exc}"
            ) from exc
        LOGGER.info("Sent %s to telegraf (pid %d)", self.reload_signal.name, pid)


__all__ = ["ProcessController", "ProcessControlError", "PidFileProcessController"]
