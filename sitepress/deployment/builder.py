"""Build runner: execute a site's validate/build commands and stream their output."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import IO

from sitepress.config import DEFAULT_BUILD_COMMAND
from sitepress.errors import BuildError
from sitepress.models.deployment import BuildResult, LogLevel
from sitepress.models.site import Command, SiteConfig

logger = logging.getLogger(__name__)

LineCallback = Callable[[LogLevel, str], None]


class ProcessRegistry:
    """Thread-safe map of task id to its running subprocess, for hard cancel."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processes: dict[str, subprocess.Popen[str]] = {}

    def register(self, task_id: str, process: subprocess.Popen[str]) -> None:
        with self._lock:
            self._processes[task_id] = process
        logger.debug("Registered process %s for task %s", process.pid, task_id)

    def unregister(self, task_id: str) -> None:
        with self._lock:
            self._processes.pop(task_id, None)

    def get(self, task_id: str) -> subprocess.Popen[str] | None:
        with self._lock:
            return self._processes.get(task_id)

    def terminate(self, task_id: str, wait_seconds: float = 3.0) -> bool:
        """Terminate the process of *task_id*.

        Returns True if a process was found.
        """
        with self._lock:
            process = self._processes.pop(task_id, None)
        if process is None:
            return False
        try:
            _signal(process, signal.SIGTERM)
            try:
                process.wait(timeout=wait_seconds)
            except subprocess.TimeoutExpired:
                _signal(process, signal.SIGKILL)
                process.wait()
        except OSError as exc:
            logger.warning("Error terminating process of task %s: %s", task_id, exc)
        return True


def _signal(process: subprocess.Popen[str], sig: int) -> None:
    # Commands run in their own session; the whole group gets the signal
    if not hasattr(os, "killpg"):
        process.send_signal(sig)
        return
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        logger.debug("Process group %s already exited", process.pid)


def describe_command(command: Command) -> str:
    return command if isinstance(command, str) else " ".join(command)


def _pump(stream: IO[str], level: LogLevel, on_line: LineCallback) -> None:
    for line in iter(stream.readline, ""):
        text = line.rstrip()
        if text:
            on_line(level, text)
    stream.close()


def run_command(
    command: Command,
    cwd: str | Path,
    on_line: LineCallback,
    task_id: str | None = None,
    registry: ProcessRegistry | None = None,
    label: str = "Build",
) -> int:
    """Run *command* in *cwd*, streaming stdout as info and stderr as warn lines.

    A string runs through the shell; a list runs as an argument vector.

    Raises
    ------
    BuildError
        If the process cannot start or exits non-zero.
    """
    if isinstance(command, list) and not command:
        raise BuildError(f"{label} command is empty")
    shell = isinstance(command, str)
    logger.info("%s command: %s (cwd=%s)", label, describe_command(command), cwd)
    try:
        process = subprocess.Popen(
            command,
            cwd=str(cwd),
            shell=shell,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            bufsize=1,
            start_new_session=True,
        )
    except OSError as exc:
        raise BuildError(f"{label} command could not start: {exc}") from exc

    if task_id is not None and registry is not None:
        registry.register(task_id, process)
    readers = [
        threading.Thread(target=_pump, args=(process.stdout, LogLevel.INFO, on_line), daemon=True),
        threading.Thread(target=_pump, args=(process.stderr, LogLevel.WARN, on_line), daemon=True),
    ]
    try:
        for reader in readers:
            reader.start()
        returncode = process.wait()
        for reader in readers:
            reader.join()
    finally:
        if task_id is not None and registry is not None:
            registry.unregister(task_id)

    if returncode != 0:
        raise BuildError(f"{label} command exited with code {returncode}", exit_code=returncode)
    return returncode


def build_site(
    config: SiteConfig,
    on_line: LineCallback,
    task_id: str | None = None,
    registry: ProcessRegistry | None = None,
) -> BuildResult:
    """Run the validate command (if any) then the build command in the site's clone.

    Raises
    ------
    BuildError
        From whichever command failed.
    """
    cwd = Path(config.local_path).expanduser()
    start = time.monotonic()
    if config.validate_command:
        run_command(config.validate_command, cwd, on_line, task_id, registry, label="Validate")
    command = config.build_command or DEFAULT_BUILD_COMMAND
    exit_code = run_command(command, cwd, on_line, task_id, registry, label="Build")
    return BuildResult(success=True, duration=time.monotonic() - start, exit_code=exit_code)
