"""Browser sidecar: a host browser with a remote-debugging port for the sandbox."""

from __future__ import annotations

import enum
import os
import shutil
import socket
import subprocess
import time
from pathlib import Path
from typing import Any, Optional

# How long to wait for the browser debug endpoint to become reachable.
READY_TIMEOUT = 5.0

# How long to sleep between readiness polls.
POLL_INTERVAL = 0.2

_CONNECT_TIMEOUT = 1.0


class BrowserErrorKind(enum.Enum):
    NOT_ENABLED = "not_enabled"
    EMPTY_COMMAND = "empty_command"
    COMMAND_NOT_FOUND = "command_not_found"
    COMMAND_NOT_EXECUTABLE = "command_not_executable"
    PROFILE_DIR_CREATE = "profile_dir_create"
    SPAWN_FAILED = "spawn_failed"
    READY_TIMEOUT = "ready_timeout"


class BrowserError(Exception):
    """Raised when browser mode is requested but the sidecar cannot be provided."""

    def __init__(
        self,
        kind: BrowserErrorKind,
        *,
        command: Optional[str] = None,
        cause: Optional[BaseException] = None,
        port: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.kind = kind
        self.command = command
        self.cause = cause
        self.port = port
        self.timeout = timeout
        super().__init__(self._message())

    def _message(self) -> str:
        kind = self.kind
        if kind is BrowserErrorKind.NOT_ENABLED:
            return "browser mode requested but [browser].enabled is false"
        if kind is BrowserErrorKind.EMPTY_COMMAND:
            return "browser mode requested but [browser].command is empty"
        if kind is BrowserErrorKind.COMMAND_NOT_FOUND:
            return f"browser command not found in PATH: {self.command}"
        if kind is BrowserErrorKind.COMMAND_NOT_EXECUTABLE:
            return f"browser command is not executable: {self.command}"
        if kind is BrowserErrorKind.PROFILE_DIR_CREATE:
            return f"failed to create browser profile directory: {self.cause}"
        if kind is BrowserErrorKind.SPAWN_FAILED:
            return f"failed to start browser: {self.cause}"
        return (
            f"browser did not become ready on port {self.port} "
            f"within {float(self.timeout or 0.0):.1f}s"
        )


class BrowserSidecar:
    """A browser reachable on a debug port.

    ``process`` is set only when this sidecar started the browser itself;
    stopping or leaving the context kills that process.
    """

    def __init__(self, port: int, process: Optional[subprocess.Popen] = None) -> None:
        self.port = port
        self.process = process

    def socat_command(self) -> str:
        """Shell command that forwards the container's localhost port to the host browser."""
        port = self.port
        return (
            f"socat TCP-LISTEN:{port},fork,reuseaddr,bind=127.0.0.1 "
            f"TCP:10.0.2.2:{port} >/tmp/ags-socat.log 2>&1 &"
        )

    def stop(self) -> None:
        """Kill the browser process if this sidecar started it."""
        process, self.process = self.process, None
        if process is not None:
            try:
                process.kill()
            except OSError:
                pass
            try:
                process.wait()
            except OSError:
                pass

    def __enter__(self) -> "BrowserSidecar":
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    def __del__(self) -> None:
        try:
            self.stop()
        except Exception:  # noqa: BLE001 - never raise from a finalizer
            pass

    def __repr__(self) -> str:
        return f"BrowserSidecar(port={self.port}, has_child={self.process is not None})"


def is_debug_port_open(port: int) -> bool:
    """True if something accepts TCP connections on 127.0.0.1:``port``."""
    try:
        with socket.create_connection(("127.0.0.1", port), timeout=_CONNECT_TIMEOUT):
            return True
    except OSError:
        return False


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _validate_command(command: str) -> None:
    if "/" in command:
        path = Path(command)
        if not path.exists() or not _is_executable(path):
            raise BrowserError(BrowserErrorKind.COMMAND_NOT_EXECUTABLE, command=command)
    elif shutil.which(command) is None:
        raise BrowserError(BrowserErrorKind.COMMAND_NOT_FOUND, command=command)


def _spawn_browser(config: Any) -> subprocess.Popen:
    argv = [
        config.command,
        *config.command_args,
        f"--remote-debugging-port={config.debug_port}",
        f"--user-data-dir={config.profile_dir}",
        "--no-first-run",
        "--no-default-browser-check",
        "about:blank",
    ]
    try:
        return subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as exc:
        raise BrowserError(BrowserErrorKind.SPAWN_FAILED, cause=exc) from exc


def _wait_for_ready(port: int) -> None:
    timeout = READY_TIMEOUT
    deadline = time.monotonic() + timeout
    while True:
        if is_debug_port_open(port):
            return
        if time.monotonic() >= deadline:
            raise BrowserError(BrowserErrorKind.READY_TIMEOUT, port=port, timeout=timeout)
        time.sleep(POLL_INTERVAL)


def start_if_needed(browser_mode: bool, config: Any) -> Optional[BrowserSidecar]:
    """Start the browser sidecar unless it is already running.

    Returns None when browser mode is off. ``config`` needs ``enabled``,
    ``command``, ``command_args``, ``profile_dir`` and ``debug_port``.
    Raises :class:`BrowserError` when browser mode is requested but fails.
    """
    if not browser_mode:
        return None
    if not config.enabled:
        raise BrowserError(BrowserErrorKind.NOT_ENABLED)
    if not config.command:
        raise BrowserError(BrowserErrorKind.EMPTY_COMMAND)

    if is_debug_port_open(config.debug_port):
        return BrowserSidecar(config.debug_port)

    _validate_command(config.command)

    try:
        Path(config.profile_dir).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise BrowserError(BrowserErrorKind.PROFILE_DIR_CREATE, cause=exc) from exc

    process = _spawn_browser(config)
    try:
        _wait_for_ready(config.debug_port)
    except BrowserError:
        process.kill()
        process.wait()
        raise
    return BrowserSidecar(config.debug_port, process)