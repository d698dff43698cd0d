import socket
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from agsandbox import browser
from agsandbox.browser import (
    BrowserError,
    BrowserErrorKind,
    BrowserSidecar,
    is_debug_port_open,
    start_if_needed,
)


@dataclass
class BrowserSettings:
    enabled: bool
    command: str = ""
    profile_dir: Path = Path("/tmp/ags-browser-test-profile")
    debug_port: int = 9222
    pi_skill_path: str = ""
    command_args: list = field(default_factory=list)


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def listener():
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    s.listen(8)
    yield s
    s.close()


FAKE_BROWSER = """#!{python}
import socket, sys, time
port = int(next(a.split("=", 1)[1] for a in sys.argv
                if a.startswith("--remote-debugging-port=")))
if {listen}:
    s = socket.socket()
    s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    s.bind(("127.0.0.1", port))
    s.listen(8)
time.sleep(30)
"""


def write_fake_browser(tmp_path, listen=True):
    script = tmp_path / "fake-browser"
    script.write_text(FAKE_BROWSER.format(python=sys.executable, listen=listen))
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return script


def test_start_returns_none_when_browser_mode_off():
    config = BrowserSettings(enabled=True, debug_port=9222)
    assert start_if_needed(False, config) is None


def test_start_fails_when_not_enabled():
    config = BrowserSettings(enabled=False, debug_port=free_port())
    with pytest.raises(BrowserError) as info:
        start_if_needed(True, config)
    assert info.value.kind is BrowserErrorKind.NOT_ENABLED
    assert "enabled is false" in str(info.value)


def test_start_fails_when_command_empty():
    config = BrowserSettings(enabled=True, debug_port=free_port())
    with pytest.raises(BrowserError) as info:
        start_if_needed(True, config)
    assert info.value.kind is BrowserErrorKind.EMPTY_COMMAND
    assert "command is empty" in str(info.value)


def test_start_fails_when_command_not_found():
    config = BrowserSettings(
        enabled=True,
        command="ags-nonexistent-browser-command-xyz",
        debug_port=free_port(),
    )
    with pytest.raises(BrowserError) as info:
        start_if_needed(True, config)
    assert info.value.kind is BrowserErrorKind.COMMAND_NOT_FOUND
    assert "not found in PATH" in str(info.value)


def test_start_fails_when_absolute_command_not_executable():
    config = BrowserSettings(
        enabled=True, command="/nonexistent/path/to/browser", debug_port=free_port()
    )
    with pytest.raises(BrowserError) as info:
        start_if_needed(True, config)
    assert info.value.kind is BrowserErrorKind.COMMAND_NOT_EXECUTABLE
    assert "not executable" in str(info.value)


def test_start_fails_when_path_file_lacks_exec_bit(tmp_path):
    target = tmp_path / "browser"
    target.write_text("not a program\n")
    target.chmod(0o644)
    config = BrowserSettings(enabled=True, command=str(target), debug_port=free_port())
    with pytest.raises(BrowserError) as info:
        start_if_needed(True, config)
    assert info.value.kind is BrowserErrorKind.COMMAND_NOT_EXECUTABLE


def test_start_detects_already_running_browser(listener):
    port = listener.getsockname()[1]
    config = BrowserSettings(
        enabled=True, command="unused-because-already-running", debug_port=port
    )
    sidecar = start_if_needed(True, config)
    assert isinstance(sidecar, BrowserSidecar)
    assert sidecar.port == port
    assert sidecar.process is None


def test_socat_command_format(listener):
    port = listener.getsockname()[1]
    config = BrowserSettings(enabled=True, command="unused", debug_port=port)
    socat = start_if_needed(True, config).socat_command()
    assert f"TCP-LISTEN:{port}" in socat
    assert f"TCP:10.0.2.2:{port}" in socat
    assert "fork" in socat


def test_socat_command_exact_text():
    assert BrowserSidecar(9222).socat_command() == (
        "socat TCP-LISTEN:9222,fork,reuseaddr,bind=127.0.0.1 "
        "TCP:10.0.2.2:9222 >/tmp/ags-socat.log 2>&1 &"
    )


@pytest.mark.parametrize(
    "error, expected",
    [
        (BrowserError(BrowserErrorKind.NOT_ENABLED), "enabled is false"),
        (BrowserError(BrowserErrorKind.EMPTY_COMMAND), "command is empty"),
        (
            BrowserError(BrowserErrorKind.COMMAND_NOT_FOUND, command="chrome"),
            "not found in PATH: chrome",
        ),
        (
            BrowserError(BrowserErrorKind.COMMAND_NOT_EXECUTABLE, command="/usr/bin/x"),
            "not executable: /usr/bin/x",
        ),
        (
            BrowserError(BrowserErrorKind.READY_TIMEOUT, port=9222, timeout=5.0),
            "port 9222 within 5.0s",
        ),
        (
            BrowserError(BrowserErrorKind.SPAWN_FAILED, cause=OSError("boom")),
            "failed to start browser: boom",
        ),
    ],
)
def test_error_display_formats(error, expected):
    assert expected in str(error)


def test_is_debug_port_open(listener):
    assert is_debug_port_open(listener.getsockname()[1]) is True
    assert is_debug_port_open(free_port()) is False


def test_spawns_browser_and_stop_kills_it(tmp_path):
    script = write_fake_browser(tmp_path)
    profile = tmp_path / "profile" / "nested"
    port = free_port()
    config = BrowserSettings(
        enabled=True, command=str(script), profile_dir=profile, debug_port=port
    )
    sidecar = start_if_needed(True, config)
    process = sidecar.process
    try:
        assert sidecar.port == port
        assert profile.is_dir()
        assert is_debug_port_open(port) is True
        assert process.poll() is None
    finally:
        sidecar.stop()
    assert sidecar.process is None
    assert process.poll() is not None


def test_context_manager_stops_browser(tmp_path):
    script = write_fake_browser(tmp_path)
    config = BrowserSettings(
        enabled=True,
        command=str(script),
        profile_dir=tmp_path / "profile",
        debug_port=free_port(),
    )
    with start_if_needed(True, config) as sidecar:
        process = sidecar.process
        assert process.poll() is None
    assert process.poll() is not None


def test_ready_timeout_when_browser_never_listens(tmp_path, monkeypatch):
    monkeypatch.setattr(browser, "READY_TIMEOUT", 0.5)
    monkeypatch.setattr(browser, "POLL_INTERVAL", 0.05)
    script = write_fake_browser(tmp_path, listen=False)
    port = free_port()
    config = BrowserSettings(
        enabled=True,
        command=str(script),
        profile_dir=tmp_path / "profile",
        debug_port=port,
    )
    with pytest.raises(BrowserError) as info:
        start_if_needed(True, config)
    assert info.value.kind is BrowserErrorKind.READY_TIMEOUT
    assert info.value.port == port
    assert f"port {port} within 0.5s" in str(info.value)