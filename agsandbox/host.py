"""Host side of the auth proxy: prompts the user, opens URLs and relays OAuth callbacks.

The proxy listens on a Unix socket that is mounted into the container. A shim
inside the container asks it to open URLs in the host browser; when the URL
carries a localhost callback, the proxy captures the browser's callback request
on the host loopback and relays it to the shim.
"""

from __future__ import annotations

import abc
import os
import re
import shutil
import socket
import subprocess
import sys
import threading
from pathlib import Path
from typing import BinaryIO, Iterable, NamedTuple, Sequence, Union

from .protocol import (
    CallbackRequest,
    CallbackResponse,
    ErrorMessage,
    HostMessage,
    OpenUrl,
    PromptResult,
    SessionComplete,
    decode_shim_message,
    encode_message,
)

SOCKET_NAME = "auth-proxy.sock"
CONTAINER_RUNTIME_DIR = "/run/ags-auth-proxy"
CONTAINER_SOCKET_PATH = f"{CONTAINER_RUNTIME_DIR}/{SOCKET_NAME}"

SESSION_TIMEOUT = 300.0
CALLBACK_RELAY_TIMEOUT = 60.0
MAX_HEADER_BYTES = 65536

_DIALOG_TITLE = "AGS Auth Proxy"
_LOG_PREFIX = "[ags auth-proxy]"

_REASONS = {
    200: "OK",
    301: "Moved Permanently",
    302: "Found",
    400: "Bad Request",
    500: "Internal Server Error",
    502: "Bad Gateway",
}


class AuthProxyError(Exception):
    """Raised when the auth proxy cannot be started."""


class HttpRequest(NamedTuple):
    method: str
    path: str
    headers: list[tuple[str, str]]
    body: str


class AuthProxyHost(abc.ABC):
    """Prompt and browser-open operations used by the proxy."""

    @abc.abstractmethod
    def prompt_user(self, url: str, has_callback: bool) -> bool:
        """Ask the user whether ``url`` may be opened; True means allowed."""

    @abc.abstractmethod
    def open_browser(self, url: str) -> None:
        """Open ``url`` in the host browser, raising an exception on failure."""


class OsAuthProxyHost(AuthProxyHost):
    """Uses zenity or kdialog for prompts and xdg-open for the browser."""

    def __init__(self, auto_allow_domains: Iterable[str] = ()) -> None:
        self.auto_allow_domains = list(auto_allow_domains)

    def prompt_user(self, url: str, has_callback: bool) -> bool:
        if is_auto_allowed(url, self.auto_allow_domains):
            return True
        return _prompt_with_dialog(url, has_callback)

    def open_browser(self, url: str) -> None:
        try:
            completed = subprocess.run(
                ["xdg-open", url],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError as exc:
            raise RuntimeError(f"xdg-open failed to start: {exc}") from exc
        if completed.returncode != 0:
            raise RuntimeError(
                f"xdg-open exited with exit status: {completed.returncode}"
            )


class AuthProxyGuard:
    """Owns a running proxy; closing it stops the proxy and removes the runtime dir."""

    def __init__(
        self,
        runtime_dir: Path,
        listener: socket.socket,
        shutdown: threading.Event,
        thread: threading.Thread,
    ) -> None:
        self.runtime_dir = runtime_dir
        self._listener = listener
        self._shutdown = shutdown
        self._thread = thread
        self._closed = False

    @staticmethod
    def container_runtime_dir() -> str:
        """Container-side path where the runtime dir is mounted."""
        return CONTAINER_RUNTIME_DIR

    @staticmethod
    def container_socket_path() -> str:
        """Container-side socket path."""
        return CONTAINER_SOCKET_PATH

    def close(self) -> None:
        """Stop the accept loop and remove the runtime directory."""
        if self._closed:
            return
        self._closed = True
        self._shutdown.set()
        # Connecting wakes the blocking accept() so the loop sees the shutdown flag.
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as wake:
                wake.connect(str(self.runtime_dir / SOCKET_NAME))
        except OSError:
            pass
        self._thread.join()
        self._listener.close()
        shutil.rmtree(self.runtime_dir, ignore_errors=True)

    def __enter__(self) -> "AuthProxyGuard":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"AuthProxyGuard(runtime_dir={str(self.runtime_dir)!r})"


def start(
    runtime_dir: Union[str, os.PathLike], auto_allow_domains: Iterable[str] = ()
) -> AuthProxyGuard:
    """Start the proxy with the desktop prompt and browser implementation."""
    return start_with_host(runtime_dir, OsAuthProxyHost(auto_allow_domains))


def start_with_host(
    runtime_dir: Union[str, os.PathLike], host: AuthProxyHost
) -> AuthProxyGuard:
    """Start the proxy on a Unix socket inside ``runtime_dir`` using ``host``."""
    runtime_dir = Path(runtime_dir)
    try:
        runtime_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise AuthProxyError(
            f"auth proxy: failed to create runtime dir: {exc}"
        ) from exc

    sock_path = runtime_dir / SOCKET_NAME
    try:
        sock_path.unlink()
    except OSError:
        pass

    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        listener.bind(str(sock_path))
        listener.listen(128)
    except OSError as exc:
        listener.close()
        raise AuthProxyError(f"auth proxy: failed to bind socket: {exc}") from exc

    # The container user may map to a different UID.
    try:
        os.chmod(sock_path, 0o666)
    except OSError:
        pass

    shutdown = threading.Event()
    thread = threading.Thread(
        target=_accept_loop,
        args=(listener, shutdown, host),
        name="ags-auth-proxy",
        daemon=True,
    )
    thread.start()
    return AuthProxyGuard(runtime_dir, listener, shutdown, thread)


def _accept_loop(
    listener: socket.socket, shutdown: threading.Event, host: AuthProxyHost
) -> None:
    while True:
        try:
            conn, _ = listener.accept()
        except OSError as exc:
            if shutdown.is_set() or listener.fileno() == -1:
                break
            print(f"{_LOG_PREFIX} accept error: {exc}", file=sys.stderr)
            continue
        if shutdown.is_set():
            conn.close()
            break
        threading.Thread(
            target=_run_session, args=(conn, host), daemon=True
        ).start()


def _run_session(conn: socket.socket, host: AuthProxyHost) -> None:
    try:
        _handle_session(conn, host)
    except Exception as exc:  # noqa: BLE001 - a failed session must not kill the proxy
        print(f"{_LOG_PREFIX} session error: {exc}", file=sys.stderr)


def _send(conn: socket.socket, message: HostMessage) -> None:
    conn.sendall((encode_message(message) + "\n").encode("utf-8"))


def _handle_session(conn: socket.socket, host: AuthProxyHost) -> None:
    with conn, conn.makefile("rb") as reader:
        conn.settimeout(SESSION_TIMEOUT)
        line = reader.readline()
        if not line:
            return  # shutdown wake-up connection
        message = decode_shim_message(line.strip())
        if isinstance(message, OpenUrl):
            _handle_open_url(message, conn, reader, host)
        else:
            _send(
                conn,
                ErrorMessage(
                    session_id="unknown",
                    message="expected open_url as first message",
                ),
            )


def _handle_open_url(
    message: OpenUrl, conn: socket.socket, reader: BinaryIO, host: AuthProxyHost
) -> None:
    session_id = message.session_id
    has_callback = message.callback_port is not None
    allowed = host.prompt_user(message.url, has_callback)
    _send(conn, PromptResult(session_id=session_id, allowed=allowed))

    if not allowed:
        _send(conn, SessionComplete(session_id=session_id))
        return

    if message.callback_port is not None:
        _handle_callback_flow(message, conn, reader, host)
        return

    try:
        host.open_browser(message.url)
    except Exception as exc:  # noqa: BLE001 - reported to the shim
        _send(
            conn,
            ErrorMessage(
                session_id=session_id, message=f"failed to open browser: {exc}"
            ),
        )
        return
    _send(conn, SessionComplete(session_id=session_id))


def _bind_callback_listener(port: int) -> socket.socket:
    # SO_REUSEADDR before bind so back-to-back flows don't hit TIME_WAIT sockets.
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("127.0.0.1", port))
        listener.listen(1)
    except OSError:
        listener.close()
        raise
    return listener


def _handle_callback_flow(
    message: OpenUrl, conn: socket.socket, reader: BinaryIO, host: AuthProxyHost
) -> None:
    session_id = message.session_id
    # Bind before opening the browser so the port is ready for the redirect.
    listener = _bind_callback_listener(message.callback_port)

    try:
        host.open_browser(message.url)
    except Exception as exc:  # noqa: BLE001 - reported to the shim
        listener.close()
        _send(
            conn,
            ErrorMessage(
                session_id=session_id, message=f"failed to open browser: {exc}"
            ),
        )
        return

    try:
        tcp, _ = listener.accept()
    finally:
        listener.close()

    with tcp, tcp.makefile("rb") as tcp_in, tcp.makefile("wb") as tcp_out:
        tcp.settimeout(SESSION_TIMEOUT)
        request = read_http_request(tcp_in)

        _send(
            conn,
            CallbackRequest(
                session_id=session_id,
                request_id=f"{session_id}-cb",
                method=request.method,
                path=request.path,
                headers=request.headers,
                body=request.body,
            ),
        )

        conn.settimeout(CALLBACK_RELAY_TIMEOUT)
        response = decode_shim_message(reader.readline().strip())

        if isinstance(response, CallbackResponse):
            write_http_response(
                tcp_out, response.status, response.headers, response.body
            )
        else:
            write_http_response(
                tcp_out,
                502,
                [("Content-Type", "text/plain")],
                "auth proxy: unexpected response from container",
            )

        _send(conn, SessionComplete(session_id=session_id))


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            raise EOFError("connection closed while reading HTTP body")
        data += chunk
    return bytes(data)


def read_http_request(stream: BinaryIO) -> HttpRequest:
    """Read one HTTP/1.x request (headers and Content-Length body) from a binary stream."""
    buf = bytearray()
    while True:
        byte = stream.read(1)
        if not byte:
            raise EOFError("connection closed while reading HTTP headers")
        buf += byte
        if buf.endswith(b"\r\n\r\n"):
            break
        if len(buf) > MAX_HEADER_BYTES:
            raise ValueError("HTTP request headers too large")

    lines = [line.removesuffix("\r") for line in buf.decode("utf-8", "replace").split("\n")]

    parts = lines[0].split()
    if not parts:
        raise ValueError("missing HTTP method")
    if len(parts) < 2:
        raise ValueError("missing HTTP path")
    method, path = parts[0], parts[1]

    headers: list[tuple[str, str]] = []
    content_length = 0
    for raw in lines[1:]:
        line = raw.strip()
        if not line:
            break
        if ":" not in line:
            continue
        key, value = (part.strip() for part in line.split(":", 1))
        if key.lower() == "content-length":
            content_length = int(value) if re.fullmatch(r"\+?[0-9]+", value) else 0
        headers.append((key, value))

    body_bytes = _read_exact(stream, content_length) if content_length else b""
    return HttpRequest(method, path, headers, body_bytes.decode("utf-8", "replace"))


def write_http_response(
    stream: BinaryIO,
    status: int,
    headers: Sequence[tuple[str, str]],
    body: str,
) -> None:
    """Write an HTTP/1.1 response, adding Content-Length and Connection if absent."""
    body_bytes = body.encode("utf-8")
    reason = _REASONS.get(status, "OK")
    lines = [f"HTTP/1.1 {status} {reason}\r\n"]
    names = set()
    for key, value in headers:
        lines.append(f"{key}: {value}\r\n")
        names.add(key.lower())
    if "content-length" not in names:
        lines.append(f"Content-Length: {len(body_bytes)}\r\n")
    if "connection" not in names:
        lines.append("Connection: close\r\n")
    lines.append("\r\n")
    stream.write("".join(lines).encode("utf-8"))
    stream.write(body_bytes)
    stream.flush()


def is_auto_allowed(url: str, domains: Sequence[str]) -> bool:
    """True if the URL's host is one of ``domains`` or a subdomain of one."""
    if not domains:
        return False
    rest = url
    for scheme in ("https://", "http://"):
        if url.startswith(scheme):
            rest = url[len(scheme):]
            break
    host = re.split(r"[/:?]", rest, maxsplit=1)[0]
    return any(host == d or host.endswith(f".{d}") for d in domains)


def display_url(url: str) -> str:
    """Shorten a URL for display (drop the query) and escape markup characters."""
    index = url.find("?")
    short = f"{url[:index]}?..." if index >= 0 else url
    return short.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _run_dialog(argv: list[str]) -> Union[bool, None]:
    try:
        completed = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        return None
    return completed.returncode == 0


def _try_zenity(url: str, has_callback: bool) -> Union[bool, None]:
    shown = display_url(url)
    if has_callback:
        text = (
            "A sandbox tool wants to open this URL and capture a localhost callback:"
            f"\n\n{shown}\n\nAllow this browser open and callback relay?"
        )
    else:
        text = f"A sandbox tool wants to open this URL:\n\n{shown}\n\nAllow this browser open?"
    return _run_dialog(
        [
            "zenity",
            "--question",
            "--title",
            _DIALOG_TITLE,
            "--width",
            "500",
            "--no-wrap",
            "--text",
            text,
        ]
    )


def _try_kdialog(url: str, has_callback: bool) -> Union[bool, None]:
    shown = display_url(url)
    if has_callback:
        text = (
            "A sandbox tool wants to open this URL and capture a localhost callback:"
            f"\n\n{shown}\n\nAllow?"
        )
    else:
        text = f"A sandbox tool wants to open:\n\n{shown}\n\nAllow?"
    return _run_dialog(["kdialog", "--yesno", text, "--title", _DIALOG_TITLE])


def _prompt_with_dialog(url: str, has_callback: bool) -> bool:
    for attempt in (_try_zenity, _try_kdialog):
        result = attempt(url, has_callback)
        if result is not None:
            return result
    print(
        f"{_LOG_PREFIX} no dialog tool available (install zenity or kdialog)",
        file=sys.stderr,
    )
    print(f"{_LOG_PREFIX} denying URL open: {url}", file=sys.stderr)
    return False