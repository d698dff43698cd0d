"""Newline-delimited JSON messages exchanged between the container shim and the host proxy.

Each connection carries one session, which is one request to open a URL.
Every message is a JSON object whose ``type`` field names the message kind.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Optional, Union

Headers = list[tuple[str, str]]


class ProtocolError(ValueError):
    """Raised when a line cannot be decoded as a protocol message."""


@dataclass(frozen=True)
class OpenUrl:
    """Shim request to open a URL in the host browser.

    When ``callback_port`` is set, the URL carries a localhost callback
    (for example an OAuth redirect) that the host captures and relays back.
    """

    TYPE: ClassVar[str] = "open_url"
    SPEC: ClassVar[dict[str, str]] = {
        "session_id": "str",
        "url": "str",
        "callback_port": "opt_u16",
    }

    session_id: str
    url: str
    callback_port: Optional[int] = None


@dataclass(frozen=True)
class CallbackResponse:
    """Shim reply carrying the container-local server's answer to a relayed callback."""

    TYPE: ClassVar[str] = "callback_response"
    SPEC: ClassVar[dict[str, str]] = {
        "session_id": "str",
        "request_id": "str",
        "status": "u16",
        "headers": "headers",
        "body": "str",
    }

    session_id: str
    request_id: str
    status: int
    headers: Headers = field(default_factory=list)
    body: str = ""


@dataclass(frozen=True)
class PromptResult:
    """Host answer to the user prompt."""

    TYPE: ClassVar[str] = "prompt_result"
    SPEC: ClassVar[dict[str, str]] = {"session_id": "str", "allowed": "bool"}

    session_id: str
    allowed: bool


@dataclass(frozen=True)
class CallbackRequest:
    """A callback HTTP request captured on the host, to be replayed by the shim."""

    TYPE: ClassVar[str] = "callback_request"
    SPEC: ClassVar[dict[str, str]] = {
        "session_id": "str",
        "request_id": "str",
        "method": "str",
        "path": "str",
        "headers": "headers",
        "body": "str",
    }

    session_id: str
    request_id: str
    method: str
    path: str
    headers: Headers = field(default_factory=list)
    body: str = ""


@dataclass(frozen=True)
class SessionComplete:
    """The session finished."""

    TYPE: ClassVar[str] = "session_complete"
    SPEC: ClassVar[dict[str, str]] = {"session_id": "str"}

    session_id: str


@dataclass(frozen=True)
class ErrorMessage:
    """An error occurred during the session."""

    TYPE: ClassVar[str] = "error"
    SPEC: ClassVar[dict[str, str]] = {"session_id": "str", "message": "str"}

    session_id: str
    message: str


ShimMessage = Union[OpenUrl, CallbackResponse]
HostMessage = Union[PromptResult, CallbackRequest, SessionComplete, ErrorMessage]
Message = Union[ShimMessage, HostMessage]

_SHIM_TYPES = {cls.TYPE: cls for cls in (OpenUrl, CallbackResponse)}
_HOST_TYPES = {
    cls.TYPE: cls
    for cls in (PromptResult, CallbackRequest, SessionComplete, ErrorMessage)
}


def encode_message(message: Message) -> str:
    """Serialize a message as one compact JSON object (without the newline)."""
    payload: dict[str, Any] = {"type": message.TYPE}
    for f in fields(message):
        value = getattr(message, f.name)
        if message.SPEC[f.name] == "headers":
            value = [[key, val] for key, val in value]
        payload[f.name] = value
    return json.dumps(payload, separators=(",", ":"))


def _is_u16(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 0xFFFF


def _convert(name: str, kind: str, value: Any) -> Any:
    if kind == "str" and isinstance(value, str):
        return value
    if kind == "bool" and isinstance(value, bool):
        return value
    if kind == "u16" and _is_u16(value):
        return value
    if kind == "opt_u16" and (value is None or _is_u16(value)):
        return value
    if kind == "headers" and isinstance(value, list):
        pairs = []
        for pair in value:
            if not (
                isinstance(pair, list)
                and len(pair) == 2
                and all(isinstance(part, str) for part in pair)
            ):
                raise ProtocolError(f"invalid header entry in field '{name}': {pair!r}")
            pairs.append((pair[0], pair[1]))
        return pairs
    raise ProtocolError(f"invalid value for field '{name}': {value!r}")


def _decode(line: Union[str, bytes], table: dict[str, type]) -> Any:
    try:
        data = json.loads(line)
    except ValueError as exc:
        raise ProtocolError(f"invalid JSON message: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("message must be a JSON object")
    tag = data.get("type")
    if tag not in table:
        raise ProtocolError(f"unknown message type: {tag!r}")
    cls = table[tag]
    kwargs = {}
    for name, kind in cls.SPEC.items():
        if name not in data:
            if kind == "opt_u16":
                kwargs[name] = None
                continue
            raise ProtocolError(f"missing field '{name}' in {tag} message")
        kwargs[name] = _convert(name, kind, data[name])
    return cls(**kwargs)


def decode_shim_message(line: Union[str, bytes]) -> ShimMessage:
    """Parse a line sent by the container shim."""
    return _decode(line, _SHIM_TYPES)


def decode_host_message(line: Union[str, bytes]) -> HostMessage:
    """Parse a line sent by the host proxy."""
    return _decode(line, _HOST_TYPES)