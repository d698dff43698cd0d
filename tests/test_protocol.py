import json

import pytest

from agsandbox.protocol import (
    CallbackRequest,
    CallbackResponse,
    ErrorMessage,
    OpenUrl,
    PromptResult,
    ProtocolError,
    SessionComplete,
    decode_host_message,
    decode_shim_message,
    encode_message,
)


def test_shim_message_open_url_roundtrips():
    msg = OpenUrl(session_id="s1", url="https://example.com/auth", callback_port=8080)
    text = encode_message(msg)
    assert '"type":"open_url"' in text
    parsed = decode_shim_message(text)
    assert isinstance(parsed, OpenUrl)
    assert parsed.session_id == "s1"
    assert parsed.url == "https://example.com/auth"
    assert parsed.callback_port == 8080


def test_host_message_prompt_result_roundtrips():
    msg = PromptResult(session_id="s1", allowed=True)
    text = encode_message(msg)
    assert '"type":"prompt_result"' in text
    parsed = decode_host_message(text)
    assert isinstance(parsed, PromptResult)
    assert parsed.session_id == "s1"
    assert parsed.allowed is True


def test_host_message_callback_request_roundtrips():
    msg = CallbackRequest(
        session_id="s1",
        request_id="r1",
        method="GET",
        path="/callback?code=abc123",
        headers=[("Host", "localhost:8080")],
        body="",
    )
    parsed = decode_host_message(encode_message(msg))
    assert isinstance(parsed, CallbackRequest)
    assert parsed.method == "GET"
    assert parsed.path == "/callback?code=abc123"
    assert len(parsed.headers) == 1
    assert parsed == msg


def test_callback_response_roundtrips():
    msg = CallbackResponse(
        session_id="s",
        request_id="s-cb",
        status=200,
        headers=[("Content-Type", "text/html")],
        body="<html>ok</html>",
    )
    assert decode_shim_message(encode_message(msg)) == msg


@pytest.mark.parametrize(
    "msg",
    [
        SessionComplete(session_id="abc"),
        ErrorMessage(session_id="abc", message="boom"),
        PromptResult(session_id="abc", allowed=False),
    ],
)
def test_host_messages_roundtrip(msg):
    assert decode_host_message(encode_message(msg)) == msg


def test_type_tag_comes_first_and_headers_are_arrays():
    msg = CallbackRequest(
        session_id="s",
        request_id="r",
        method="POST",
        path="/",
        headers=[("A", "1")],
        body="x",
    )
    text = encode_message(msg)
    assert text.startswith('{"type":"callback_request"')
    assert json.loads(text)["headers"] == [["A", "1"]]


def test_error_message_type_tag():
    data = json.loads(encode_message(ErrorMessage(session_id="s", message="m")))
    assert data == {"type": "error", "session_id": "s", "message": "m"}


def test_open_url_without_callback_port_field():
    parsed = decode_shim_message('{"type":"open_url","session_id":"s","url":"u"}')
    assert parsed == OpenUrl(session_id="s", url="u", callback_port=None)


def test_null_callback_port_encodes_as_null():
    data = json.loads(encode_message(OpenUrl(session_id="s", url="u")))
    assert data["callback_port"] is None


def test_decode_accepts_bytes():
    parsed = decode_host_message(b'{"type":"session_complete","session_id":"z"}')
    assert parsed == SessionComplete(session_id="z")


@pytest.mark.parametrize(
    "line",
    [
        "not json",
        "[1,2]",
        '{"type":"nope","session_id":"s"}',
        '{"session_id":"s","url":"u"}',
        '{"type":"open_url","url":"u"}',
        '{"type":"open_url","session_id":"s","url":"u","callback_port":70000}',
        '{"type":"open_url","session_id":"s","url":"u","callback_port":-1}',
        '{"type":"open_url","session_id":5,"url":"u"}',
        '{"type":"callback_response","session_id":"s","request_id":"r",'
        '"status":200,"headers":[["a"]],"body":""}',
        "",
    ],
)
def test_invalid_shim_lines_raise(line):
    with pytest.raises(ProtocolError):
        decode_shim_message(line)


def test_host_message_is_not_a_shim_message():
    text = encode_message(SessionComplete(session_id="s"))
    with pytest.raises(ProtocolError):
        decode_shim_message(text)


def test_shim_message_is_not_a_host_message():
    text = encode_message(OpenUrl(session_id="s", url="u"))
    with pytest.raises(ProtocolError):
        decode_host_message(text)


def test_bool_field_rejects_integer():
    with pytest.raises(ProtocolError):
        decode_host_message('{"type":"prompt_result","session_id":"s","allowed":1}')