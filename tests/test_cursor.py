"""Tests for scroll cursor encoding and validation."""

from __future__ import annotations

import base64

import orjson
import pytest

from qdrant_mcp.errors import InvalidCursorError
from qdrant_mcp.server.cursor import (
    ScrollCursor,
    ScrollPageRequest,
    decode_cursor,
    encode_cursor,
)


def _cursor(**overrides):
    values = {
        "backend_name": "default",
        "collection_name": "docs",
        "request": ScrollPageRequest(offset="p42", limit=64),
    }
    values.update(overrides)
    return ScrollCursor(**values)


def _b64(data) -> str:
    return base64.urlsafe_b64encode(orjson.dumps(data)).decode("ascii")


def test_round_trip_preserves_state():
    cursor = _cursor(
        request=ScrollPageRequest(
            offset="p42",
            limit=64,
            filter={"must": [{"key": "lang", "match": {"value": "en"}}]},
            with_payload=["title"],
            with_vector=False,
        )
    )

    decoded = decode_cursor(encode_cursor(cursor))

    assert decoded == cursor
    assert decoded.backend_name == "default"
    assert decoded.collection_name == "docs"
    assert decoded.request.offset == "p42"
    assert decoded.request.limit == 64


def test_integer_offset_stays_integer():
    decoded = decode_cursor(encode_cursor(_cursor(request=ScrollPageRequest(offset=65))))

    assert decoded.request.offset == 65
    assert isinstance(decoded.request.offset, int)


def test_token_is_url_safe_and_has_no_credentials():
    token = encode_cursor(_cursor(backend_name="dynamic-0123456789ab", dynamic=True))

    assert "+" not in token and "/" not in token
    body = orjson.loads(base64.urlsafe_b64decode(token))
    assert body["dynamic"] is True
    assert "url" not in orjson.dumps(body).decode()
    assert "api_key" not in body


def test_request_body_omits_unset_fields():
    assert ScrollPageRequest(offset=3).to_body() == {"offset": 3}


@pytest.mark.parametrize("token", ["", "   ", None, 42])
def test_empty_or_non_string_token(token):
    with pytest.raises(InvalidCursorError):
        decode_cursor(token)


@pytest.mark.parametrize(
    "token", ["not-base64!!", "%%%%", "eyJr", "abc", "@@@@####"]
)
def test_garbage_tokens_rejected(token):
    with pytest.raises(InvalidCursorError) as exc_info:
        decode_cursor(token)
    assert exc_info.value.error_type == "invalid_cursor"


def test_truncated_token_rejected():
    token = encode_cursor(_cursor())

    with pytest.raises(InvalidCursorError):
        decode_cursor(token[: len(token) // 2])


def test_valid_base64_invalid_json_rejected():
    token = base64.urlsafe_b64encode(b"{not json").decode("ascii")

    with pytest.raises(InvalidCursorError):
        decode_cursor(token)


@pytest.mark.parametrize(
    "payload",
    [
        [1, 2, 3],
        {"kind": "scroll"},
        {"kind": "search", "backend_name": "a", "collection_name": "b", "request": {}},
        {"backend_name": "a", "collection_name": "b", "request": {"limit": 0}},
        {"backend_name": "a", "collection_name": "b", "request": {}, "extra": 1},
    ],
)
def test_wrong_shape_rejected(payload):
    with pytest.raises(InvalidCursorError) as exc_info:
        decode_cursor(_b64(payload))
    assert "does not describe a scroll position" in exc_info.value.message


def test_error_message_previews_long_tokens():
    token = "x" * 101

    with pytest.raises(InvalidCursorError) as exc_info:
        decode_cursor(token)
    assert "x" * 24 + "..." in exc_info.value.message
    assert token not in exc_info.value.message


class TestSignedCursors:
    secret = b"cursor-secret"

    def test_signed_round_trip(self):
        cursor = _cursor()
        token = encode_cursor(cursor, secret=self.secret)

        assert "." in token
        assert decode_cursor(token, secret=self.secret) == cursor

    def test_tampered_payload_rejected(self):
        token = encode_cursor(_cursor(), secret=self.secret)
        _payload, signature = token.split(".")
        forged = encode_cursor(_cursor(backend_name="prod"))

        with pytest.raises(InvalidCursorError) as exc_info:
            decode_cursor(f"{forged}.{signature}", secret=self.secret)
        assert "signature mismatch" in exc_info.value.message

    def test_unsigned_token_rejected_when_secret_configured(self):
        with pytest.raises(InvalidCursorError):
            decode_cursor(encode_cursor(_cursor()), secret=self.secret)

    def test_wrong_secret_rejected(self):
        token = encode_cursor(_cursor(), secret=self.secret)

        with pytest.raises(InvalidCursorError):
            decode_cursor(token, secret=b"other-secret")

    def test_signed_token_rejected_without_secret(self):
        token = encode_cursor(_cursor(), secret=self.secret)

        with pytest.raises(InvalidCursorError):
            decode_cursor(token)
