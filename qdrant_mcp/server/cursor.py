"""Opaque cursors for resumable scrolls.

A cursor carries everything needed to fetch the next page of a scroll: the
cluster name, the collection, and the scroll request with ``offset`` already
advanced to Qdrant's ``next_page_offset``. Nothing is stored server-side.

Wire format: URL-safe base64 of the orjson-encoded :class:`ScrollCursor`.
When a signing secret is configured the token becomes
``<payload>.<hex hmac-sha256 of payload>``. Base64url never contains ``.``,
so the two forms cannot be confused.

Cursors never include a cluster URL or API key. A cursor issued against a
dynamic cluster only records that fact (``dynamic: true``); the caller has
to pass the same ``cluster_url`` again to resume it.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from typing import Any, Dict, List, Literal, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import InvalidCursorError

_SIGNATURE_SEPARATOR = "."


class ScrollPageRequest(BaseModel):
    """The scroll request a cursor replays (Qdrant ``/points/scroll`` body)."""

    model_config = ConfigDict(extra="forbid")

    offset: Optional[Union[int, str]] = None
    limit: Optional[int] = Field(None, ge=1)
    filter: Optional[Dict[str, Any]] = None
    with_payload: Optional[Union[bool, List[str], Dict[str, Any]]] = None
    with_vector: Optional[Union[bool, List[str]]] = None

    def to_body(self) -> Dict[str, Any]:
        """Request body with unset fields omitted."""
        return self.model_dump(exclude_none=True)


class ScrollCursor(BaseModel):
    """Decoded cursor state."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["scroll"] = "scroll"
    backend_name: str = Field(..., min_length=1)
    collection_name: str = Field(..., min_length=1)
    dynamic: bool = False
    request: ScrollPageRequest


def _sign(payload: str, secret: bytes) -> str:
    return hmac.new(secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()


def encode_cursor(cursor: ScrollCursor, *, secret: Optional[bytes] = None) -> str:
    """Serialize cursor state into an opaque token."""
    raw = orjson.dumps(cursor.model_dump(exclude_none=True))
    payload = base64.urlsafe_b64encode(raw).decode("ascii")
    if secret:
        return f"{payload}{_SIGNATURE_SEPARATOR}{_sign(payload, secret)}"
    return payload


def decode_cursor(token: str, *, secret: Optional[bytes] = None) -> ScrollCursor:
    """Parse a token produced by :func:`encode_cursor`.

    Raises
    ------
    InvalidCursorError
        The token is not valid base64/JSON, does not have the cursor shape,
        or fails signature verification. Callers must restart the scan.
    """
    if not isinstance(token, str) or not token.strip():
        raise InvalidCursorError("cursor must be a non-empty string")
    token = token.strip()
    payload, sep, signature = token.partition(_SIGNATURE_SEPARATOR)
    if secret:
        if not sep or not hmac.compare_digest(
            signature.encode("ascii", "replace"),
            _sign(payload, secret).encode("ascii"),
        ):
            raise InvalidCursorError(
                "cursor signature mismatch; restart the scan without a cursor"
            )
    elif sep:
        raise InvalidCursorError(
            "cursor is signed but this server has no cursor secret configured"
        )

    try:
        raw = base64.b64decode(payload.encode("ascii"), altchars=b"-_", validate=True)
        data = orjson.loads(raw)
    except (binascii.Error, UnicodeEncodeError, orjson.JSONDecodeError) as exc:
        raise InvalidCursorError(
            f"cursor '{_preview(token)}' is not a valid cursor token"
        ) from exc
    try:
        return ScrollCursor.model_validate(data)
    except ValidationError as exc:
        raise InvalidCursorError(
            f"cursor '{_preview(token)}' does not describe a scroll position: "
            f"{exc.error_count()} invalid field(s)"
        ) from exc


def _preview(token: str, limit: int = 24) -> str:
    return token if len(token) <= limit else token[:limit] + "..."
