"""Correlation IDs for structured logging.

Each tool invocation gets a ``req_id`` held in a ContextVar, so adapter log
records emitted while serving it can be tied back to the invocation without
passing the id through every call.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def set_request_id(request_id: str) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str:
    """Return the current request correlation id, or empty string."""

    return _request_id_var.get()


def ensure_request_id() -> str:
    """Return the current id, generating and setting one if unset."""

    current = _request_id_var.get()
    if current:
        return current
    new_id = uuid.uuid4().hex[:16]
    _request_id_var.set(new_id)
    return new_id
