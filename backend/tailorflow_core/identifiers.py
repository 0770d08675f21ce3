"""Record identifiers drawn from the local or the remote namespace."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Union

LOCAL_PREFIX = "local_"


@dataclass(frozen=True)
class LocalId:
    """Identifier generated on-device for a record the remote store has not accepted yet."""

    token: str

    def __str__(self) -> str:
        return f"{LOCAL_PREFIX}{self.token}"


@dataclass(frozen=True)
class RemoteId:
    """Identifier assigned by the remote store."""

    token: str

    def __str__(self) -> str:
        return self.token


Identifier = Union[LocalId, RemoteId]


def new_local_id() -> LocalId:
    return LocalId(uuid.uuid4().hex)


def parse_identifier(value: Any) -> Identifier:
    """Parse a stored or transmitted identifier.

    Values already parsed are returned unchanged. Strings carrying the local
    prefix become ``LocalId``; every other non-empty value is a ``RemoteId``.
    """
    if isinstance(value, (LocalId, RemoteId)):
        return value
    if value is None:
        raise ValueError("Identifier is required")
    text = str(value).strip()
    if not text:
        raise ValueError("Identifier is required")
    if text.startswith(LOCAL_PREFIX):
        token = text[len(LOCAL_PREFIX):]
        if not token:
            raise ValueError(f"Malformed local identifier: {text!r}")
        return LocalId(token)
    return RemoteId(text)


def parse_optional_identifier(value: Any) -> Identifier | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_identifier(value)


def format_identifier(identifier: Identifier | None) -> str | None:
    return str(identifier) if identifier is not None else None


def is_local(identifier: Identifier | None) -> bool:
    return isinstance(identifier, LocalId)
