"""Payload encoding, MIME guessing and destination templates."""

from __future__ import annotations

import base64
import binascii
import mimetypes
from typing import Any

from .exceptions import WaypostError

DATA_URL_PREFIX = "data:"


def guess_mime_type(filename: str) -> str:
    """Guess the MIME type of a file based on its name."""
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or "application/octet-stream"


def decode_payload(data: Any, raw: bool = False) -> bytes:
    """Turn a ``write``/``upload`` payload into bytes.

    Unless *raw* is set, string payloads are data URLs
    (``data:<mime>;base64,<body>``) and are base64-decoded.  Raw
    strings are UTF-8 encoded as-is.

    Examples:
        decode_payload("data:text/plain;base64,aGk=") -> b"hi"
        decode_payload("hi", raw=True) -> b"hi"
    """
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if not isinstance(data, str):
        raise WaypostError(f"Unsupported payload type: {type(data).__name__}")
    if raw:
        return data.encode("utf-8")

    _, comma, body = data.partition(",")
    if not comma:
        body = data
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise WaypostError(f"Invalid base64 payload: {e}") from e


def to_data_url(content: bytes, mime: str) -> str:
    """Encode *content* as a single ``data:`` URL."""
    return f"{DATA_URL_PREFIX}{mime};base64,{base64.b64encode(content).decode('ascii')}"


def expand_destination(
    template: str,
    *,
    protocol: str,
    username: str | None = None,
    server_root: str = "",
) -> str:
    """Substitute mount placeholders in a destination template.

    ``%USERNAME%`` and ``%UID%`` come from the session, ``%DROOT%`` is the
    server root and ``%MOUNTPOINT%`` the protocol name.

    Examples:
        expand_destination("/srv/%USERNAME%", protocol="home", username="ann")
            -> "/srv/ann"
    """
    replacements = {
        "%UID%": username if username else "-1",
        "%USERNAME%": username or "",
        "%DROOT%": server_root,
        "%MOUNTPOINT%": protocol,
    }
    for key, value in replacements.items():
        template = template.replace(key, value)
    return template
