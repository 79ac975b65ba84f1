from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any, cast

from .errors import DecodeError, EncodeError

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")


def encode_b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def decode_b64url(text: str) -> bytes:
    """Decode unpadded base64url (RFC 4648 section 5).

    Padding, characters outside the URL-safe alphabet, impossible lengths and
    non-zero trailing bits are all rejected, so every byte string has exactly
    one accepted encoding.
    """
    if not isinstance(text, str):
        raise DecodeError("base64url value must be a string")
    if _B64URL_RE.fullmatch(text) is None:
        if "=" in text:
            raise DecodeError("base64url value must not be padded")
        raise DecodeError("invalid base64url characters")
    if len(text) % 4 == 1:
        raise DecodeError("invalid base64url length")
    try:
        data = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"invalid base64url: {exc}") from exc
    if encode_b64url(data) != text:
        raise DecodeError("non-canonical base64url encoding")
    return data


def _reject_constant(value: str) -> Any:
    raise DecodeError(f"invalid JSON number: {value}")


def _unique_pairs(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    obj: dict[str, Any] = {}
    for name, value in pairs:
        if name in obj:
            raise DecodeError(f"duplicate JSON member: {name}")
        obj[name] = value
    return obj


def encode_json(value: dict[str, Any]) -> bytes:
    if not isinstance(value, dict):
        raise EncodeError("JSON value must be an object")
    try:
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"value is not JSON serializable: {exc}") from exc
    return text.encode("utf-8")


def decode_json(data: bytes) -> dict[str, Any]:
    try:
        obj = json.loads(
            data.decode("utf-8"),
            object_pairs_hook=_unique_pairs,
            parse_constant=_reject_constant,
        )
    except UnicodeDecodeError as exc:
        raise DecodeError("JSON text is not valid UTF-8") from exc
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid JSON: {exc.msg}") from exc
    except ValueError as exc:
        # Integer literals past the interpreter's digit limit.
        raise DecodeError(f"invalid JSON number: {exc}") from exc
    except RecursionError as exc:
        raise DecodeError("JSON nesting too deep") from exc
    if not isinstance(obj, dict):
        raise DecodeError("JSON value must be an object")
    return cast(dict[str, Any], obj)
