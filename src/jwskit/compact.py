"""Compact serialization: ``b64url(header).b64url(claims).b64url(signature)``."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from .algorithms import Algorithm
from .codec import decode_b64url, decode_json
from .errors import DecodeError, MalformedToken

SEGMENT_COUNT = 3


@dataclass(frozen=True)
class VerifiedToken:
    """A token whose signature and claims have been checked.

    Only the verifier constructs these.
    """

    header: Mapping[str, Any]
    claims: dict[str, Any]
    algorithm: Algorithm
    signing_input: bytes
    signature: bytes
    kid: str | None = None


class UnverifiedToken:
    """Structurally valid token whose claims are not yet trusted.

    The decoded claims are kept private; callers get them only through
    ``VerifiedToken`` once the signature checks out.
    """

    __slots__ = ("header_segment", "payload_segment", "header", "signature", "_claims")

    def __init__(
        self,
        header_segment: str,
        payload_segment: str,
        header: dict[str, Any],
        claims: dict[str, Any],
        signature: bytes,
    ) -> None:
        self.header_segment = header_segment
        self.payload_segment = payload_segment
        self.header: Mapping[str, Any] = MappingProxyType(header)
        self.signature = signature
        self._claims = claims

    @property
    def alg(self) -> str:
        return str(self.header["alg"])

    @property
    def kid(self) -> str | None:
        kid = self.header.get("kid")
        return kid if isinstance(kid, str) else None

    @property
    def signing_input(self) -> bytes:
        # The original segments, never re-encoded JSON.
        return f"{self.header_segment}.{self.payload_segment}".encode("ascii")

    def __repr__(self) -> str:
        return f"UnverifiedToken(alg={self.header.get('alg')!r}, kid={self.kid!r})"


def parse(token: str | bytes) -> UnverifiedToken:
    if isinstance(token, bytes):
        try:
            token = token.decode("ascii")
        except UnicodeDecodeError as exc:
            raise MalformedToken("token must be ASCII") from exc
    if not isinstance(token, str):
        raise MalformedToken("token must be a string")

    segments = token.split(".")
    if len(segments) != SEGMENT_COUNT:
        raise MalformedToken(
            f"expected {SEGMENT_COUNT} dot-separated segments, got {len(segments)}"
        )
    header_segment, payload_segment, signature_segment = segments

    try:
        header = decode_json(decode_b64url(header_segment))
        claims = decode_json(decode_b64url(payload_segment))
        signature = decode_b64url(signature_segment)
    except DecodeError as exc:
        raise MalformedToken(f"could not decode token: {exc}") from exc

    alg = header.get("alg")
    if not isinstance(alg, str) or not alg:
        raise MalformedToken("header alg must be a non-empty string")
    if "crit" in header:
        raise MalformedToken("critical header extensions are not supported")
    kid = header.get("kid")
    if kid is not None and not isinstance(kid, str):
        raise MalformedToken("header kid must be a string")

    return UnverifiedToken(header_segment, payload_segment, header, claims, signature)


def peek_header(token: str | bytes) -> dict[str, Any]:
    """Header of a well-formed token, for choosing keys before verification.

    Nothing here is authenticated. Claims are not returned.
    """
    return dict(parse(token).header)
