from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from .algorithms import DEFAULT_POLICY, Algorithm, AlgorithmLike, AlgorithmPolicy
from .codec import encode_b64url, encode_json
from .errors import EncodeError
from .keys import Key

logger = logging.getLogger(__name__)

_TIME_CLAIMS = ("exp", "nbf", "iat")


def _normalize_claims(claims: Mapping[str, Any]) -> dict[str, Any]:
    if not isinstance(claims, Mapping):
        raise EncodeError("claims must be a mapping")
    normalized = dict(claims)
    for name in _TIME_CLAIMS:
        value = normalized.get(name)
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            normalized[name] = int(value.timestamp())
    return normalized


def _build_header(
    algorithm: Algorithm,
    key: Key,
    headers: Mapping[str, Any] | None,
) -> dict[str, Any]:
    header: dict[str, Any] = {"alg": algorithm.identifier, "typ": "JWT"}
    if headers:
        for name, value in headers.items():
            if name == "alg":
                continue
            header[name] = value
    if key.kid and "kid" not in header:
        header["kid"] = key.kid
    return header


def build(
    claims: Mapping[str, Any],
    algorithm: AlgorithmLike,
    key: Key,
    *,
    headers: Mapping[str, Any] | None = None,
    policy: AlgorithmPolicy = DEFAULT_POLICY,
) -> str:
    """Sign ``claims`` and return the compact token.

    ``alg`` always comes from ``algorithm``; an ``alg`` entry in ``headers``
    is ignored. ``typ`` defaults to ``JWT`` and ``kid`` to ``key.kid``.
    """
    resolved = policy.resolve(algorithm)
    header = _build_header(resolved, key, headers)

    header_segment = encode_b64url(encode_json(header))
    payload_segment = encode_b64url(encode_json(_normalize_claims(claims)))
    signing_input = f"{header_segment}.{payload_segment}".encode("ascii")

    signature = resolved.sign(signing_input, key, min_strength=policy.min_strength(resolved))
    logger.debug("signed token alg=%s kid=%s", resolved.identifier, header.get("kid"))
    return f"{header_segment}.{payload_segment}.{encode_b64url(signature)}"


class Signer:
    """Binds an algorithm, a key and default headers for repeated signing."""

    def __init__(
        self,
        algorithm: AlgorithmLike,
        key: Key,
        *,
        headers: Mapping[str, Any] | None = None,
        policy: AlgorithmPolicy = DEFAULT_POLICY,
    ) -> None:
        self._algorithm = policy.resolve(algorithm)
        self._algorithm.check_key(
            key, signing=True, min_strength=policy.min_strength(self._algorithm)
        )
        self._key = key
        self._headers = dict(headers or {})
        self._policy = policy

    @property
    def algorithm(self) -> Algorithm:
        return self._algorithm

    def sign(self, claims: Mapping[str, Any], headers: Mapping[str, Any] | None = None) -> str:
        merged = dict(self._headers)
        if headers:
            merged.update(headers)
        return build(claims, self._algorithm, self._key, headers=merged, policy=self._policy)
