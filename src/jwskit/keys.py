from __future__ import annotations

import enum
import hashlib
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Union, cast

from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import (
    load_pem_private_key,
    load_pem_public_key,
)
from jwt import algorithms
from jwt import exceptions as jwt_exceptions

from .codec import encode_b64url
from .errors import InvalidKeyError

logger = logging.getLogger(__name__)

_CURVE_NAMES = {
    "secp256r1": "P-256",
    "secp384r1": "P-384",
    "secp521r1": "P-521",
}

_SUPPORTED_JWK_KTY = frozenset({"RSA", "EC", "oct"})


def _load_json_text(value: Any, label: str) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError as exc:
        raise InvalidKeyError(f"{label} is not valid JSON") from exc


class KeyKind(enum.Enum):
    SYMMETRIC = "symmetric"
    ASYMMETRIC_PUBLIC = "asymmetric-public"
    ASYMMETRIC_PRIVATE = "asymmetric-private"


_AsymmetricKey = Union[
    rsa.RSAPrivateKey,
    rsa.RSAPublicKey,
    ec.EllipticCurvePrivateKey,
    ec.EllipticCurvePublicKey,
]


@dataclass(frozen=True, repr=False)
class Key:
    """Key material tagged with what it can be used for.

    ``material`` is the raw secret for symmetric keys and a ``cryptography``
    key object otherwise. It is never included in ``repr`` or error messages.
    """

    kind: KeyKind
    material: Any
    kid: str | None = None

    def __repr__(self) -> str:
        return (
            f"Key(kind={self.kind.value}, type={self.key_type}, "
            f"strength={self.strength}, kid={self.kid!r})"
        )

    @classmethod
    def secret(cls, value: bytes | str, kid: str | None = None) -> Key:
        if isinstance(value, str):
            value = value.encode("utf-8")
        if not isinstance(value, bytes) or not value:
            raise InvalidKeyError("HMAC secret must be a non-empty byte string")
        return cls(KeyKind.SYMMETRIC, value, kid)

    @classmethod
    def from_cryptography(cls, obj: _AsymmetricKey, kid: str | None = None) -> Key:
        if isinstance(obj, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            return cls(KeyKind.ASYMMETRIC_PRIVATE, obj, kid)
        if isinstance(obj, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
            return cls(KeyKind.ASYMMETRIC_PUBLIC, obj, kid)
        raise InvalidKeyError(f"unsupported key object: {type(obj).__name__}")

    @classmethod
    def from_pem(
        cls,
        pem: str | bytes,
        kid: str | None = None,
        password: bytes | None = None,
    ) -> Key:
        data = pem.encode("utf-8") if isinstance(pem, str) else pem
        key_any: Any
        try:
            key_any = load_pem_public_key(data)
        except ValueError:
            try:
                key_any = load_pem_private_key(data, password=password)
            except (TypeError, ValueError) as exc:
                raise InvalidKeyError("could not load PEM key") from exc
        return cls.from_cryptography(key_any, kid)

    @classmethod
    def from_jwk(cls, jwk: dict[str, Any] | str) -> Key:
        obj = _load_json_text(jwk, "JWK")
        if not isinstance(obj, dict):
            raise InvalidKeyError("JWK must be an object")
        if "keys" in obj:
            raise InvalidKeyError("use load_jwks for JWK sets")
        kty = obj.get("kty")
        if not isinstance(kty, str) or not kty.strip():
            raise InvalidKeyError("JWK missing kty")
        kid = obj.get("kid")
        if kid is not None and not isinstance(kid, str):
            raise InvalidKeyError("JWK kid must be a string")

        jwk_json = json.dumps(obj)
        try:
            if kty == "oct":
                return cls.secret(algorithms.HMACAlgorithm.from_jwk(jwk_json), kid)
            if kty == "RSA":
                return cls.from_cryptography(algorithms.RSAAlgorithm.from_jwk(jwk_json), kid)
            if kty == "EC":
                return cls.from_cryptography(algorithms.ECAlgorithm.from_jwk(jwk_json), kid)
        except (jwt_exceptions.InvalidKeyError, ValueError, KeyError) as exc:
            raise InvalidKeyError(f"invalid {kty} JWK") from exc
        raise InvalidKeyError(f"unsupported JWK kty: {kty}")

    @property
    def key_type(self) -> str:
        if self.kind is KeyKind.SYMMETRIC:
            return "oct"
        if isinstance(self.material, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
            return "RSA"
        return "EC"

    @property
    def curve(self) -> str | None:
        if self.key_type != "EC":
            return None
        name = self.material.curve.name
        return _CURVE_NAMES.get(name, name)

    @property
    def strength(self) -> int:
        """Key size in bits: secret length, RSA modulus or curve size."""
        if self.kind is KeyKind.SYMMETRIC:
            return len(self.material) * 8
        if self.key_type == "RSA":
            return int(self.material.key_size)
        return int(self.material.curve.key_size)

    def public(self) -> Key:
        if self.kind is KeyKind.ASYMMETRIC_PUBLIC:
            return self
        if self.kind is KeyKind.SYMMETRIC:
            raise InvalidKeyError("symmetric keys have no public half")
        return Key(KeyKind.ASYMMETRIC_PUBLIC, self.material.public_key(), self.kid)

    def to_jwk(self) -> dict[str, Any]:
        """Public JWK for this key; symmetric secrets are never exported."""
        public = self.public()
        if public.key_type == "RSA":
            jwk_any = json.loads(algorithms.RSAAlgorithm.to_jwk(public.material))
        else:
            jwk_any = json.loads(algorithms.ECAlgorithm.to_jwk(public.material))
        jwk = cast(dict[str, Any], jwk_any)
        if self.kid:
            jwk["kid"] = self.kid
        return jwk


KeySet = tuple[Key, ...]


def load_jwks(jwks: dict[str, Any] | str) -> KeySet:
    obj = _load_json_text(jwks, "JWKS")
    if not isinstance(obj, dict):
        raise InvalidKeyError("JWKS must be an object")
    entries = obj.get("keys")
    if not isinstance(entries, list):
        raise InvalidKeyError("JWKS keys must be a list")

    keys: list[Key] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        kty = entry.get("kty")
        if kty not in _SUPPORTED_JWK_KTY:
            logger.debug("skipping JWKS entry with unsupported kty %r", kty)
            continue
        if entry.get("use", "sig") != "sig":
            logger.debug("skipping JWKS entry with use=%r", entry.get("use"))
            continue
        keys.append(Key.from_jwk(cast(dict[str, Any], entry)))
    if not keys:
        raise InvalidKeyError("JWKS has no usable signature keys")
    return tuple(keys)


def select_keys(keys: Key | Iterable[Key], kid: str | None) -> KeySet:
    """Candidate keys for a token header ``kid``.

    Keys without a ``kid`` stay candidates; keys whose ``kid`` differs from
    the header's are dropped.
    """
    pool: KeySet = (keys,) if isinstance(keys, Key) else tuple(keys)
    if kid is None:
        return pool
    return tuple(key for key in pool if key.kid is None or key.kid == kid)


def jwk_thumbprint(jwk: dict[str, Any]) -> str:
    """RFC 7638 SHA-256 thumbprint, base64url encoded."""
    kty = jwk.get("kty")
    if not isinstance(kty, str) or not kty.strip():
        raise ValueError("JWK missing kty")

    required: tuple[str, ...]
    if kty == "RSA":
        required = ("e", "n")
    elif kty == "EC":
        required = ("crv", "x", "y")
    elif kty == "oct":
        required = ("k",)
    else:
        raise ValueError(f"unsupported JWK kty for thumbprint: {kty}")

    thumb_obj: dict[str, str] = {"kty": kty}
    for member in required:
        value = jwk.get(member)
        if not isinstance(value, str) or not value:
            raise ValueError(f"{kty} JWK missing {member}")
        thumb_obj[member] = value

    canonical = json.dumps(thumb_obj, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return encode_b64url(hashlib.sha256(canonical).digest())
