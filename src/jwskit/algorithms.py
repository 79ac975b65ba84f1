from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import constant_time, hashes, hmac
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from .errors import (
    AlgorithmNotAllowed,
    InvalidKeyError,
    SignError,
    UnsupportedAlgorithm,
    VerifyError,
)
from .keys import Key, KeyKind

logger = logging.getLogger(__name__)

DEFAULT_MIN_RSA_KEY_SIZE = 2048


class Family(enum.Enum):
    HMAC = "HMAC"
    RSA = "RSA"
    ECDSA = "EC"


class Algorithm(enum.Enum):
    """The closed set of JWS algorithms jwskit signs and verifies.

    Each member binds its ``alg`` identifier to a signature family, a SHA-2
    hash and, for ECDSA, the curve its keys must be on. New members are a
    deliberate code change; there is no plugin registration.
    """

    HS256 = ("HS256", Family.HMAC, hashes.SHA256, None)
    HS384 = ("HS384", Family.HMAC, hashes.SHA384, None)
    HS512 = ("HS512", Family.HMAC, hashes.SHA512, None)
    RS256 = ("RS256", Family.RSA, hashes.SHA256, None)
    RS384 = ("RS384", Family.RSA, hashes.SHA384, None)
    RS512 = ("RS512", Family.RSA, hashes.SHA512, None)
    ES256 = ("ES256", Family.ECDSA, hashes.SHA256, "P-256")
    ES384 = ("ES384", Family.ECDSA, hashes.SHA384, "P-384")

    def __init__(
        self,
        identifier: str,
        family: Family,
        hash_type: type[hashes.HashAlgorithm],
        curve: str | None,
    ) -> None:
        self.identifier = identifier
        self.family = family
        self.hash_type = hash_type
        self.curve = curve

    def __str__(self) -> str:
        return self.identifier

    @classmethod
    def lookup(cls, identifier: str) -> Algorithm:
        for member in cls:
            if member.identifier == identifier:
                return member
        raise UnsupportedAlgorithm(identifier)

    def key_kind(self, *, signing: bool) -> KeyKind:
        if self.family is Family.HMAC:
            return KeyKind.SYMMETRIC
        return KeyKind.ASYMMETRIC_PRIVATE if signing else KeyKind.ASYMMETRIC_PUBLIC

    def min_key_strength(self) -> int:
        """Smallest acceptable key size in bits."""
        if self.family is Family.HMAC:
            return self.hash_type.digest_size * 8
        if self.family is Family.RSA:
            return DEFAULT_MIN_RSA_KEY_SIZE
        return self._coordinate_size * 8

    @property
    def _coordinate_size(self) -> int:
        return 32 if self.curve == "P-256" else 48

    def check_key(self, key: Key, *, signing: bool, min_strength: int | None = None) -> None:
        expected_kind = self.key_kind(signing=signing)
        if key.kind is not expected_kind:
            purpose = "signing" if signing else "verification"
            raise InvalidKeyError(
                f"{self.identifier} {purpose} requires a {expected_kind.value} key, "
                f"got {key.kind.value}"
            )
        if self.family is not Family.HMAC and key.key_type != self.family.value:
            raise InvalidKeyError(f"{self.identifier} requires an {self.family.value} key")
        if self.curve is not None and key.curve != self.curve:
            raise InvalidKeyError(f"{self.identifier} requires a {self.curve} key, got {key.curve}")
        required = self.min_key_strength() if min_strength is None else min_strength
        if key.strength < required:
            raise InvalidKeyError(
                f"{self.identifier} key is too weak: {key.strength} bits "
                f"(at least {required} required)"
            )

    def sign(self, signing_input: bytes, key: Key, *, min_strength: int | None = None) -> bytes:
        self.check_key(key, signing=True, min_strength=min_strength)
        try:
            if self.family is Family.HMAC:
                mac = hmac.HMAC(key.material, self.hash_type())
                mac.update(signing_input)
                return mac.finalize()
            if self.family is Family.RSA:
                return key.material.sign(signing_input, padding.PKCS1v15(), self.hash_type())
            der = key.material.sign(signing_input, ec.ECDSA(self.hash_type()))
        except (TypeError, ValueError) as exc:
            raise SignError(f"{self.identifier} signing failed") from exc
        r, s = decode_dss_signature(der)
        size = self._coordinate_size
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    def verify(
        self,
        signing_input: bytes,
        signature: bytes,
        key: Key,
        *,
        min_strength: int | None = None,
    ) -> bool:
        """Check ``signature`` over ``signing_input``.

        Key problems raise; a bad signature, well-formed or not, returns False
        through the same primitive call.
        """
        self.check_key(key, signing=False, min_strength=min_strength)
        try:
            if self.family is Family.HMAC:
                mac = hmac.HMAC(key.material, self.hash_type())
                mac.update(signing_input)
                return constant_time.bytes_eq(mac.finalize(), signature)
            if self.family is Family.RSA:
                return self._verify_rsa(signing_input, signature, key)
            return self._verify_ecdsa(signing_input, signature, key)
        except (TypeError, ValueError) as exc:
            raise VerifyError(f"{self.identifier} verification failed") from exc

    def _verify_rsa(self, signing_input: bytes, signature: bytes, key: Key) -> bool:
        try:
            key.material.verify(signature, signing_input, padding.PKCS1v15(), self.hash_type())
        except InvalidSignature:
            return False
        return True

    def _verify_ecdsa(self, signing_input: bytes, signature: bytes, key: Key) -> bool:
        size = self._coordinate_size
        well_formed = len(signature) == 2 * size
        # Wrong-length input still runs the primitive on a zero signature.
        raw = signature if well_formed else bytes(2 * size)
        der = encode_dss_signature(
            int.from_bytes(raw[:size], "big"),
            int.from_bytes(raw[size:], "big"),
        )
        try:
            key.material.verify(der, signing_input, ec.ECDSA(self.hash_type()))
            valid = True
        except InvalidSignature:
            valid = False
        return valid and well_formed


AlgorithmLike = Union[Algorithm, str]


def _coerce_allowed(value: AlgorithmLike) -> Algorithm:
    if isinstance(value, Algorithm):
        return value
    if isinstance(value, str) and value.lower() == "none":
        raise AlgorithmNotAllowed(value)
    return Algorithm.lookup(value)


@dataclass(frozen=True)
class AlgorithmPolicy:
    """Which algorithms may be used and how strong their keys must be."""

    allowed: frozenset[Algorithm] = field(default_factory=lambda: frozenset(Algorithm))
    min_rsa_key_size: int = DEFAULT_MIN_RSA_KEY_SIZE
    enforce_key_strength: bool = True

    def __post_init__(self) -> None:
        items: Iterable[AlgorithmLike]
        if isinstance(self.allowed, (str, Algorithm)):
            items = [self.allowed]
        else:
            items = self.allowed
        allowed = frozenset(_coerce_allowed(item) for item in items)
        if not allowed:
            raise ValueError("at least one algorithm must be allowed")
        if self.min_rsa_key_size < 0:
            raise ValueError("min_rsa_key_size must be non-negative")
        object.__setattr__(self, "allowed", allowed)

    @property
    def identifiers(self) -> frozenset[str]:
        return frozenset(alg.identifier for alg in self.allowed)

    def resolve(self, identifier: AlgorithmLike) -> Algorithm:
        if isinstance(identifier, Algorithm):
            algorithm = identifier
        else:
            if isinstance(identifier, str) and identifier.lower() == "none":
                raise AlgorithmNotAllowed(identifier)
            algorithm = Algorithm.lookup(identifier)
        if algorithm not in self.allowed:
            raise AlgorithmNotAllowed(algorithm.identifier)
        return algorithm

    def min_strength(self, algorithm: Algorithm) -> int:
        if not self.enforce_key_strength:
            return 0
        if algorithm.family is Family.RSA:
            return self.min_rsa_key_size
        return algorithm.min_key_strength()


DEFAULT_POLICY = AlgorithmPolicy()
