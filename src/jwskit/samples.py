from __future__ import annotations

import secrets
import time
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .algorithms import Algorithm, Family
from .builder import build
from .keys import Key

SUPPORTED_SAMPLE_KINDS = frozenset(
    {"hs256", "hs384", "hs512", "rs256", "rs384", "rs512", "es256", "es384"}
)
DEFAULT_REQUIRED_CLAIMS = ["exp", "aud", "iss"]
SAMPLE_VERIFY_POLICY = {
    "aud": "demo-aud",
    "iss": "demo-iss",
    "leeway": 30,
    "require": DEFAULT_REQUIRED_CLAIMS,
}
SAMPLE_KID = "demo-k1"


def _pem_pair(private_key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey) -> tuple[str, str]:
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )
    return private_pem, public_pem


def _private_key_for(algorithm: Algorithm) -> rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey:
    if algorithm.curve == "P-256":
        return ec.generate_private_key(ec.SECP256R1())
    if algorithm.curve == "P-384":
        return ec.generate_private_key(ec.SECP384R1())
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _sample_claims(exp_seconds: int) -> dict[str, Any]:
    now = int(time.time())
    return {
        "sub": "demo-user",
        "aud": "demo-aud",
        "iss": "demo-iss",
        "iat": now,
        "exp": now + int(exp_seconds),
    }


def generate_sample(kind: str, exp_seconds: int = 3600) -> dict[str, Any]:
    """A freshly keyed demo token plus the material needed to verify it."""
    if kind not in SUPPORTED_SAMPLE_KINDS:
        raise ValueError("unknown sample kind")

    algorithm = Algorithm.lookup(kind.upper())
    claims = _sample_claims(exp_seconds)
    sample: dict[str, Any] = {
        "kind": kind,
        "alg": algorithm.identifier,
        "payload": claims,
        "kid": SAMPLE_KID,
        **SAMPLE_VERIFY_POLICY,
    }

    if algorithm.family is Family.HMAC:
        secret = secrets.token_urlsafe(algorithm.min_key_strength() // 8)
        sample["token"] = build(claims, algorithm, Key.secret(secret, kid=SAMPLE_KID))
        sample["verify_key"] = {"key_type": "secret", "key_text": secret}
        sample["sign_key"] = {"key_type": "secret", "key_text": secret}
        return sample

    private_pem, public_pem = _pem_pair(_private_key_for(algorithm))
    signing_key = Key.from_pem(private_pem, kid=SAMPLE_KID)
    sample["token"] = build(claims, algorithm, signing_key)
    sample["verify_key"] = {"key_type": "pem", "key_text": public_pem}
    sample["sign_key"] = {"key_type": "pem", "key_text": private_pem}
    sample["jwks"] = {"keys": [signing_key.to_jwk()]}
    return sample
