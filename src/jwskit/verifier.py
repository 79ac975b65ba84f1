"""Token verification.

A token moves through parse, algorithm resolution, signature check and
claim checks in that order; claims leave this module only inside a
``VerifiedToken`` built after every stage passed.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from typing import Any, Union

from .algorithms import (
    DEFAULT_MIN_RSA_KEY_SIZE,
    Algorithm,
    AlgorithmLike,
    AlgorithmPolicy,
)
from .compact import UnverifiedToken, VerifiedToken, parse
from .errors import (
    AlgorithmNotAllowed,
    ClaimErrors,
    ClaimMismatch,
    InvalidClaimsError,
    InvalidTokenError,
    JWSError,
    SignatureInvalid,
    TokenExpired,
    TokenNotYetValid,
    UnsupportedAlgorithm,
    VerifyError,
)
from .keys import Key, select_keys

logger = logging.getLogger(__name__)

SUPPORTED_REQUIRED_CLAIMS = frozenset({"exp", "nbf", "iat", "aud", "iss", "sub", "jti"})

Expected = Union[str, Collection[str], None]


def _normalize_allowlist(value: Expected, label: str) -> frozenset[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        items = [value.strip()]
    else:
        items = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError(f"{label} values must be strings")
            items.append(item.strip())
    cleaned = frozenset(item for item in items if item)
    if not cleaned:
        raise ValueError(f"{label} must not be empty")
    return cleaned


def _normalize_required_claims(required: str | Iterable[str]) -> frozenset[str]:
    items = [required] if isinstance(required, str) else list(required)
    cleaned: set[str] = set()
    for item in items:
        if not isinstance(item, str):
            raise ValueError("required claims must be strings")
        for part in item.split(","):
            name = part.strip()
            if not name:
                continue
            if name not in SUPPORTED_REQUIRED_CLAIMS:
                supported = ", ".join(sorted(SUPPORTED_REQUIRED_CLAIMS))
                raise ValueError(f"unsupported required claim: {name} (supported: {supported})")
            cleaned.add(name)
    return frozenset(cleaned)


@dataclass(frozen=True)
class VerifyOptions:
    """Immutable verification settings.

    ``algorithms`` is the explicit allow-list; the token's own ``alg`` is
    only ever checked against it. ``leeway`` is the clock-skew tolerance in
    seconds. A token carrying ``aud`` while no audience is configured is
    accepted unless ``strict_audience`` is set (RFC 7519 section 4.1.3 asks
    for rejection).
    """

    algorithms: Collection[AlgorithmLike]
    issuer: Expected = None
    audience: Expected = None
    subject: str | None = None
    required: str | Collection[str] = frozenset()
    leeway: float = 0
    verify_iat: bool = True
    strict_audience: bool = False
    collect_errors: bool = False
    min_rsa_key_size: int = DEFAULT_MIN_RSA_KEY_SIZE
    enforce_key_strength: bool = True
    policy: AlgorithmPolicy = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.algorithms, (str, Algorithm)):
            algorithms: Collection[AlgorithmLike] = [self.algorithms]
        else:
            algorithms = list(self.algorithms)
        if not algorithms:
            raise ValueError("algorithms allow-list must not be empty")
        if self.leeway < 0:
            raise ValueError("leeway must be non-negative")
        policy = AlgorithmPolicy(
            allowed=frozenset(algorithms),
            min_rsa_key_size=self.min_rsa_key_size,
            enforce_key_strength=self.enforce_key_strength,
        )
        object.__setattr__(self, "policy", policy)
        object.__setattr__(self, "algorithms", policy.allowed)
        object.__setattr__(self, "issuer", _normalize_allowlist(self.issuer, "issuer"))
        object.__setattr__(self, "audience", _normalize_allowlist(self.audience, "audience"))
        object.__setattr__(self, "required", _normalize_required_claims(self.required))


def _numeric(claims: dict[str, Any], name: str) -> float:
    value = claims[name]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ClaimMismatch(f"{name} claim must be a number", claim=name)
    try:
        number = float(value)
    except OverflowError as exc:
        raise ClaimMismatch(f"{name} claim is out of range", claim=name) from exc
    if not math.isfinite(number):
        raise ClaimMismatch(f"{name} claim must be finite", claim=name)
    return number


def _check_exp(claims: dict[str, Any], options: VerifyOptions, now: float) -> None:
    if "exp" not in claims:
        return
    if _numeric(claims, "exp") + options.leeway < now:
        raise TokenExpired("token has expired", claim="exp")


def _check_nbf(claims: dict[str, Any], options: VerifyOptions, now: float) -> None:
    if "nbf" not in claims:
        return
    if _numeric(claims, "nbf") > now + options.leeway:
        raise TokenNotYetValid("token is not valid yet (nbf)", claim="nbf")


def _check_iat(claims: dict[str, Any], options: VerifyOptions, now: float) -> None:
    if "iat" not in claims:
        return
    iat = _numeric(claims, "iat")
    if options.verify_iat and iat > now + options.leeway:
        raise TokenNotYetValid("token was issued in the future (iat)", claim="iat")


def _format_expected(label: str, expected: frozenset[str]) -> str:
    if len(expected) == 1:
        return f"{label} claim mismatch (expected: {next(iter(expected))})"
    return f"{label} claim mismatch (expected one of: {', '.join(sorted(expected))})"


def _check_iss(claims: dict[str, Any], options: VerifyOptions, now: float) -> None:
    iss = claims.get("iss")
    if "iss" in claims and not isinstance(iss, str):
        raise ClaimMismatch("iss claim must be a string", claim="iss")
    if options.issuer is None:
        return
    if iss is None:
        raise ClaimMismatch("iss claim missing", claim="iss")
    if iss not in options.issuer:
        raise ClaimMismatch(_format_expected("iss", options.issuer), claim="iss")


def _check_aud(claims: dict[str, Any], options: VerifyOptions, now: float) -> None:
    if "aud" not in claims:
        if options.audience is not None:
            raise ClaimMismatch("aud claim missing", claim="aud")
        return
    aud = claims["aud"]
    if isinstance(aud, str):
        values = [aud]
    elif isinstance(aud, list) and all(isinstance(item, str) for item in aud):
        values = aud
    else:
        raise ClaimMismatch("aud claim must be a string or list of strings", claim="aud")
    if options.audience is None:
        if options.strict_audience:
            raise ClaimMismatch("token has an aud claim but no audience is expected", claim="aud")
        return
    if not any(value in options.audience for value in values):
        raise ClaimMismatch(_format_expected("aud", options.audience), claim="aud")


def _check_sub(claims: dict[str, Any], options: VerifyOptions, now: float) -> None:
    sub = claims.get("sub")
    if "sub" in claims and not isinstance(sub, str):
        raise ClaimMismatch("sub claim must be a string", claim="sub")
    if options.subject is not None and sub != options.subject:
        raise ClaimMismatch(f"sub claim mismatch (expected: {options.subject})", claim="sub")


def _check_jti(claims: dict[str, Any], options: VerifyOptions, now: float) -> None:
    if "jti" in claims and not isinstance(claims["jti"], str):
        raise ClaimMismatch("jti claim must be a string", claim="jti")


def _check_required(claims: dict[str, Any], options: VerifyOptions, now: float) -> list[str]:
    return [name for name in sorted(options.required) if name not in claims]


_CLAIM_CHECKS = (_check_exp, _check_nbf, _check_iat, _check_iss, _check_aud, _check_sub, _check_jti)


def validate_claims(claims: dict[str, Any], options: VerifyOptions, now: float) -> None:
    """Run every claim rule; raise the first failure or all of them."""
    errors: list[InvalidClaimsError] = []
    for name in _check_required(claims, options, now):
        err = ClaimMismatch(f"missing required claim: {name}", claim=name)
        if not options.collect_errors:
            raise err
        errors.append(err)
    for check in _CLAIM_CHECKS:
        try:
            check(claims, options, now)
        except InvalidClaimsError as err:
            if not options.collect_errors:
                raise
            errors.append(err)
    if len(errors) == 1:
        raise errors[0]
    if errors:
        raise ClaimErrors(errors)


class Verifier:
    """Verifies compact tokens against a fixed ``VerifyOptions``.

    Instances hold no mutable state and can be shared between threads.
    """

    def __init__(self, options: VerifyOptions) -> None:
        self.options = options

    def _resolve(self, unverified: UnverifiedToken) -> Algorithm:
        alg = unverified.alg
        if alg.lower() == "none":
            raise AlgorithmNotAllowed(alg)
        if alg not in self.options.policy.identifiers:
            try:
                Algorithm.lookup(alg)
            except UnsupportedAlgorithm as exc:
                raise AlgorithmNotAllowed(alg) from exc
            raise AlgorithmNotAllowed(alg)
        return self.options.policy.resolve(alg)

    def _check_signature(
        self,
        unverified: UnverifiedToken,
        algorithm: Algorithm,
        keys: Key | Iterable[Key],
    ) -> Key:
        candidates = select_keys(keys, unverified.kid)
        min_strength = self.options.policy.min_strength(algorithm)
        signing_input = unverified.signing_input
        matched: Key | None = None
        last_error: VerifyError | None = None
        for key in candidates:
            try:
                ok = algorithm.verify(
                    signing_input, unverified.signature, key, min_strength=min_strength
                )
            except VerifyError as exc:
                last_error = exc
                continue
            if ok and matched is None:
                matched = key
        if matched is None:
            if last_error is not None:
                raise SignatureInvalid() from last_error
            raise SignatureInvalid()
        return matched

    def verify(
        self,
        token: str | bytes,
        keys: Key | Iterable[Key],
        *,
        at: float | None = None,
    ) -> VerifiedToken:
        """Return the verified token or raise an ``InvalidTokenError``.

        ``at`` overrides the current time (unix seconds) for claim checks.
        """
        stage = "parse"
        try:
            unverified = parse(token)
            stage = "algorithm"
            algorithm = self._resolve(unverified)
            stage = "signature"
            key = self._check_signature(unverified, algorithm, keys)
            stage = "claims"
            now = time.time() if at is None else float(at)
            claims = unverified._claims
            validate_claims(claims, self.options, now)
        except InvalidTokenError as exc:
            reason = exc.code
            if isinstance(exc.__cause__, JWSError):
                reason = f"{reason} ({exc.__cause__.code})"
            logger.debug("token rejected at %s stage: %s", stage, reason)
            raise
        logger.debug("token accepted alg=%s kid=%s", algorithm.identifier, key.kid)
        return VerifiedToken(
            header=unverified.header,
            claims=claims,
            algorithm=algorithm,
            signing_input=unverified.signing_input,
            signature=unverified.signature,
            kid=key.kid,
        )


def verify(
    token: str | bytes,
    keys: Key | Iterable[Key],
    *,
    algorithms: Collection[AlgorithmLike],
    issuer: Expected = None,
    audience: Expected = None,
    subject: str | None = None,
    required: str | Collection[str] = frozenset(),
    leeway: float = 0,
    at: float | None = None,
    **options: Any,
) -> dict[str, Any]:
    """Verify ``token`` and return its claims.

    Extra keyword arguments are passed to ``VerifyOptions``.
    """
    verifier = Verifier(
        VerifyOptions(
            algorithms=algorithms,
            issuer=issuer,
            audience=audience,
            subject=subject,
            required=required,
            leeway=leeway,
            **options,
        )
    )
    return verifier.verify(token, keys, at=at).claims
