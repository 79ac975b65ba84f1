from __future__ import annotations

from collections.abc import Sequence


class JWSError(Exception):
    """Base class for every error raised by jwskit."""

    code = "jws_error"


class EncodeError(JWSError):
    code = "encode_error"


class DecodeError(JWSError):
    code = "decode_error"


class UnsupportedAlgorithm(JWSError):
    """The identifier is not one of the algorithms jwskit implements."""

    code = "unsupported_algorithm"

    def __init__(self, identifier: object) -> None:
        super().__init__(f"unsupported algorithm: {identifier!r}")
        self.identifier = identifier


class SignError(JWSError):
    code = "sign_error"


class VerifyError(JWSError):
    code = "verify_error"


class InvalidKeyError(SignError, VerifyError):
    """The key cannot be used with the requested algorithm or purpose."""

    code = "invalid_key"


class InvalidTokenError(JWSError):
    """Base class for verification rejections."""

    code = "invalid_token"


class MalformedToken(InvalidTokenError):
    code = "malformed_token"


class AlgorithmNotAllowed(InvalidTokenError):
    """The algorithm is known but excluded by policy (always the case for ``none``)."""

    code = "algorithm_not_allowed"

    def __init__(self, identifier: object) -> None:
        super().__init__(f"algorithm not allowed: {identifier!r}")
        self.identifier = identifier


class SignatureInvalid(InvalidTokenError):
    code = "signature_invalid"

    def __init__(self, message: str = "signature verification failed") -> None:
        super().__init__(message)


class InvalidClaimsError(InvalidTokenError):
    code = "invalid_claims"

    def __init__(self, message: str, claim: str | None = None) -> None:
        super().__init__(message)
        self.claim = claim


class TokenExpired(InvalidClaimsError):
    code = "token_expired"


class TokenNotYetValid(InvalidClaimsError):
    code = "token_not_yet_valid"


class ClaimMismatch(InvalidClaimsError):
    code = "claim_mismatch"


class ClaimErrors(InvalidClaimsError):
    """Several claim checks failed; raised only when errors are collected."""

    code = "claim_errors"

    def __init__(self, errors: Sequence[InvalidClaimsError]) -> None:
        self.errors = tuple(errors)
        summary = "; ".join(str(err) for err in self.errors)
        super().__init__(f"{len(self.errors)} claim checks failed: {summary}")


def describe_error(exc: JWSError) -> str:
    if isinstance(exc, TokenExpired):
        return "token is expired"
    if isinstance(exc, TokenNotYetValid):
        if exc.claim == "iat":
            return "iat is in the future"
        return "token is not valid yet (nbf in the future)"
    if isinstance(exc, ClaimErrors):
        return "; ".join(describe_error(err) for err in exc.errors)
    if isinstance(exc, ClaimMismatch):
        return str(exc)
    if isinstance(exc, SignatureInvalid):
        return "signature verification failed"
    if isinstance(exc, AlgorithmNotAllowed):
        if exc.identifier == "none":
            return "refusing to accept alg=none"
        return f"algorithm {exc.identifier} is not allowed"
    if isinstance(exc, MalformedToken):
        return "invalid token format"
    return str(exc)
