from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .algorithms import Algorithm, AlgorithmPolicy, Family
from .builder import build
from .compact import parse
from .errors import JWSError, describe_error
from .keys import Key, KeyKind, jwk_thumbprint, load_jwks
from .samples import SUPPORTED_SAMPLE_KINDS, generate_sample
from .verifier import Verifier, VerifyOptions
from .version import __version__

_ALGORITHM_CHOICES = [alg.identifier for alg in Algorithm]


def _ensure_dict(obj: Any, context: str) -> dict[str, Any]:
    if not isinstance(obj, dict):
        raise ValueError(f"{context} must be a JSON object")
    return obj


def _load_json_arg(inline: str | None, path: str | None, context: str) -> dict[str, Any] | None:
    if inline and path:
        raise ValueError(f"use only one of --{context} or --{context}-file")
    if path:
        return _ensure_dict(json.loads(Path(path).read_text(encoding="utf-8")), context)
    if inline:
        return _ensure_dict(json.loads(inline), context)
    return None


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _load_token(token_arg: str) -> str:
    if token_arg != "-":
        return token_arg
    token = sys.stdin.read().strip()
    if not token:
        raise ValueError("stdin is empty; expected JWT")
    return token


def _load_text(text_arg: str, label: str) -> str:
    if text_arg != "-":
        return text_arg
    text = sys.stdin.read()
    if not text.strip():
        raise ValueError(f"stdin is empty; expected {label}")
    return text


def _looks_like_pem(text: str) -> bool:
    return "BEGIN" in text and "KEY" in text


def _looks_like_json(text: str) -> bool:
    return text.strip().startswith("{")


def _key_from_text(text: str, *, hmac: bool, kid: str | None) -> list[Key]:
    stripped = text.strip()
    if _looks_like_json(stripped):
        obj = json.loads(stripped)
        if isinstance(obj, dict) and "keys" in obj:
            return list(load_jwks(obj))
        return [Key.from_jwk(_ensure_dict(obj, "JWK"))]
    if _looks_like_pem(stripped):
        return [Key.from_pem(stripped, kid=kid)]
    if not hmac:
        raise ValueError("expected PEM or JWK key material for asymmetric algorithms")
    return [Key.secret(text, kid=kid)]


def _read_key_args(args: argparse.Namespace) -> str:
    if args.key and args.key_text is not None:
        raise ValueError("use only one of --key or --key-text")
    if args.key:
        return Path(args.key).read_text(encoding="utf-8").strip()
    if args.key_text is not None:
        return _load_text(args.key_text, "key material")
    raise ValueError("missing key material; provide --key or --key-text")


def _parse_list(values: list[str] | None) -> list[str] | None:
    if not values:
        return None
    items: list[str] = []
    for raw in values:
        items.extend(part.strip() for part in str(raw).split(",") if part.strip())
    return list(dict.fromkeys(items)) or None


def _cmd_sign(args: argparse.Namespace) -> int:
    claims = _load_json_arg(args.payload, args.payload_file, "payload")
    if claims is None:
        raise ValueError("missing payload: use --payload or --payload-file")
    headers = _load_json_arg(args.headers, args.headers_file, "headers")
    algorithm = Algorithm.lookup(args.alg)
    keys = _key_from_text(
        _read_key_args(args), hmac=algorithm.family is Family.HMAC, kid=args.kid
    )
    if len(keys) != 1:
        raise ValueError("signing needs exactly one key, not a JWKS")
    policy = AlgorithmPolicy(enforce_key_strength=not args.allow_weak_key)
    print(build(claims, algorithm, keys[0], headers=headers, policy=policy))
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    if args.token == "-" and args.key_text == "-":
        raise ValueError("cannot read both token and key from stdin; provide one normally")
    if args.at is not None and int(args.at) < 0:
        raise ValueError("--at must be a non-negative integer")

    algorithms = [Algorithm.lookup(name) for name in _parse_list(args.alg) or []]
    if not algorithms:
        raise ValueError("provide at least one --alg to allow")
    hmac = any(alg.family is Family.HMAC for alg in algorithms)
    keys = [
        key.public() if key.kind is KeyKind.ASYMMETRIC_PRIVATE else key
        for key in _key_from_text(_read_key_args(args), hmac=hmac, kid=args.kid)
    ]

    options = VerifyOptions(
        algorithms=algorithms,
        issuer=_parse_list(args.iss),
        audience=_parse_list(args.aud),
        subject=args.sub,
        required=_parse_list(args.require) or (),
        leeway=args.leeway,
        strict_audience=args.strict_audience,
        collect_errors=args.collect_errors,
        enforce_key_strength=not args.allow_weak_key,
    )
    verified = Verifier(options).verify(_load_token(args.token), keys, at=args.at)
    output: dict[str, Any] = {
        "valid": True,
        "header": dict(verified.header),
        "payload": verified.claims,
    }
    if verified.kid:
        output["kid"] = verified.kid
    _print_json(output)
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    unverified = parse(_load_token(args.token))
    _print_json(
        {
            "header": dict(unverified.header),
            "signature_bytes": len(unverified.signature),
            "notes": "claims are only shown after verification",
        }
    )
    return 0


def _cmd_sample(args: argparse.Namespace) -> int:
    _print_json(generate_sample(str(args.kind), exp_seconds=int(args.exp_seconds)))
    return 0


def _cmd_jwk(args: argparse.Namespace) -> int:
    key = Key.from_pem(Path(args.pem).read_text(encoding="utf-8"), kid=args.kid)
    jwk = key.to_jwk()
    _print_json({"jwk": jwk, "thumbprint_sha256": jwk_thumbprint(jwk)})
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="jwskit")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Log level for diagnostics on stderr (default: WARNING)",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sign = sub.add_parser("sign", help="Sign claims into a compact JWT")
    p_sign.add_argument("--payload", help="JSON claims object")
    p_sign.add_argument("--payload-file", help="Path to JSON claims file")
    p_sign.add_argument("--headers", help="JSON header object (optional)")
    p_sign.add_argument("--headers-file", help="Path to JSON header file (optional)")
    p_sign.add_argument("--alg", choices=_ALGORITHM_CHOICES, default="HS256")
    p_sign.add_argument("--key", help="Path to secret, PEM private key or JWK")
    p_sign.add_argument("--key-text", help="Raw secret/key text (use '-' to read from stdin)")
    p_sign.add_argument("--kid", help="Optional key id")
    p_sign.add_argument(
        "--allow-weak-key", action="store_true", help="Skip minimum key strength checks"
    )
    p_sign.set_defaults(func=_cmd_sign)

    p_verify = sub.add_parser("verify", help="Verify a JWT signature and claims")
    p_verify.add_argument("--token", required=True, help="JWT string (use '-' to read from stdin)")
    p_verify.add_argument(
        "--alg",
        action="append",
        required=True,
        help="Allowed algorithm (repeatable or comma-separated)",
    )
    p_verify.add_argument("--key", help="Path to secret, PEM key, JWK or JWKS")
    p_verify.add_argument("--key-text", help="Raw secret/key text (use '-' to read from stdin)")
    p_verify.add_argument("--kid", help="Key id to attach to a PEM key or secret")
    p_verify.add_argument("--iss", action="append", help="Expected issuer (repeatable)")
    p_verify.add_argument("--aud", action="append", help="Expected audience (repeatable)")
    p_verify.add_argument("--sub", help="Expected subject")
    p_verify.add_argument(
        "--require",
        action="append",
        help="Require claim(s) to exist (exp, nbf, iat, aud, iss, sub, jti)",
    )
    p_verify.add_argument(
        "--leeway", type=int, default=0, help="Clock skew in seconds (default: 0)"
    )
    p_verify.add_argument("--at", type=int, help="Override current time as unix seconds")
    p_verify.add_argument(
        "--strict-audience",
        action="store_true",
        help="Reject tokens with an aud claim when no --aud is given",
    )
    p_verify.add_argument(
        "--collect-errors", action="store_true", help="Report every failed claim check"
    )
    p_verify.add_argument(
        "--allow-weak-key", action="store_true", help="Skip minimum key strength checks"
    )
    p_verify.set_defaults(func=_cmd_verify)

    p_inspect = sub.add_parser("inspect", help="Show the header of a JWT without verifying it")
    p_inspect.add_argument("--token", required=True, help="JWT string (use '-' to read from stdin)")
    p_inspect.set_defaults(func=_cmd_inspect)

    p_sample = sub.add_parser("sample", help="Generate an offline demo token and keys")
    p_sample.add_argument("--kind", choices=sorted(SUPPORTED_SAMPLE_KINDS), default="hs256")
    p_sample.add_argument(
        "--exp-seconds",
        type=int,
        default=3600,
        help="Expiration seconds from now (default: 3600)",
    )
    p_sample.set_defaults(func=_cmd_sample)

    p_jwk = sub.add_parser("jwk", help="Convert a PEM key to a public JWK")
    p_jwk.add_argument("--pem", required=True, help="Path to PEM key")
    p_jwk.add_argument("--kid", help="Optional key id")
    p_jwk.set_defaults(func=_cmd_jwk)

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), stream=sys.stderr)
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except JWSError as exc:
        print(f"error: {describe_error(exc)}", file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
