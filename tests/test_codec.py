from __future__ import annotations

import pytest

from jwskit.codec import decode_b64url, decode_json, encode_b64url, encode_json
from jwskit.errors import DecodeError, EncodeError

# RFC 7515 appendix A.1 protected header, CRLF included.
_RFC7515_HEADER = b'{"typ":"JWT",\r\n "alg":"HS256"}'
_RFC7515_HEADER_B64 = "eyJ0eXAiOiJKV1QiLA0KICJhbGciOiJIUzI1NiJ9"


def test_encode_b64url_matches_rfc7515_example() -> None:
    assert encode_b64url(_RFC7515_HEADER) == _RFC7515_HEADER_B64
    assert decode_b64url(_RFC7515_HEADER_B64) == _RFC7515_HEADER


def test_encode_b64url_has_no_padding_and_uses_url_alphabet() -> None:
    encoded = encode_b64url(b"\xfb\xff\xfe")
    assert encoded == "-__-"
    assert encode_b64url(b"a") == "YQ"
    assert "=" not in encode_b64url(b"ab")


def test_decode_b64url_empty_string() -> None:
    assert decode_b64url("") == b""


@pytest.mark.parametrize(
    "value",
    [
        "YQ==",  # padded
        "YQ=",
        "Y",  # impossible length
        "YWJj+A",  # standard alphabet
        "YWJj/A",
        "YW Jj",
        "YWJj\n",
        "YR",  # non-zero trailing bits
        "é",
    ],
)
def test_decode_b64url_rejects_invalid_input(value: str) -> None:
    with pytest.raises(DecodeError):
        decode_b64url(value)


def test_decode_b64url_rejects_padding_with_specific_message() -> None:
    with pytest.raises(DecodeError, match="padded"):
        decode_b64url("YQ==")


def test_encode_json_is_compact_utf8() -> None:
    assert encode_json({"alg": "HS256", "typ": "JWT"}) == b'{"alg":"HS256","typ":"JWT"}'
    assert encode_json({"name": "Zoë"}) == '{"name":"Zoë"}'.encode("utf-8")


def test_encode_json_preserves_insertion_order() -> None:
    assert encode_json({"sub": "alice", "exp": 1}) == b'{"sub":"alice","exp":1}'


@pytest.mark.parametrize("value", [{"x": object()}, {"x": float("nan")}, {"x": float("inf")}])
def test_encode_json_rejects_unserializable_values(value: dict) -> None:
    with pytest.raises(EncodeError):
        encode_json(value)


def test_encode_json_requires_object() -> None:
    with pytest.raises(EncodeError):
        encode_json(["not", "an", "object"])  # type: ignore[arg-type]


def test_decode_json_returns_object() -> None:
    assert decode_json(b'{"sub":"alice","n":[1,2]}') == {"sub": "alice", "n": [1, 2]}


@pytest.mark.parametrize(
    "data",
    [
        b"[1,2]",
        b'"text"',
        b"42",
        b"null",
        b"{not json",
        b"",
        b"\xff\xfe",
        b'{"exp": NaN}',
        b'{"alg":"HS256","alg":"none"}',
    ],
)
def test_decode_json_rejects_invalid_or_non_object(data: bytes) -> None:
    with pytest.raises(DecodeError):
        decode_json(data)


def test_decode_json_rejects_integers_past_digit_limit() -> None:
    with pytest.raises(DecodeError):
        decode_json(b'{"n":' + b"9" * 5000 + b"}")
