"""Unit tests for the compact HS256 claims codec."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from sessionward.service.claims import Claims, TokenKind, to_epoch
from sessionward.service.codec import (
    ClaimsCodec,
    _encode_segment,
    _sign,
    decode_claims,
    encode_claims,
)
from sessionward.service.errors import (
    InvalidSignature,
    InvalidToken,
    MalformedToken,
    TokenExpired,
    WrongTokenKind,
)

SECRET = "codec-test-secret-0123456789abcdefghij"
T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _claims(kind=TokenKind.CAPABILITY, role="user", ttl=900, token_id="jti-1"):
    issued = to_epoch(T0)
    return Claims(
        subject="u1",
        role=role,
        kind=kind,
        issued_at=issued,
        expires_at=issued + ttl,
        token_id=token_id,
    )


def _signed(payload, header=None, secret=SECRET):
    header = header or {"alg": "HS256", "typ": "JWT"}
    header_enc = _encode_segment(json.dumps(header).encode())
    payload_enc = _encode_segment(json.dumps(payload).encode())
    signing_input = f"{header_enc}.{payload_enc}"
    return f"{signing_input}.{_encode_segment(_sign(signing_input, secret))}"


_B64URL_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
)


def _flip_unused_signature_bits(token):
    """Re-spell the last signature character; the decoded bytes stay the same."""
    head, last = token[:-1], token[-1]
    return head + _B64URL_ALPHABET[_B64URL_ALPHABET.index(last) ^ 1]


def _payload(**overrides):
    payload = {
        "iss": "sessionward",
        "sub": "u1",
        "role": "user",
        "type": "capability",
        "jti": "jti-1",
        "iat": to_epoch(T0),
        "exp": to_epoch(T0) + 900,
    }
    payload.update(overrides)
    return payload


class TestRoundTrip:
    @pytest.mark.parametrize("kind", list(TokenKind))
    @pytest.mark.parametrize("role", ["user", "admin"])
    def test_decode_returns_encoded_claims(self, kind, role):
        claims = _claims(kind=kind, role=role)
        token = encode_claims(claims, SECRET)
        assert decode_claims(token, SECRET, T0 + timedelta(minutes=1)) == claims

    def test_codec_object_round_trip(self):
        codec = ClaimsCodec(SECRET, issuer="custom-issuer")
        claims = _claims()
        assert codec.decode(codec.encode(claims), T0) == claims

    def test_tokens_minted_in_same_second_differ_by_token_id(self):
        first = encode_claims(_claims(token_id="a"), SECRET)
        second = encode_claims(_claims(token_id="b"), SECRET)
        assert first != second

    def test_token_is_three_dot_separated_segments(self):
        token = encode_claims(_claims(), SECRET)
        assert token.count(".") == 2
        assert "=" not in token


class TestRejections:
    def test_wrong_secret_is_invalid_signature(self):
        token = encode_claims(_claims(), SECRET)
        with pytest.raises(InvalidSignature):
            decode_claims(token, "another-secret-0123456789abcdefghijk", T0)

    def test_tampered_payload_is_invalid_signature(self):
        token = encode_claims(_claims(), SECRET)
        header, _, signature = token.split(".")
        forged = _encode_segment(json.dumps(_payload(role="admin")).encode())
        with pytest.raises(InvalidSignature):
            decode_claims(f"{header}.{forged}.{signature}", SECRET, T0)

    def test_alg_none_is_rejected(self):
        token = _signed(_payload(), header={"alg": "none", "typ": "JWT"})
        with pytest.raises(InvalidSignature):
            decode_claims(token, SECRET, T0)

    @pytest.mark.parametrize(
        "token",
        ["", "abc", "a.b", "a..c", "a.b.c.d", "!!!.???.###", "bm90.anNvbg.c2ln"],
    )
    def test_structurally_broken_tokens_are_malformed(self, token):
        with pytest.raises(MalformedToken):
            decode_claims(token, SECRET, T0)

    def test_non_string_token_is_malformed(self):
        with pytest.raises(MalformedToken):
            decode_claims(None, SECRET, T0)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"jti": None},
            {"sub": ""},
            {"role": "superuser"},
            {"type": "session"},
            {"iat": True},
            {"exp": "tomorrow"},
            {"exp": to_epoch(T0) - 1},
        ],
    )
    def test_bad_payload_fields_are_malformed(self, overrides):
        token = _signed(_payload(**overrides))
        with pytest.raises(MalformedToken):
            decode_claims(token, SECRET, T0)

    def test_payload_that_is_not_an_object_is_malformed(self):
        with pytest.raises(MalformedToken):
            decode_claims(_signed(["u1"]), SECRET, T0)

    def test_foreign_issuer_is_invalid(self):
        token = _signed(_payload(iss="someone-else"))
        with pytest.raises(InvalidToken) as excinfo:
            decode_claims(token, SECRET, T0)
        assert type(excinfo.value) is InvalidToken

    def test_wrong_kind(self):
        token = encode_claims(_claims(kind=TokenKind.RENEWAL), SECRET)
        with pytest.raises(WrongTokenKind):
            decode_claims(token, SECRET, T0, expected_kind=TokenKind.CAPABILITY)

    @pytest.mark.parametrize("mutate", ["unused_bits", "stray_character"])
    def test_alternate_spelling_of_signature_is_rejected(self, mutate):
        token = encode_claims(_claims(), SECRET)
        assert decode_claims(token, SECRET, T0).subject == "u1"
        if mutate == "unused_bits":
            variant = _flip_unused_signature_bits(token)
        else:
            variant = token + "!"
        assert variant != token
        with pytest.raises(InvalidSignature):
            decode_claims(variant, SECRET, T0)

    @pytest.mark.parametrize("segment", ["header", "payload"])
    def test_deeply_nested_json_is_malformed(self, segment):
        nested = _encode_segment(b"[" * 5000)
        if segment == "header":
            token = f"{nested}.eyJhIjoxfQ.c2ln"
        else:
            header = _encode_segment(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
            signing_input = f"{header}.{nested}"
            token = f"{signing_input}.{_encode_segment(_sign(signing_input, SECRET))}"
        with pytest.raises(MalformedToken):
            decode_claims(token, SECRET, T0)

    def test_signature_checked_before_kind(self):
        token = encode_claims(_claims(kind=TokenKind.RENEWAL), SECRET)
        with pytest.raises(InvalidSignature):
            decode_claims(
                token,
                "another-secret-0123456789abcdefghijk",
                T0,
                expected_kind=TokenKind.CAPABILITY,
            )


class TestExpiry:
    def test_expired_at_exact_expiry(self):
        token = encode_claims(_claims(ttl=900), SECRET)
        decode_claims(token, SECRET, T0 + timedelta(seconds=899))
        with pytest.raises(TokenExpired):
            decode_claims(token, SECRET, T0 + timedelta(seconds=900))

    def test_leeway_extends_acceptance(self):
        codec = ClaimsCodec(SECRET, leeway_seconds=30)
        token = codec.encode(_claims(ttl=900))
        codec.decode(token, T0 + timedelta(seconds=910))
        with pytest.raises(TokenExpired):
            codec.decode(token, T0 + timedelta(seconds=930))

    def test_allow_expired_skips_only_expiry(self):
        token = encode_claims(_claims(), SECRET)
        claims = decode_claims(token, SECRET, T0 + timedelta(days=1), allow_expired=True)
        assert claims.subject == "u1"
        with pytest.raises(InvalidSignature):
            decode_claims(token, "x" * 40, None, allow_expired=True)

    def test_now_required_when_checking_expiry(self):
        token = encode_claims(_claims(), SECRET)
        with pytest.raises(ValueError):
            decode_claims(token, SECRET, None)

    def test_naive_now_is_treated_as_utc(self):
        token = encode_claims(_claims(ttl=900), SECRET)
        naive = (T0 + timedelta(seconds=900)).replace(tzinfo=None)
        with pytest.raises(TokenExpired):
            decode_claims(token, SECRET, naive)


def test_empty_secret_is_refused():
    with pytest.raises(ValueError):
        ClaimsCodec("")
