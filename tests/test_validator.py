# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

import json
from collections.abc import Callable
from datetime import timedelta
from typing import Any
from unittest.mock import patch

import pytest
from conftest import CLIENT_ID, ISSUER

from coreason_sso.exceptions import (
    AudienceMismatchError,
    DomainMismatchError,
    InvalidTokenError,
    IssuerMismatchError,
    MissingTokenError,
    NoKeySetAvailableError,
    NonceMismatchError,
    SignatureInvalidError,
    TokenExpiredError,
)
from coreason_sso.models import JsonWebKeyRecord, KeySet, Token, utcnow
from coreason_sso.validator import TokenValidator, decode_public_keys, verify_nonce


def fresh_token(id_token: str, lifetime: int = 3599) -> Token:
    return Token(id_token=id_token, expires_in=lifetime, expires_at=utcnow() + timedelta(seconds=lifetime))


class TestTokenValidator:
    @pytest.fixture
    def key_set(self, jwks_bytes: bytes) -> KeySet:
        return KeySet.from_bytes(jwks_bytes)

    @pytest.fixture
    def validator(self) -> TokenValidator:
        return TokenValidator(CLIENT_ID)

    def test_validate_success(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]
    ) -> None:
        claims = validator.validate(fresh_token(make_id_token(sub="42")), key_set, ISSUER)
        assert claims["sub"] == "42"
        assert claims["aud"] == CLIENT_ID

    def test_missing_token(self, validator: TokenValidator, key_set: KeySet) -> None:
        with pytest.raises(MissingTokenError):
            validator.validate(None, key_set, ISSUER)

    def test_undecodable_id_token(self, validator: TokenValidator, key_set: KeySet) -> None:
        with pytest.raises(InvalidTokenError):
            validator.validate(fresh_token("not-a-jwt"), key_set, ISSUER)

    def test_missing_key_set(self, validator: TokenValidator, make_id_token: Callable[..., str]) -> None:
        with pytest.raises(NoKeySetAvailableError):
            validator.validate(fresh_token(make_id_token()), None, ISSUER)

    def test_signature_from_unpublished_key(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str], other_rsa_key: Any
    ) -> None:
        with pytest.raises(SignatureInvalidError):
            validator.validate(fresh_token(make_id_token(key=other_rsa_key)), key_set, ISSUER)

    def test_tampered_payload(self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]) -> None:
        header, _, signature = make_id_token(sub="42").split(".")
        _, forged_payload, _ = make_id_token(sub="attacker").split(".")

        with pytest.raises(SignatureInvalidError):
            validator.validate(fresh_token(f"{header}.{forged_payload}.{signature}"), key_set, ISSUER)

    def test_empty_key_set(self, validator: TokenValidator, make_id_token: Callable[..., str]) -> None:
        with pytest.raises(SignatureInvalidError):
            validator.validate(fresh_token(make_id_token()), KeySet(), ISSUER)

    def test_issuer_mismatch(self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]) -> None:
        with pytest.raises(IssuerMismatchError):
            validator.validate(fresh_token(make_id_token(iss="https://evil.example.com")), key_set, ISSUER)

    def test_issuer_must_match_exactly(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]
    ) -> None:
        with pytest.raises(IssuerMismatchError):
            validator.validate(fresh_token(make_id_token(iss=ISSUER + "/")), key_set, ISSUER)

    def test_audience_mismatch(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]
    ) -> None:
        with pytest.raises(AudienceMismatchError):
            validator.validate(fresh_token(make_id_token(aud="someone-else")), key_set, ISSUER)

    @pytest.mark.parametrize("aud", [None, "", ["a", "b"]])
    def test_audience_missing_or_not_a_string(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str], aud: Any
    ) -> None:
        with pytest.raises(AudienceMismatchError):
            validator.validate(fresh_token(make_id_token(aud=aud)), key_set, ISSUER)

    def test_audience_is_url_unescaped(self, key_set: KeySet, make_id_token: Callable[..., str]) -> None:
        validator = TokenValidator("client id/1")
        claims = validator.validate(fresh_token(make_id_token(aud="client%20id%2F1")), key_set, ISSUER)
        assert claims["aud"] == "client%20id%2F1"

    def test_expired(self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]) -> None:
        token = Token(id_token=make_id_token(), expires_in=10, expires_at=utcnow() - timedelta(seconds=1))
        with pytest.raises(TokenExpiredError):
            validator.validate(token, key_set, ISSUER)

    def test_expiry_required(self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]) -> None:
        with pytest.raises(TokenExpiredError):
            validator.validate(Token(id_token=make_id_token()), key_set, ISSUER)

    def test_hosted_domain(self, key_set: KeySet, make_id_token: Callable[..., str]) -> None:
        validator = TokenValidator(CLIENT_ID, hosted_domain="example.com")

        claims = validator.validate(fresh_token(make_id_token(hd="example.com")), key_set, ISSUER)
        assert claims["hd"] == "example.com"

        with pytest.raises(DomainMismatchError):
            validator.validate(fresh_token(make_id_token(hd="other.com")), key_set, ISSUER)
        with pytest.raises(DomainMismatchError):
            validator.validate(fresh_token(make_id_token()), key_set, ISSUER)

    def test_hosted_domain_ignored_when_not_configured(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]
    ) -> None:
        validator.validate(fresh_token(make_id_token(hd="anything.com")), key_set, ISSUER)

    def test_checks_stop_at_first_failure(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str], other_rsa_key: Any
    ) -> None:
        """A bad signature wins over a bad issuer, audience and expiry."""
        id_token = make_id_token(key=other_rsa_key, iss="https://evil.example.com", aud="x")
        token = Token(id_token=id_token, expires_at=utcnow() - timedelta(hours=1))
        with pytest.raises(SignatureInvalidError):
            validator.validate(token, key_set, ISSUER)

    def test_algorithm_not_allowed(self, key_set: KeySet, make_id_token: Callable[..., str]) -> None:
        validator = TokenValidator(CLIENT_ID, allowed_algorithms=["ES256"])
        with pytest.raises(SignatureInvalidError):
            validator.validate(fresh_token(make_id_token()), key_set, ISSUER)

    def test_bad_keys_are_skipped(self, jwks_bytes: bytes, make_id_token: Callable[..., str]) -> None:
        good = json.loads(jwks_bytes)["keys"][0]
        key_set = KeySet.from_bytes(
            json.dumps(
                {
                    "keys": [
                        {"kty": "RSA", "kid": "broken", "n": "!!!", "e": "AQAB"},
                        {"kty": "XYZ", "kid": "unknown-type"},
                        {"kid": "no-type"},
                        good,
                    ]
                }
            ).encode("utf-8")
        )

        claims = TokenValidator(CLIENT_ID).validate(fresh_token(make_id_token(sub="42")), key_set, ISSUER)
        assert claims["sub"] == "42"

    def test_cache_round_trip_validates_identically(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]
    ) -> None:
        token = fresh_token(make_id_token(sub="42"))
        reloaded = KeySet.from_bytes(key_set.raw_bytes)

        assert validator.validate(token, key_set, ISSUER) == validator.validate(token, reloaded, ISSUER)

    def test_success_logs_anonymized_subject(
        self, validator: TokenValidator, key_set: KeySet, make_id_token: Callable[..., str]
    ) -> None:
        with patch.object(validator, "log") as log:
            validator.validate(fresh_token(make_id_token(sub="110169484474386276334")), key_set, ISSUER)

        message = log.info.call_args[0][0]
        assert "110169484474386276334" not in message
        assert "Token validated for user" in message


def test_decode_public_keys_skips_undecodable(jwks_bytes: bytes) -> None:
    key_set = KeySet.from_bytes(jwks_bytes)
    broken = KeySet(keys=[JsonWebKeyRecord(kty="RSA", n="", e=""), *key_set.keys])

    assert len(decode_public_keys(broken)) == 1


def test_verify_nonce() -> None:
    verify_nonce({"nonce": "n" * 48}, "n" * 48)

    with pytest.raises(NonceMismatchError):
        verify_nonce({"nonce": "a" * 48}, "b" * 48)
    with pytest.raises(NonceMismatchError):
        verify_nonce({}, "b" * 48)
    with pytest.raises(NonceMismatchError):
        verify_nonce({"nonce": "a" * 48}, "")
