# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

"""
TokenValidator component for validating ID token signatures and claims.
"""

import hmac
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

from authlib.jose import JsonWebKey, JsonWebSignature
from authlib.jose.errors import JoseError
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_sso.exceptions import (
    AudienceMismatchError,
    CoreasonSsoError,
    DecodeError,
    DomainMismatchError,
    InvalidTokenError,
    IssuerMismatchError,
    MissingTokenError,
    NoKeySetAvailableError,
    NonceMismatchError,
    SignatureInvalidError,
    TokenExpiredError,
)
from coreason_sso.models import KeySet, Token, utcnow
from coreason_sso.utils.logger import component_logger, logger
from coreason_sso.utils.pii import anonymize

if TYPE_CHECKING:
    from authlib.jose.rfc7517 import Key
    from loguru import Logger

tracer = trace.get_tracer(__name__)

__all__ = ["TokenValidator", "decode_public_keys", "verify_nonce"]


def decode_public_keys(key_set: KeySet, log: "Logger | None" = None) -> list["Key"]:
    """
    Turns the published JWKs into verification keys.

    A key that cannot be decoded is logged and skipped; it does not invalidate the set.
    """
    log = log or logger
    keys: list[Key] = []
    for record in key_set.keys:
        try:
            key = JsonWebKey.import_key(record.as_jwk())
            # Importing is lazy, force the modulus and exponent to be decoded now.
            key.get_public_key()
        except (JoseError, KeyError, TypeError, ValueError) as e:
            log.warning(f"Skipping undecodable key kid={record.kid!r}: {e}")
            continue
        keys.append(key)
    return keys


def verify_nonce(claims: dict[str, Any], expected_nonce: str) -> None:
    """
    Checks the ID token `nonce` claim against the nonce sent with the auth link.

    Raises:
        NonceMismatchError: If the claim is missing or differs.
    """
    nonce = claims.get("nonce")
    if not isinstance(nonce, str) or not expected_nonce:
        raise NonceMismatchError("nonce missing from the ID token or the session")
    if not hmac.compare_digest(nonce.encode("utf-8"), expected_nonce.encode("utf-8")):
        raise NonceMismatchError("nonce mismatch, possible token replay")


class TokenValidator:
    """
    Validates ID tokens against the provider's published keys and the expected claims.

    Stateless apart from its settings; one instance can serve every request.

    Attributes:
        client_id (str): The expected audience.
        hosted_domain (str | None): If set, the required `hd` claim.
        allowed_algorithms (list[str]): Signature algorithms accepted.
    """

    def __init__(
        self,
        client_id: str,
        *,
        hosted_domain: str | None = None,
        allowed_algorithms: list[str] | None = None,
        pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt"),
        log: "Logger | None" = None,
    ) -> None:
        self.client_id = client_id
        self.hosted_domain = hosted_domain
        self.allowed_algorithms = allowed_algorithms or ["RS256"]
        self.pii_salt = pii_salt
        self.log = component_logger("token_validator", log)
        self.jws = JsonWebSignature(algorithms=self.allowed_algorithms)

    def validate(self, token: Token | None, key_set: KeySet | None, issuer: str) -> dict[str, Any]:
        """
        Validates the ID token of `token`.

        Checks run in order and stop at the first failure: signature against
        any published key, issuer, audience, expiry, then hosted domain.

        Emits an OpenTelemetry span `validate_token`.

        Args:
            token: The token response holding the ID token.
            key_set: The provider's signing keys.
            issuer: The issuer from the discovery document.

        Returns:
            dict[str, Any]: The validated claims.

        Raises:
            MissingTokenError: If there is no token.
            InvalidTokenError: If the ID token cannot be decoded.
            NoKeySetAvailableError: If no key set was loaded.
            SignatureInvalidError: If no key verifies the signature.
            IssuerMismatchError: If `iss` differs from the discovery issuer.
            AudienceMismatchError: If `aud` is missing or is not the client ID.
            TokenExpiredError: If the token has expired.
            DomainMismatchError: If a hosted domain is required and `hd` differs.
        """
        with tracer.start_as_current_span("validate_token") as span:
            try:
                claims = self._validate(token, key_set, issuer)
            except CoreasonSsoError as e:
                self.log.warning(f"Validation failed: {type(e).__name__}: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            user_hash = anonymize(str(claims.get("sub", "unknown")), self.pii_salt)
            self.log.info(f"Token validated for user {user_hash}")
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))
            return claims

    def _validate(self, token: Token | None, key_set: KeySet | None, issuer: str) -> dict[str, Any]:
        if token is None:
            raise MissingTokenError("no token to validate")

        try:
            claims = token.claims
        except DecodeError as e:
            raise InvalidTokenError(f"cannot decode ID token: {e}") from e

        if key_set is None:
            raise NoKeySetAvailableError("no key set loaded")

        self._verify_signature(token.id_token, key_set)

        if claims.get("iss") != issuer:
            raise IssuerMismatchError(f"issuer {claims.get('iss')!r} does not match {issuer!r}")

        aud = claims.get("aud")
        if not isinstance(aud, str) or not aud:
            raise AudienceMismatchError("audience missing from the ID token")
        if unquote(aud) != self.client_id:
            raise AudienceMismatchError("audience does not match the client ID")

        if token.expires_at is None or token.expired:
            raise TokenExpiredError(f"token expired at {token.expires_at}")

        if self.hosted_domain and claims.get("hd") != self.hosted_domain:
            raise DomainMismatchError(f"hosted domain {claims.get('hd')!r} is not {self.hosted_domain!r}")

        return claims

    def _verify_signature(self, id_token: str, key_set: KeySet) -> None:
        """Tries every published key; the token header `kid` is not used to pick one."""
        keys = decode_public_keys(key_set, self.log)
        for key in keys:
            try:
                self.jws.deserialize_compact(id_token, key)
            except JoseError:
                continue
            except (TypeError, ValueError) as e:
                # Key type does not fit the token algorithm.
                self.log.debug(f"Key rejected: {e}")
                continue
            return

        raise SignatureInvalidError(f"signature does not verify against any of {len(keys)} keys")
