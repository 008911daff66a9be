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
Data models for the coreason-sso package.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any

from authlib.common.encoding import to_bytes, urlsafe_b64decode
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, SecretStr, ValidationError, field_serializer

from coreason_sso.exceptions import DecodeError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Credentials(BaseModel):
    """
    The client credentials and redirect URI assigned to this application by the provider.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr
    redirect_uri: str


class DiscoveryDocument(BaseModel):
    """
    OIDC configuration from .well-known/openid-configuration.

    The exact bytes received from the provider are kept so the cache stores
    what the provider sent, not a re-serialization.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(..., description="The OIDC issuer URL.")
    authorization_endpoint: str | None = Field(default=None, description="The authorization endpoint URL.")
    token_endpoint: str | None = Field(default=None, description="The token endpoint URL.")
    jwks_uri: str = Field(..., description="The URL to the JWKS.")

    _raw: bytes = PrivateAttr(default=b"")

    @classmethod
    def from_bytes(cls, data: bytes) -> "DiscoveryDocument":
        """
        Decodes a discovery document.

        Raises:
            DecodeError: If the data is not a valid discovery document.
        """
        try:
            doc = cls.model_validate_json(data)
        except ValidationError as e:
            raise DecodeError(f"cannot decode discovery document: {e}") from e
        doc._raw = data
        return doc

    @property
    def raw_bytes(self) -> bytes:
        return self._raw


class JsonWebKeyRecord(BaseModel):
    """One published signing key, base64url fields as sent by the provider."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    kty: str = ""
    e: str = ""
    use: str = ""
    n: str = ""
    kid: str = ""
    alg: str = ""

    def as_jwk(self) -> dict[str, str]:
        """The record as a JWK dict, without empty members."""
        return {k: v for k, v in self.model_dump().items() if v}


class KeySet(BaseModel):
    """
    The provider's JWKS.

    A single undecodable key does not invalidate the set; the validator skips it.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    keys: list[JsonWebKeyRecord] = Field(default_factory=list)

    _raw: bytes = PrivateAttr(default=b"")

    @classmethod
    def from_bytes(cls, data: bytes) -> "KeySet":
        """
        Decodes a key set.

        Raises:
            DecodeError: If the data is not a valid JWKS document.
        """
        try:
            key_set = cls.model_validate_json(data)
        except ValidationError as e:
            raise DecodeError(f"cannot decode key set: {e}") from e
        key_set._raw = data
        return key_set

    @property
    def raw_bytes(self) -> bytes:
        return self._raw


def decode_claims(compact: str) -> dict[str, Any]:
    """
    Decodes the payload of a compact JWT without verifying it.

    This only aids validation; it is NOT validation.

    Raises:
        DecodeError: If the string is not a compact JWT with a JSON object payload.
    """
    parts = compact.split(".")
    if len(parts) != 3 or not parts[1]:
        raise DecodeError("ID token is not a compact JWT")
    try:
        payload = json.loads(urlsafe_b64decode(to_bytes(parts[1])))
    except (TypeError, ValueError) as e:
        raise DecodeError(f"cannot decode ID token payload: {e}") from e
    if not isinstance(payload, dict):
        raise DecodeError("ID token payload is not a JSON object")
    return payload


class Token(BaseModel):
    """
    Response from the token endpoint.

    The model is frozen; claims of the ID token are decoded on first access and cached.

    Attributes:
        access_token (str): A token that can be sent to the provider's APIs.
        expires_in (int): The lifetime in seconds of the access token.
        id_token (str): A signed JWT with identity information about the user.
        scope (str): Space-delimited scopes granted.
        token_type (str): Always "Bearer" at this time.
        refresh_token (str): Only present when offline access was requested.
        expires_at (datetime | None): Absolute expiry, issuance time + expires_in.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str = ""
    expires_in: int = 0
    id_token: str = ""
    scope: str = ""
    token_type: str = ""
    refresh_token: str = ""
    expires_at: datetime | None = None

    _claims: dict[str, Any] | None = PrivateAttr(default=None)

    @classmethod
    def from_response(cls, data: bytes, issued_at: datetime | None = None) -> "Token":
        """
        Decodes a token endpoint response and computes its absolute expiry.

        Raises:
            DecodeError: If the body is not a JSON token response.
        """
        try:
            payload = json.loads(data)
        except ValueError as e:
            raise DecodeError(f"cannot decode token response: {e}") from e
        if not isinstance(payload, dict):
            raise DecodeError("token response is not a JSON object")

        try:
            token = cls.model_validate(payload)
        except ValidationError as e:
            raise DecodeError(f"invalid token response: {e}") from e

        issued_at = issued_at or utcnow()
        return token.model_copy(update={"expires_at": issued_at + timedelta(seconds=token.expires_in)})

    @property
    def claims(self) -> dict[str, Any]:
        """
        The ID token claims, decoded once.

        Raises:
            DecodeError: If the ID token cannot be decoded.
        """
        if self._claims is None:
            self._claims = decode_claims(self.id_token)
        return self._claims

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= utcnow()

    def __repr__(self) -> str:
        return (
            f"Token(token_type={self.token_type!r}, "
            f"scope={self.scope!r}, "
            f"expires_at={self.expires_at!r}, "
            f"access_token='<REDACTED>', "
            f"refresh_token='<REDACTED>')"
        )

    def __str__(self) -> str:
        return self.__repr__()


class ParsedUserAgent(BaseModel):
    """The parts of a user-agent string used to fingerprint a device."""

    model_config = ConfigDict(frozen=True)

    raw: str = ""
    name: str = Field(default="", description="Browser family, e.g. 'Chrome'.")
    version: str = ""
    os: str = ""
    os_version: str = ""
    device: str = Field(default="", description="Device family, e.g. 'Pixel 7' or 'Other'.")
    mobile: bool = False
    tablet: bool = False
    desktop: bool = False
    bot: bool = False


class DeviceRecord(BaseModel):
    """
    A recognized client device.

    `user_agent` is recorded when the device is registered and never changes;
    only the session and the activity timestamp move.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    session_id: str = Field(..., alias="sessionID")
    last_activity: datetime = Field(default_factory=utcnow, alias="lastActivity")
    user_agent: ParsedUserAgent = Field(..., alias="userAgent")


class LoginRecord(BaseModel):
    """
    Login information of one account, keyed by the provider's stable subject ID.

    Never keyed by email: users can change their email address.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    account_id: str = Field(..., alias="accountID")
    email: str = ""
    refresh_token: SecretStr = Field(default=SecretStr(""), alias="refreshToken")
    devices: dict[str, DeviceRecord] = Field(default_factory=dict)

    @field_serializer("refresh_token", when_used="json")
    def _dump_refresh_token(self, v: SecretStr) -> str:
        return v.get_secret_value()

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "LoginRecord":
        """
        Raises:
            DecodeError: If the data is not a valid login record.
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise DecodeError(f"cannot decode login record: {e}") from e

    def __repr__(self) -> str:
        # PII fields MUST be redacted in __repr__
        return (
            f"LoginRecord(account_id='<REDACTED>', "
            f"email='<REDACTED>', "
            f"refresh_token={self.refresh_token!r}, "
            f"devices={sorted(self.devices)!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class FlowState(BaseModel):
    """What a provider keeps in the session between the auth link and the callback."""

    state: str = ""
    nonce: str = ""
    token: Token | None = None
