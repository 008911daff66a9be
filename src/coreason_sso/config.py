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
Configuration for the coreason-sso package.
"""

from enum import StrEnum
from typing import Any

from pydantic import Field, SecretStr, ValidationError, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_sso.exceptions import ConfigMissingError, ConfigurationError
from coreason_sso.models import Credentials


class SessionMismatchPolicy(StrEnum):
    """What to do when a recognized device comes back with a different session ID."""

    ACCEPT = "accept"
    REAUTHENTICATE = "reauthenticate"
    REJECT = "reject"


# An empty required setting counts as absent
_ABSENT = {"missing", "string_too_short"}

class SsoConfig(BaseSettings):
    """
    Configuration settings for coreason-sso.

    Every field can be set from the environment with the `GOOGLE_OIDC_` prefix,
    e.g. `GOOGLE_OIDC_CLIENT_ID`.

    Attributes:
        client_id (str): The OAuth client ID registered with the provider.
        client_secret (SecretStr): The OAuth client secret.
        redirect_uri (str): Where the provider sends the browser back with the code.
        project_id (str): The application (project) registered with the provider.
        discovery_doc_url (str): The provider's well-known discovery document URL.
        auth_uri (str): The provider's authorization endpoint.
        token_uri (str): The provider's token endpoint.
        hosted_domain (str | None): Restrict logins to this hosted domain (`hd`).
    """

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_OIDC_",
        case_sensitive=False,
    )

    unsafe_local_dev: bool = False

    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr
    redirect_uri: str = Field(..., min_length=1)
    project_id: str = Field(..., min_length=1)
    discovery_doc_url: str = Field(..., min_length=1)
    auth_uri: str = Field(..., min_length=1)
    token_uri: str = Field(..., min_length=1)

    hosted_domain: str | None = None
    scopes: list[str] = Field(default_factory=lambda: ["openid", "profile", "email"])
    http_timeout: float = Field(default=10.0, gt=0, description="Timeout in seconds for all provider network calls.")
    retry_budget: int = Field(default=3, ge=1, description="Attempts per provider request on unexpected status.")
    refresh_cooldown: float = Field(default=30.0, ge=0)
    storage_prefix: str = ""
    allowed_algorithms: list[str] = Field(default_factory=lambda: ["RS256"])
    enforce_nonce: bool = False
    session_mismatch_policy: SessionMismatchPolicy = SessionMismatchPolicy.ACCEPT
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")

    @field_validator("client_secret")
    @classmethod
    def secret_not_empty(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise PydanticCustomError("string_too_short", "client_secret must not be empty")
        return v

    @field_validator("discovery_doc_url", "auth_uri", "token_uri", mode="after")
    @classmethod
    def validate_https(cls, v: str, info: ValidationInfo) -> str:
        """
        Ensures provider endpoints use HTTPS, unless strictly opted out for local dev.
        """
        if v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return v

    @property
    def credentials(self) -> Credentials:
        """The client credentials, loaded once and immutable."""
        return Credentials(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
        )


def load_config(**overrides: Any) -> SsoConfig:
    """
    Loads the configuration from the environment, failing fast on missing settings.

    Args:
        **overrides: Values that take precedence over the environment.

    Returns:
        SsoConfig: The validated configuration.

    Raises:
        ConfigMissingError: If any required setting is absent or empty.
        ConfigurationError: If a setting is present but invalid.
    """
    try:
        return SsoConfig(**overrides)
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors() if err["type"] in _ABSENT]
        if missing:
            names = ", ".join(f"GOOGLE_OIDC_{name.upper()}" for name in missing)
            raise ConfigMissingError(f"missing required settings: {names}") from e
        raise ConfigurationError(f"invalid configuration: {e}") from e
