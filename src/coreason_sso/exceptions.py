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
Custom exceptions for the coreason-sso package.

Every failure surfaces as a specific type so the calling web layer can pick
the right user-facing redirect.
"""


class CoreasonSsoError(Exception):
    """Base exception for all coreason-sso errors."""


class ConfigurationError(CoreasonSsoError):
    """Raised when the configuration is invalid."""


class ConfigMissingError(ConfigurationError):
    """Raised when a required setting is absent. Fatal, raised before any network call."""


class NetworkError(CoreasonSsoError):
    """Raised when the HTTP transport fails (connection refused, timeout). Never retried."""


class UnexpectedStatusError(CoreasonSsoError):
    """Raised when the provider keeps answering with an unexpected HTTP status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"unexpected response {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class DecodeError(CoreasonSsoError):
    """Raised when JSON from the provider or from a cache cannot be decoded."""


class InvalidStateError(CoreasonSsoError):
    """
    Raised when the returned anti-forgery state is unusable.

    Attributes:
        location (str): Where the caller should redirect the browser.
        status_code (int): The HTTP status to redirect with.
    """

    def __init__(self, message: str, location: str = "/?m=invalid-state", status_code: int = 303) -> None:
        super().__init__(message)
        self.location = location
        self.status_code = status_code


class StateMismatchError(InvalidStateError):
    """Raised when the returned state does not match the one sent with the auth link."""

    def __init__(self, message: str, location: str = "/?m=bad-state", status_code: int = 303) -> None:
        super().__init__(message, location=location, status_code=status_code)


class NoKeySetAvailableError(CoreasonSsoError):
    """Raised when neither the cache nor the provider can supply discovery metadata or signing keys."""


class InvalidTokenError(CoreasonSsoError):
    """Raised when an identity token fails validation."""


class MissingTokenError(InvalidTokenError):
    """Raised when there is no token to validate."""


class SignatureInvalidError(InvalidTokenError):
    """Raised when the token signature does not verify against any published key."""


class IssuerMismatchError(InvalidTokenError):
    """Raised when the token issuer differs from the discovery document issuer."""


class AudienceMismatchError(InvalidTokenError):
    """Raised when the token audience is missing or is not the configured client ID."""


class TokenExpiredError(InvalidTokenError):
    """Raised when the token has expired."""


class DomainMismatchError(InvalidTokenError):
    """Raised when the token hosted-domain claim does not match the required domain."""


class NonceMismatchError(InvalidTokenError):
    """Raised when the token nonce claim does not match the nonce sent with the auth link."""


class MissingRefreshTokenError(CoreasonSsoError):
    """Raised when a refresh is requested without a previously stored refresh token."""


class LoginRegistryError(CoreasonSsoError):
    """Base exception for login record and device errors."""


class AccountNotFoundError(LoginRegistryError):
    """Raised when no login record exists for an account. Callers fall through to registration."""

    def __init__(self, account_id: str) -> None:
        super().__init__("no login record found for the account")
        self.account_id = account_id


class DeviceNotFoundError(LoginRegistryError):
    """Raised when a device is not part of a login record."""

    def __init__(self, device_id: str) -> None:
        super().__init__(f"device {device_id} not found")
        self.device_id = device_id


class TamperingSuspectedError(LoginRegistryError):
    """Raised when a known device ID is presented with a different user-agent fingerprint."""


class SessionMismatchError(LoginRegistryError):
    """Raised when a known device shows up with another session and the policy rejects it."""


class ReauthenticationRequiredError(LoginRegistryError):
    """Raised when a known device shows up with another session and the policy demands a new login."""


class StorageError(CoreasonSsoError):
    """Raised when a blob cannot be read or written."""


class BlobNotFoundError(StorageError):
    """Raised when a blob does not exist."""

    def __init__(self, key: str) -> None:
        super().__init__(f"no data stored under {key}")
        self.key = key
