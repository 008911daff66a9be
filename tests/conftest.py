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
import time
from collections.abc import Callable
from typing import Any

import pytest
from authlib.jose import JsonWebKey, jwt

from coreason_sso.config import SsoConfig

ISSUER = "https://accounts.example.com"
CLIENT_ID = "1234567890-abc.apps.example.com"
DISCOVERY_URL = "https://accounts.example.com/.well-known/openid-configuration"
JWKS_URL = "https://example.com/certs"
AUTH_URL = "https://accounts.example.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.example.com/token"
REDIRECT_URI = "https://app.example.com/callback"

PIXEL_UA = (
    "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/116.0.0.0 Mobile Safari/537.36"
)
PIXEL_UA_NEW_OS = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/116.0.0.0 Mobile Safari/537.36"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
YANDEX_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 YaBrowser/24.1.0.0 Safari/537.36"
)
VIVALDI_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Vivaldi/6.5.3206.48"
)


@pytest.fixture(scope="session")
def rsa_key() -> Any:
    """The provider's signing key."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def other_rsa_key() -> Any:
    """A key the provider never published."""
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture
def discovery_bytes() -> bytes:
    return json.dumps(
        {
            "issuer": ISSUER,
            "authorization_endpoint": AUTH_URL,
            "token_endpoint": TOKEN_URL,
            "jwks_uri": JWKS_URL,
            "response_types_supported": ["code"],
        }
    ).encode("utf-8")


@pytest.fixture
def jwks_bytes(rsa_key: Any) -> bytes:
    public = rsa_key.as_dict(is_private=False)
    public.update({"use": "sig", "alg": "RS256"})
    return json.dumps({"keys": [public]}).encode("utf-8")


@pytest.fixture
def make_id_token(rsa_key: Any) -> Callable[..., str]:
    """Factory for signed ID tokens; keyword arguments override the default claims."""

    def _make(key: Any = None, **overrides: Any) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "110169484474386276334",
            "email": "jane@example.com",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        signing_key = key if key is not None else rsa_key
        return jwt.encode({"alg": "RS256", "kid": signing_key.thumbprint()}, claims, signing_key).decode("utf-8")

    return _make


@pytest.fixture
def make_token_response(make_id_token: Callable[..., str]) -> Callable[..., bytes]:
    def _make(id_token: str | None = None, refresh_token: str | None = "1//refresh", **claims: Any) -> bytes:
        body: dict[str, Any] = {
            "access_token": "ya29.access",
            "expires_in": 3599,
            "id_token": id_token if id_token is not None else make_id_token(**claims),
            "scope": "openid profile email",
            "token_type": "Bearer",
        }
        if refresh_token is not None:
            body["refresh_token"] = refresh_token
        return json.dumps(body).encode("utf-8")

    return _make


@pytest.fixture
def sso_config() -> SsoConfig:
    return SsoConfig(
        client_id=CLIENT_ID,
        client_secret="s3cr3t",
        redirect_uri=REDIRECT_URI,
        project_id="coreason-test",
        discovery_doc_url=DISCOVERY_URL,
        auth_uri=AUTH_URL,
        token_uri=TOKEN_URL,
    )
