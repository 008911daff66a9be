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
The interface every OIDC provider variant implements.
"""

from typing import Protocol, runtime_checkable

# Session store keys, one per provider variant.
SESSION_KEY_GOOGLE = "__gp__"


@runtime_checkable
class OIDCProvider(Protocol):
    """Protocol for an OpenID Connect identity provider the application delegates login to."""

    @property
    def name(self) -> str:
        """Name of the provider."""
        ...

    @property
    def application(self) -> str:
        """ID of the OIDC application registered with the provider."""
        ...

    def build_auth_link(self, login_hint: str = "") -> str:
        """
        A link that, when followed, sends the browser to where the user can
        consent to authenticate with the provider.
        """
        ...

    def client_id(self) -> str:
        """An ID unique to the authenticated user, stable across email changes."""
        ...

    def client_email(self) -> str:
        """Address of the user that is logged in."""
        ...

    def sign_out(self) -> None:
        """Forgets the authentication, including anything kept in the session."""
        ...
