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
Anti-forgery state and anti-replay nonce values for the authorization request.
"""

import hmac
from urllib.parse import quote_plus, unquote_plus

from authlib.common.security import generate_token

from coreason_sso.exceptions import InvalidStateError, StateMismatchError

__all__ = ["MIN_STATE_LENGTH", "new_nonce", "new_state", "new_state_with", "verify_state"]

# Anything shorter was truncated or forged, do not bother comparing.
MIN_STATE_LENGTH = 30

TOKEN_LENGTH = 48


def new_state() -> str:
    """Generates an anti-forgery unique session token."""
    return generate_token(TOKEN_LENGTH)


def new_state_with(uri: str) -> str:
    """
    Generates an anti-forgery unique session token bound to the URI needed
    to recover the context when the user returns to the application.

    Returns:
        str: The URL-escaped state, safe to embed in the auth link as is.
    """
    return quote_plus(f"security_token={new_state()}url={uri}")


def new_nonce() -> str:
    """A random value that enables replay protection."""
    return generate_token(TOKEN_LENGTH)


def verify_state(returned: str, expected: str) -> None:
    """
    Verifies the state returned by the provider matches the one sent with the auth link.

    Args:
        returned: The state echoed back on the callback (already URL-decoded by the web layer).
        expected: The state stored when the link was built (URL-escaped).

    Raises:
        InvalidStateError: If either value is too short to be a real state.
        StateMismatchError: If the values differ.
    """
    if len(returned) < MIN_STATE_LENGTH or len(expected) < MIN_STATE_LENGTH:
        raise InvalidStateError("invalid state, the login must be restarted")

    if not hmac.compare_digest(returned.encode("utf-8"), unquote_plus(expected).encode("utf-8")):
        raise StateMismatchError("state mismatch, possible request forgery")
