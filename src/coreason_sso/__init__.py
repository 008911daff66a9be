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
OpenID Connect relying-party core: auth links, code exchange, ID token validation and device-bound login records.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import SessionMismatchPolicy, SsoConfig, load_config
from .exceptions import CoreasonSsoError, InvalidTokenError
from .google import AuthState, GoogleProvider
from .key_cache import KeySetCache
from .manager import SsoManager
from .models import DeviceRecord, LoginRecord, Token
from .provider import OIDCProvider
from .registry import LoginRegistry
from .storage import BlobStore, LocalBlobStore, MemoryBlobStore, MemorySessionStore, SessionStore
from .token_exchanger import TokenExchanger
from .validator import TokenValidator

__all__ = [
    "AuthState",
    "BlobStore",
    "CoreasonSsoError",
    "DeviceRecord",
    "GoogleProvider",
    "InvalidTokenError",
    "KeySetCache",
    "LocalBlobStore",
    "LoginRecord",
    "LoginRegistry",
    "MemoryBlobStore",
    "MemorySessionStore",
    "OIDCProvider",
    "SessionMismatchPolicy",
    "SessionStore",
    "SsoConfig",
    "SsoManager",
    "Token",
    "TokenExchanger",
    "TokenValidator",
    "load_config",
]
