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
Device fingerprints derived from the browser's user-agent string.
"""

import uuid

from user_agents import parse

from coreason_sso.models import ParsedUserAgent

__all__ = ["device_id", "parse_user_agent", "same_fingerprint"]


def device_id(user_agent: str) -> str:
    """
    Content-addressed device ID: the same user-agent string always maps to the same ID,
    so a returning browser is recognized without a server-issued cookie.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_OID, user_agent))


def parse_user_agent(user_agent: str) -> ParsedUserAgent:
    ua = parse(user_agent)
    return ParsedUserAgent(
        raw=user_agent,
        name=ua.browser.family,
        version=ua.browser.version_string,
        os=ua.os.family,
        os_version=ua.os.version_string,
        device=ua.device.family,
        mobile=ua.is_mobile,
        tablet=ua.is_tablet,
        desktop=ua.is_pc,
        bot=ua.is_bot,
    )


def same_fingerprint(stored: ParsedUserAgent, presented: ParsedUserAgent) -> bool:
    """
    Compares device family, OS version and browser name.
    Browser version and the raw string are not part of the fingerprint.
    """
    return (
        stored.device == presented.device
        and stored.os_version == presented.os_version
        and stored.name == presented.name
    )
