# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

import hashlib
import hmac

from pydantic import SecretStr

__all__ = ["anonymize"]


def anonymize(value: str, salt: SecretStr) -> str:
    """
    Anonymizes a value (account ID, email) using HMAC-SHA256 with the configured salt.

    Args:
        value: The value to anonymize.
        salt: The PII salt.

    Returns:
        str: The anonymized hex digest, safe to log.
    """
    return hmac.new(
        salt.get_secret_value().encode("utf-8"),
        value.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
