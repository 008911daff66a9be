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
HTTP helpers for talking to the identity provider.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_sso.exceptions import NetworkError, UnexpectedStatusError
from coreason_sso.utils.logger import logger

if TYPE_CHECKING:
    from loguru import Logger

__all__ = ["build_client", "send_with_retry"]


def build_client(timeout: float) -> httpx.AsyncClient:
    """
    Creates the async HTTP client used for all provider calls.

    Every request is bounded by `timeout` seconds, and the client is
    instrumented for distributed tracing.
    """
    client = httpx.AsyncClient(timeout=timeout)
    HTTPXClientInstrumentor().instrument_client(client)
    return client


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    data: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
    expected_status: int = 200,
    retries: int = 3,
    log: "Logger | None" = None,
) -> httpx.Response:
    """
    Makes an HTTP request, retrying up to `retries` times on an unexpected status.

    Only an exact `expected_status` is accepted. Any other response has its
    body drained and logged before the next attempt. Transport failures are
    NOT retried.

    Returns:
        httpx.Response: The accepted response, body already read.

    Raises:
        NetworkError: If the transport fails (connection refused, timeout).
        UnexpectedStatusError: If the last attempt still returned an unexpected status.
    """
    log = log or logger
    request = client.build_request(method, url, data=data, headers=headers)

    for attempt in range(1, retries + 1):
        try:
            response = await client.send(request)
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

        if response.status_code == expected_status:
            return response

        body = response.text
        await response.aclose()
        if attempt == retries:
            raise UnexpectedStatusError(response.status_code, body)

        log.warning(f"Attempt {attempt}/{retries} to {url} got {response.status_code}: {body}")

    # range(1, retries + 1) is empty only for retries < 1
    raise ValueError("retries must be at least 1")
