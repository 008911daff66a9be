# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sso

from collections.abc import Callable
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest
from conftest import CLIENT_ID, ISSUER, REDIRECT_URI, TOKEN_URL
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode, Tracer
from pydantic import SecretStr

from coreason_sso.exceptions import IssuerMismatchError, UnexpectedStatusError
from coreason_sso.models import Credentials, KeySet, Token, utcnow
from coreason_sso.token_exchanger import TokenExchanger
from coreason_sso.utils.pii import anonymize
from coreason_sso.validator import TokenValidator


@pytest.fixture
def telemetry_setup() -> tuple[InMemorySpanExporter, Tracer]:
    """Sets up an OpenTelemetry tracer with an in-memory exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter, provider.get_tracer("test_tracer")


def fresh_token(id_token: str) -> Token:
    return Token(id_token=id_token, expires_in=3599, expires_at=utcnow() + timedelta(seconds=3599))


def test_validate_success_span(
    telemetry_setup: tuple[InMemorySpanExporter, Tracer], jwks_bytes: bytes, make_id_token: Callable[..., str]
) -> None:
    exporter, tracer = telemetry_setup
    salt = SecretStr("test-salt")

    with patch("coreason_sso.validator.tracer", tracer):
        TokenValidator(CLIENT_ID, pii_salt=salt).validate(
            fresh_token(make_id_token(sub="user123")), KeySet.from_bytes(jwks_bytes), ISSUER
        )

    (span,) = exporter.get_finished_spans()
    assert span.name == "validate_token"
    assert span.status.status_code == StatusCode.OK
    assert span.attributes is not None
    # Only the salted hash reaches the trace
    assert span.attributes["enduser.id"] == anonymize("user123", salt)


def test_validate_failure_span(
    telemetry_setup: tuple[InMemorySpanExporter, Tracer], jwks_bytes: bytes, make_id_token: Callable[..., str]
) -> None:
    exporter, tracer = telemetry_setup

    with patch("coreason_sso.validator.tracer", tracer), pytest.raises(IssuerMismatchError):
        TokenValidator(CLIENT_ID).validate(
            fresh_token(make_id_token(iss="https://evil.example.com")), KeySet.from_bytes(jwks_bytes), ISSUER
        )

    (span,) = exporter.get_finished_spans()
    assert span.status.status_code == StatusCode.ERROR
    assert any(event.name == "exception" for event in span.events)


@pytest.mark.asyncio
async def test_token_exchange_span(telemetry_setup: tuple[InMemorySpanExporter, Tracer]) -> None:
    exporter, tracer = telemetry_setup
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom")))
    exchanger = TokenExchanger(
        client,
        Credentials(client_id=CLIENT_ID, client_secret=SecretStr("s3cr3t"), redirect_uri=REDIRECT_URI),
        TOKEN_URL,
        retries=1,
    )

    with patch("coreason_sso.token_exchanger.tracer", tracer), pytest.raises(UnexpectedStatusError):
        await exchanger.refresh(Token(access_token="at", refresh_token="1//refresh"))

    (span,) = exporter.get_finished_spans()
    assert span.name == "token_exchange"
    assert span.attributes is not None
    assert span.attributes["oauth.grant_type"] == "refresh_token"
    assert span.status.status_code == StatusCode.ERROR
