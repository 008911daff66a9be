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
TokenExchanger component for the authorization-code and refresh-token grants.
"""

from typing import TYPE_CHECKING

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_sso.exceptions import ConfigMissingError, CoreasonSsoError, MissingRefreshTokenError
from coreason_sso.models import Credentials, Token
from coreason_sso.state import verify_state
from coreason_sso.transport import send_with_retry
from coreason_sso.utils.logger import component_logger

if TYPE_CHECKING:
    from loguru import Logger

tracer = trace.get_tracer(__name__)

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class TokenExchanger:
    """
    Exchanges an authorization code, or a refresh token, for tokens at the provider's token endpoint.

    Holds no per-user state; one instance can serve every request.

    Attributes:
        credentials (Credentials | None): The client credentials.
        token_endpoint (str | None): The provider's token endpoint.
        retries (int): Attempts per exchange on unexpected status.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: Credentials | None,
        token_endpoint: str | None,
        retries: int = 3,
        log: "Logger | None" = None,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.token_endpoint = token_endpoint
        self.retries = retries
        self.log = component_logger("token_exchanger", log)

    def _require_config(self) -> tuple[Credentials, str]:
        if self.credentials is None:
            raise ConfigMissingError("client credentials are not configured")
        if not self.token_endpoint:
            raise ConfigMissingError("token endpoint is not configured")
        return self.credentials, self.token_endpoint

    async def _post(self, grant_type: str, form: dict[str, str]) -> Token:
        credentials, endpoint = self._require_config()
        body = {
            **form,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret.get_secret_value(),
            "grant_type": grant_type,
        }

        with tracer.start_as_current_span("token_exchange") as span:
            span.set_attribute("oauth.grant_type", grant_type)
            try:
                response = await send_with_retry(
                    self.client,
                    "POST",
                    endpoint,
                    data=body,
                    headers=FORM_HEADERS,
                    retries=self.retries,
                    log=self.log,
                )
                token = Token.from_response(response.content)
            except CoreasonSsoError as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            span.set_status(Status(StatusCode.OK))

        self.log.debug(f"Token expires in {token.expires_in}s")
        return token

    async def exchange_code(self, state: str, code: str, *, expected_state: str) -> Token:
        """
        Exchanges the authorization code returned on the callback for tokens.

        Args:
            state: The state echoed back by the provider.
            code: The authorization code.
            expected_state: The state embedded in the auth link.

        Returns:
            Token: The decoded token response, not yet validated.

        Raises:
            InvalidStateError: If either state is too short to be genuine.
            StateMismatchError: If the states differ.
            ConfigMissingError: If credentials or the token endpoint are missing.
            NetworkError: On transport failure.
            UnexpectedStatusError: If the retry budget is exhausted.
            DecodeError: If the response is not a token.
        """
        verify_state(state, expected_state)
        credentials, _ = self._require_config()

        return await self._post(
            "authorization_code",
            {"code": code, "redirect_uri": credentials.redirect_uri},
        )

    async def refresh(self, token: Token | None) -> Token:
        """
        Gets a new token using the refresh token of `token`.

        The provider usually omits the refresh token from the response; the
        previous one is then carried over.

        Raises:
            MissingRefreshTokenError: If there is no token or it has no refresh token.
            ConfigMissingError, NetworkError, UnexpectedStatusError, DecodeError: As for exchange_code.
        """
        if token is None or not token.refresh_token:
            raise MissingRefreshTokenError("a refresh token has not been retrieved from the provider")

        fresh = await self._post("refresh_token", {"refresh_token": token.refresh_token})
        if not fresh.refresh_token:
            fresh = fresh.model_copy(update={"refresh_token": token.refresh_token})
        return fresh
