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
GoogleProvider component: drives one user's authorization-code flow against Google.
"""

from enum import StrEnum
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlencode

from pydantic import ValidationError

from coreason_sso.device import device_id as make_device_id
from coreason_sso.exceptions import (
    AccountNotFoundError,
    ConfigMissingError,
    DeviceNotFoundError,
    InvalidTokenError,
    MissingTokenError,
    SignatureInvalidError,
)
from coreason_sso.key_cache import KeySetCache
from coreason_sso.models import Credentials, FlowState, LoginRecord, Token
from coreason_sso.provider import SESSION_KEY_GOOGLE
from coreason_sso.registry import LoginRegistry
from coreason_sso.state import new_nonce, new_state, new_state_with
from coreason_sso.storage import SessionStore
from coreason_sso.token_exchanger import TokenExchanger
from coreason_sso.utils.logger import component_logger
from coreason_sso.validator import TokenValidator, verify_nonce

if TYPE_CHECKING:
    from loguru import Logger


class AuthState(StrEnum):
    """Where a provider is in the login flow."""

    UNAUTHENTICATED = "unauthenticated"
    LINK_ISSUED = "link_issued"
    CODE_RECEIVED = "code_received"
    TOKEN_EXCHANGED = "token_exchanged"
    TOKEN_VALIDATED = "token_validated"
    AUTHENTICATED = "authenticated"


class GoogleProvider:
    """
    Google OpenID Connect provider for one user.

    Create one per request (see `SsoManager.new_provider`); the token and flow
    state are per user. When a session store is attached, the state and nonce
    of the auth link, and later the token, are kept there so the callback
    request can pick the flow up.

    Any failure while completing a login puts the provider back to
    UNAUTHENTICATED with no token.
    """

    def __init__(
        self,
        *,
        project_id: str,
        auth_uri: str,
        credentials: Credentials,
        key_cache: KeySetCache,
        exchanger: TokenExchanger,
        validator: TokenValidator,
        registry: LoginRegistry,
        scopes: list[str] | None = None,
        hosted_domain: str | None = None,
        enforce_nonce: bool = False,
        session: SessionStore | None = None,
        log: "Logger | None" = None,
    ) -> None:
        self.project_id = project_id
        self.auth_uri = auth_uri
        self.credentials = credentials
        self.key_cache = key_cache
        self.exchanger = exchanger
        self.validator = validator
        self.registry = registry
        self.scopes = scopes or ["openid", "profile", "email"]
        self.hosted_domain = hosted_domain
        self.enforce_nonce = enforce_nonce
        self.session = session
        self.log = component_logger("google_provider", log)

        self._flow = FlowState()
        self._auth_state = AuthState.UNAUTHENTICATED
        self._restore()

    @property
    def name(self) -> str:
        return "google"

    @property
    def application(self) -> str:
        return self.project_id

    @property
    def auth_state(self) -> AuthState:
        return self._auth_state

    @property
    def token(self) -> Token | None:
        return self._flow.token

    @property
    def state(self) -> str:
        """The anti-forgery state embedded in the last auth link."""
        return self._flow.state

    @property
    def nonce(self) -> str:
        return self._flow.nonce

    def _restore(self) -> None:
        if self.session is None:
            return

        data = self.session.get(SESSION_KEY_GOOGLE)
        if not data:
            return

        try:
            self._flow = FlowState.model_validate_json(data)
        except ValidationError as e:
            self.log.warning(f"Discarding unreadable session data: {e}")
            self.session.remove(SESSION_KEY_GOOGLE)
            return

        if self._flow.token is not None:
            self._auth_state = AuthState.AUTHENTICATED
        elif self._flow.state:
            self._auth_state = AuthState.LINK_ISSUED

    def _persist(self) -> None:
        if self.session is not None:
            self.session.set(SESSION_KEY_GOOGLE, self._flow.model_dump_json().encode("utf-8"))

    def _reset(self) -> None:
        self._flow = FlowState()
        self._auth_state = AuthState.UNAUTHENTICATED
        if self.session is not None:
            self.session.remove(SESSION_KEY_GOOGLE)

    def _authenticate(self) -> None:
        self._auth_state = AuthState.AUTHENTICATED
        self._persist()

    def build_auth_link(self, login_hint: str = "", return_to: str = "") -> str:
        """
        Generates the link that sends the user to Google to consent.

        Offline access is requested so a refresh token is returned along with
        the ID token. A fresh state and nonce are generated for every link.

        Args:
            login_hint: Email address or `sub` to pre-select the account.
            return_to: Where to bring the user back to after login; bound into the state.

        Raises:
            ConfigMissingError: If no authorization endpoint is configured.
        """
        if not self.auth_uri:
            raise ConfigMissingError("authorization endpoint is not configured")

        state = new_state_with(return_to) if return_to else new_state()
        nonce = new_nonce()

        params = urlencode(
            {
                "response_type": "code",
                "scope": " ".join(self.scopes),
                "redirect_uri": self.credentials.redirect_uri,
                "client_id": self.credentials.client_id,
            },
            quote_via=quote,
        )
        # state is already URL-escaped
        link = f"{self.auth_uri}?{params}&state={state}&nonce={nonce}&access_type=offline&prompt=consent"

        if login_hint:
            link += f"&login_hint={quote(login_hint, safe='')}"
        if self.hosted_domain:
            link += f"&hd={quote(self.hosted_domain, safe='')}"

        self._flow = FlowState(state=state, nonce=nonce)
        self._auth_state = AuthState.LINK_ISSUED
        self._persist()

        self.log.debug(f"Auth link issued for {self.auth_uri}")
        return link

    async def _validate(self, token: Token) -> dict[str, Any]:
        discovery = await self.key_cache.load_discovery_document()
        key_set = await self.key_cache.load_key_set()
        try:
            return self.validator.validate(token, key_set, discovery.issuer)
        except SignatureInvalidError:
            self.log.info("Signature did not verify with the cached keys, refreshing the key set")
            key_set = await self.key_cache.load_key_set(force_refresh=True)
            return self.validator.validate(token, key_set, discovery.issuer)

    async def _exchange(self, state: str, code: str) -> Token:
        """Runs the flow up to TOKEN_VALIDATED. Resets on any failure."""
        self._auth_state = AuthState.CODE_RECEIVED
        try:
            token = await self.exchanger.exchange_code(state, code, expected_state=self._flow.state)
            self._auth_state = AuthState.TOKEN_EXCHANGED

            claims = await self._validate(token)
            if self.enforce_nonce:
                verify_nonce(claims, self._flow.nonce)
        except Exception:
            self._reset()
            raise

        self._flow = self._flow.model_copy(update={"token": token})
        self._auth_state = AuthState.TOKEN_VALIDATED
        return token

    async def exchange_code_for_token(self, state: str, code: str) -> Token:
        """
        Exchanges the authorization code for tokens and validates the ID token.

        Args:
            state: The state returned on the callback.
            code: The authorization code returned on the callback.

        Returns:
            Token: The validated token, also kept by the provider.

        Raises:
            InvalidStateError, StateMismatchError: If the state does not check out.
            InvalidTokenError: Or one of its subclasses, if validation fails.
            NoKeySetAvailableError, NetworkError, UnexpectedStatusError, DecodeError:
                If the provider cannot be reached or answers garbage.
        """
        token = await self._exchange(state, code)
        self._authenticate()
        return token

    async def refresh_token(self) -> Token:
        """
        Gets a new token with the stored refresh token and validates it.

        Raises:
            MissingRefreshTokenError: If no refresh token has been retrieved.
        """
        try:
            token = await self.exchanger.refresh(self._flow.token)
            await self._validate(token)
        except Exception:
            self._reset()
            raise

        self._flow = self._flow.model_copy(update={"token": token})
        self._authenticate()
        return token

    def is_authenticated(self) -> bool:
        """True while a validated token is held and has not expired."""
        token = self._flow.token
        return self._auth_state is AuthState.AUTHENTICATED and token is not None and not token.expired

    def _claims(self) -> dict[str, Any]:
        if self._flow.token is None:
            raise MissingTokenError("not authenticated")
        return self._flow.token.claims

    def client_id(self) -> str:
        """
        The `sub` claim: unique to a Google account even if the user changes
        their email address. Never use the email as the account key.

        Raises:
            MissingTokenError: If no token is held.
            InvalidTokenError: If the ID token has no subject.
        """
        sub = self._claims().get("sub")
        if not isinstance(sub, str) or not sub:
            raise InvalidTokenError("ID token has no subject")
        return sub

    def client_email(self) -> str:
        email = self._claims().get("email", "")
        return email if isinstance(email, str) else ""

    def sign_out(self) -> None:
        self._reset()
        self.log.debug("Signed out")

    async def complete_login(
        self,
        state: str,
        code: str,
        session_id: str,
        user_agent: str,
        device_id: str | None = None,
    ) -> LoginRecord:
        """
        Handles the callback end to end: exchange, validation, then binding the
        session to the device in the login registry.

        A known device is updated; an unknown account or device is registered.

        Args:
            state: The state returned on the callback.
            code: The authorization code returned on the callback.
            session_id: The application's session ID for this browser.
            user_agent: The browser's User-Agent header.
            device_id: The device ID the browser presented, if any. Defaults to
                the ID derived from `user_agent`.

        Returns:
            LoginRecord: The saved login record.

        Raises:
            TamperingSuspectedError: If the device is known under another fingerprint.
            SessionMismatchError, ReauthenticationRequiredError: As decided by the session policy.
            Any error of `exchange_code_for_token`.
        """
        await self._exchange(state, code)
        try:
            record = await self._bind_device(session_id, user_agent, device_id or make_device_id(user_agent))
        except Exception:
            self._reset()
            raise

        self._authenticate()
        return record

    async def _bind_device(self, session_id: str, user_agent: str, device_id: str) -> LoginRecord:
        account_id = self.client_id()
        email = self.client_email()
        refresh_token = self._flow.token.refresh_token if self._flow.token else ""

        try:
            record = await self.registry.load_login(account_id)
            self.registry.lookup_device(record, device_id, session_id, user_agent)
        except (AccountNotFoundError, DeviceNotFoundError) as e:
            self.log.info(f"Registering a new login: {type(e).__name__}")
            return await self.registry.register_login(account_id, email, refresh_token, session_id, user_agent)

        return await self.registry.update_login(
            account_id,
            device_id,
            session_id,
            user_agent,
            email=email,
            refresh_token=refresh_token,
        )

    async def load_login_info(self) -> LoginRecord:
        """
        Loads the login record of the authenticated user.

        Raises:
            AccountNotFoundError: If the user never completed a login.
        """
        return await self.registry.load_login(self.client_id())

    async def register_login_info(self, session_id: str, user_agent: str) -> LoginRecord:
        """Records the authenticated user's login from a new device."""
        refresh_token = self._flow.token.refresh_token if self._flow.token else ""
        return await self.registry.register_login(
            self.client_id(), self.client_email(), refresh_token, session_id, user_agent
        )

    async def update_login_info(self, device_id: str, session_id: str, user_agent: str) -> LoginRecord:
        """Refreshes the authenticated user's login record for a known device."""
        return await self.registry.update_login(
            self.client_id(),
            device_id,
            session_id,
            user_agent,
            email=self.client_email(),
            refresh_token=self._flow.token.refresh_token if self._flow.token else None,
        )
