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
SsoManager component for wiring the shared pieces and handing out per-request providers.
"""

from typing import TYPE_CHECKING, Any

import httpx

from coreason_sso.config import SsoConfig
from coreason_sso.google import GoogleProvider
from coreason_sso.key_cache import KeySetCache
from coreason_sso.registry import LoginRegistry
from coreason_sso.storage import BlobStore, SessionStore
from coreason_sso.token_exchanger import TokenExchanger
from coreason_sso.transport import build_client
from coreason_sso.utils.logger import component_logger
from coreason_sso.validator import TokenValidator

if TYPE_CHECKING:
    from loguru import Logger


class SsoManager:
    """
    Async implementation of the SSO core.
    Handles resources via async context manager.

    The key cache, validator, exchanger and registry hold no per-user state
    and are shared; every request gets its own provider from `new_provider`.
    """

    def __init__(
        self,
        config: SsoConfig,
        store: BlobStore,
        client: httpx.AsyncClient | None = None,
        log: "Logger | None" = None,
    ) -> None:
        """
        Initialize the SsoManager.

        Args:
            config: The configuration object.
            store: Blob store for cached provider metadata and login records.
            client: External async client (optional). If not provided, one is
                created with the configured timeout and closed on exit.
            log: Logger handed to every component. Defaults to the package logger.
        """
        self.config = config
        self.store = store
        self._log = log
        self.log = component_logger("sso_manager", log)

        self._internal_client = client is None
        self._client = client if client is not None else build_client(config.http_timeout)

        self.key_cache = KeySetCache(
            store,
            self._client,
            config.discovery_doc_url,
            prefix=config.storage_prefix,
            retries=config.retry_budget,
            refresh_cooldown=config.refresh_cooldown,
            log=log,
        )
        self.validator = TokenValidator(
            config.client_id,
            hosted_domain=config.hosted_domain,
            allowed_algorithms=config.allowed_algorithms,
            pii_salt=config.pii_salt,
            log=log,
        )
        self.exchanger = TokenExchanger(
            self._client,
            config.credentials,
            config.token_uri,
            retries=config.retry_budget,
            log=log,
        )
        self.registry = LoginRegistry(
            store,
            prefix=config.storage_prefix,
            session_policy=config.session_mismatch_policy,
            pii_salt=config.pii_salt,
            log=log,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def __aenter__(self) -> "SsoManager":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    def new_provider(self, session: SessionStore | None = None) -> GoogleProvider:
        """
        Returns a provider for one request.

        Args:
            session: The browser's session; flow state is restored from and saved to it.
        """
        return GoogleProvider(
            project_id=self.config.project_id,
            auth_uri=self.config.auth_uri,
            credentials=self.config.credentials,
            key_cache=self.key_cache,
            exchanger=self.exchanger,
            validator=self.validator,
            registry=self.registry,
            scopes=self.config.scopes,
            hosted_domain=self.config.hosted_domain,
            enforce_nonce=self.config.enforce_nonce,
            session=session,
            log=self._log,
        )

    async def warm_up(self) -> None:
        """
        Loads the discovery document and key set ahead of the first login.

        Raises:
            NoKeySetAvailableError: If neither the cache nor the provider can supply them.
        """
        await self.key_cache.load_key_set()
        self.log.info("Provider metadata loaded")
