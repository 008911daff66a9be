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
KeySetCache component for loading and caching the provider's discovery document and JWKS.
"""

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

import anyio
import httpx

from coreason_sso.exceptions import (
    ConfigMissingError,
    CoreasonSsoError,
    DecodeError,
    NoKeySetAvailableError,
    StorageError,
)
from coreason_sso.models import DiscoveryDocument, KeySet
from coreason_sso.storage import BlobStore
from coreason_sso.transport import send_with_retry
from coreason_sso.utils.logger import component_logger

if TYPE_CHECKING:
    from loguru import Logger

T = TypeVar("T", DiscoveryDocument, KeySet)

KEY_DISCOVERY_DOC = "google_discovery_document"
KEY_CERTIFICATE = "google_certificate"


class KeySetCache:
    """
    Loads the provider's discovery document and signing keys, preferring the
    persisted cache and falling back to the network, then re-persisting.

    Safe to share across requests: it only holds provider metadata.

    Attributes:
        discovery_url (str): The provider's well-known discovery URL.
        prefix (str): Prefix for the storage keys.
    """

    def __init__(
        self,
        store: BlobStore,
        client: httpx.AsyncClient,
        discovery_url: str,
        prefix: str = "",
        retries: int = 3,
        refresh_cooldown: float = 30.0,
        log: "Logger | None" = None,
    ) -> None:
        """
        Initialize the KeySetCache.

        Args:
            store: Blob store holding the cached documents.
            client: The async HTTP client to use for requests.
            discovery_url: The OIDC discovery URL.
            prefix: Prefix for the storage keys.
            retries: Attempts per fetch on unexpected status. Defaults to 3.
            refresh_cooldown: Minimum time in seconds between forced key refreshes. Defaults to 30.0.
            log: Logger to use. Defaults to the package logger.
        """
        self.store = store
        self.client = client
        self.discovery_url = discovery_url
        self.prefix = prefix
        self.retries = retries
        self.refresh_cooldown = refresh_cooldown
        self.log = component_logger("key_cache", log)
        self._discovery: DiscoveryDocument | None = None
        self._key_set: KeySet | None = None
        self._last_fetch: float | None = None
        self._lock: anyio.Lock | None = None

    @property
    def discovery_key(self) -> str:
        return f"{self.prefix}{KEY_DISCOVERY_DOC}"

    @property
    def key_set_key(self) -> str:
        return f"{self.prefix}{KEY_CERTIFICATE}"

    @property
    def discovery_document(self) -> DiscoveryDocument | None:
        """The discovery document loaded so far, if any."""
        return self._discovery

    @property
    def key_set(self) -> KeySet | None:
        """The key set loaded so far, if any."""
        return self._key_set

    def _get_lock(self) -> anyio.Lock:
        if self._lock is None:
            self._lock = anyio.Lock()
        return self._lock

    async def _try_load_from_cache(self, key: str, decode: Callable[[bytes], T]) -> T | None:
        """
        Phase one: the persisted copy.

        Returns:
            The decoded document, or None on a miss or a corrupt entry.
        """
        try:
            data = await self.store.load(key)
        except (StorageError, OSError) as e:
            self.log.warning(f"Cache miss for {key}: {e}")
            return None

        try:
            return decode(data)
        except DecodeError as e:
            self.log.error(f"Cached {key} is corrupt, downloading it again: {e}")
            return None

    async def _fetch_and_cache(self, key: str, url: str, decode: Callable[[bytes], T]) -> T:
        """
        Phase two: download from the provider and persist.

        A failing cache write is logged, never fatal; a stale cache must not
        block authentication.

        Raises:
            NoKeySetAvailableError: If the document cannot be downloaded or decoded.
        """
        self.log.info(f"Downloading {key} from {url}")
        try:
            response = await send_with_retry(self.client, "GET", url, retries=self.retries, log=self.log)
            document = decode(response.content)
        except CoreasonSsoError as e:
            raise NoKeySetAvailableError(f"cannot load {key} from {url}: {e}") from e

        try:
            await self.store.save(key, document.raw_bytes)
        except (StorageError, OSError) as e:
            self.log.warning(f"Cannot cache {key}: {e}")

        return document

    async def load_discovery_document(self) -> DiscoveryDocument:
        """
        Returns the discovery document: memory, then cache, then network.

        Raises:
            ConfigMissingError: If no discovery URL is configured.
            NoKeySetAvailableError: If the cache misses and the download fails.
        """
        if self._discovery is not None:
            return self._discovery

        async with self._get_lock():
            if self._discovery is None:
                self._discovery = await self._load_discovery_document()
            return self._discovery

    async def _load_discovery_document(self) -> DiscoveryDocument:
        cached = await self._try_load_from_cache(self.discovery_key, DiscoveryDocument.from_bytes)
        if cached is not None:
            return cached

        if not self.discovery_url:
            raise ConfigMissingError("discovery document URL is not configured")

        return await self._fetch_and_cache(self.discovery_key, self.discovery_url, DiscoveryDocument.from_bytes)

    async def load_key_set(self, force_refresh: bool = False) -> KeySet:
        """
        Returns the signing keys: memory, then cache, then the discovery document's jwks_uri.

        Args:
            force_refresh: Skip memory and cache and download the keys (key
                rotation). Ignored within `refresh_cooldown` seconds of the last download.

        Raises:
            NoKeySetAvailableError: If no usable key set can be obtained.
        """
        if not force_refresh and self._key_set is not None:
            return self._key_set

        discovery = await self.load_discovery_document()

        async with self._get_lock():
            return await self._load_key_set_critical_section(discovery, force_refresh)

    async def _load_key_set_critical_section(self, discovery: DiscoveryDocument, force_refresh: bool) -> KeySet:
        """
        Must be called while holding the lock.
        """
        if self._key_set is not None:
            if not force_refresh:
                return self._key_set
            if self._last_fetch is not None and time.monotonic() - self._last_fetch < self.refresh_cooldown:
                self.log.warning("Key set refresh cooldown active. Returning cached keys despite force_refresh.")
                return self._key_set

        if not force_refresh:
            cached = await self._try_load_from_cache(self.key_set_key, KeySet.from_bytes)
            if cached is not None:
                self._key_set = cached
                return cached

        self._key_set = await self._fetch_and_cache(self.key_set_key, discovery.jwks_uri, KeySet.from_bytes)
        self._last_fetch = time.monotonic()
        return self._key_set
