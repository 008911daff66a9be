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
LoginRegistry component: per-account login records and the devices recognized for them.
"""

from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import anyio
from pydantic import SecretStr

from coreason_sso.config import SessionMismatchPolicy
from coreason_sso.device import device_id as make_device_id
from coreason_sso.device import parse_user_agent, same_fingerprint
from coreason_sso.exceptions import (
    AccountNotFoundError,
    DeviceNotFoundError,
    LoginRegistryError,
    ReauthenticationRequiredError,
    SessionMismatchError,
    StorageError,
    TamperingSuspectedError,
)
from coreason_sso.models import DeviceRecord, LoginRecord, utcnow
from coreason_sso.storage import BlobStore
from coreason_sso.utils.logger import component_logger
from coreason_sso.utils.pii import anonymize

if TYPE_CHECKING:
    from loguru import Logger

LOGIN_DIR = "logins"


class LoginRegistry:
    """
    Persists one LoginRecord per account and matches incoming device fingerprints against it.

    Records are treated as values: every change produces a new record which
    is written back whole. Read-modify-write cycles for one account are
    serialized by a per-account lock.

    Attributes:
        prefix (str): Prefix for the storage keys.
        session_policy (SessionMismatchPolicy): What to do when a known device
            presents a different session ID.
    """

    def __init__(
        self,
        store: BlobStore,
        prefix: str = "",
        session_policy: SessionMismatchPolicy = SessionMismatchPolicy.ACCEPT,
        pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt"),
        log: "Logger | None" = None,
    ) -> None:
        self.store = store
        self.prefix = prefix
        self.session_policy = session_policy
        self.pii_salt = pii_salt
        self.log = component_logger("login_registry", log)
        self._locks: dict[str, anyio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @asynccontextmanager
    async def _account_lock(self, account_id: str) -> AsyncIterator[None]:
        """Per-account lock, dropped once no task holds or waits on it."""
        lock = self._locks.setdefault(account_id, anyio.Lock())
        self._lock_users[account_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[account_id] -= 1
            if not self._lock_users[account_id]:
                del self._lock_users[account_id]
                del self._locks[account_id]

    def storage_key(self, account_id: str) -> str:
        """A key safe to use as a filename for the account's login record."""
        if not account_id or "/" in account_id or "\\" in account_id or account_id in (".", ".."):
            raise LoginRegistryError("invalid account ID")
        return f"{self.prefix}{LOGIN_DIR}/{account_id}.json"

    async def load_login(self, account_id: str) -> LoginRecord:
        """
        Loads the login record of an account.

        Raises:
            AccountNotFoundError: If the record cannot be read (including when it does not exist).
            DecodeError: If the record exists but is corrupt.
        """
        key = self.storage_key(account_id)
        try:
            data = await self.store.load(key)
        except (StorageError, OSError) as e:
            raise AccountNotFoundError(account_id) from e

        return LoginRecord.from_json(data)

    async def save_login(self, record: LoginRecord) -> None:
        """
        Writes the whole record, replacing the previous one.

        Raises:
            StorageError: If the record cannot be written.
        """
        await self.store.save(self.storage_key(record.account_id), record.to_json())

    async def register_login(
        self,
        account_id: str,
        email: str,
        refresh_token: str,
        session_id: str,
        user_agent: str,
    ) -> LoginRecord:
        """
        Records a login from a new device.

        This is the only place a device's user agent is set. If the account
        already has a record, the device is added to it; a device that is
        already known keeps its registered user agent.

        Returns:
            LoginRecord: The saved record.
        """
        device = DeviceRecord(
            id=make_device_id(user_agent),
            session_id=session_id,
            user_agent=parse_user_agent(user_agent),
        )

        async with self._account_lock(account_id):
            try:
                existing: LoginRecord | None = await self.load_login(account_id)
            except AccountNotFoundError:
                existing = None

            devices = dict(existing.devices) if existing else {}
            known = devices.get(device.id)
            if known is not None:
                devices[device.id] = known.model_copy(update={"session_id": session_id, "last_activity": utcnow()})
            else:
                devices[device.id] = device

            if not refresh_token and existing is not None:
                refresh_secret = existing.refresh_token
            else:
                refresh_secret = SecretStr(refresh_token)

            record = LoginRecord(
                account_id=account_id,
                email=email,
                refresh_token=refresh_secret,
                devices=devices,
            )
            await self.save_login(record)

        self.log.info(f"Registered device {device.id} for account {anonymize(account_id, self.pii_salt)}")
        return record

    def lookup_device(self, record: LoginRecord, device_id: str, session_id: str, user_agent: str) -> DeviceRecord:
        """
        Searches for the device in the login record.

        Raises:
            DeviceNotFoundError: If the device is unknown; treat it as a new device.
            TamperingSuspectedError: If the device is known but the user agent
                fingerprint (device, OS version, browser) differs.
            ReauthenticationRequiredError, SessionMismatchError: If the session
                differs and the session policy does not accept it.
        """
        device = record.devices.get(device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)

        if not same_fingerprint(device.user_agent, parse_user_agent(user_agent)):
            self.log.warning(f"Device {device_id} presented a different user agent")
            raise TamperingSuspectedError("device has bad signature, tampering suspected")

        if session_id != device.session_id:
            self._apply_session_policy(device_id)

        return device

    def _apply_session_policy(self, device_id: str) -> None:
        if self.session_policy is SessionMismatchPolicy.REJECT:
            raise SessionMismatchError(f"device {device_id} presented an unknown session")
        if self.session_policy is SessionMismatchPolicy.REAUTHENTICATE:
            raise ReauthenticationRequiredError(f"device {device_id} must authenticate again")
        self.log.info(f"Device {device_id} presented a new session, accepted by policy")

    async def update_login(
        self,
        account_id: str,
        device_id: str,
        session_id: str,
        user_agent: str,
        *,
        email: str | None = None,
        refresh_token: str | None = None,
    ) -> LoginRecord:
        """
        Refreshes the account fields and the device's session and last activity.

        The device's registered user agent is never changed here, whatever
        `user_agent` says.

        Raises:
            AccountNotFoundError: If the account has no record.
            DeviceNotFoundError: If the device is not part of the record.

        Returns:
            LoginRecord: The saved record.
        """
        async with self._account_lock(account_id):
            record = await self.load_login(account_id)
            device = record.devices.get(device_id)
            if device is None:
                raise DeviceNotFoundError(device_id)

            if not same_fingerprint(device.user_agent, parse_user_agent(user_agent)):
                self.log.warning(f"Device {device_id} updated with a different user agent, keeping the registered one")

            updates: dict[str, Any] = {
                "devices": {
                    **record.devices,
                    device_id: device.model_copy(update={"session_id": session_id, "last_activity": utcnow()}),
                }
            }
            if email:
                updates["email"] = email
            if refresh_token:
                updates["refresh_token"] = SecretStr(refresh_token)

            record = record.model_copy(update=updates)
            await self.save_login(record)

        self.log.debug(f"Updated login of account {anonymize(account_id, self.pii_salt)}")
        return record
