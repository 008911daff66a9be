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
Storage collaborators: persistent blobs and per-browser sessions.

The protocols are what the core depends on. The in-memory and local
filesystem implementations are reference stores, suitable for tests and
single-node deployments.
"""

import os
import uuid
from pathlib import Path, PurePosixPath
from typing import Protocol

import anyio

from coreason_sso.exceptions import BlobNotFoundError, StorageError


class BlobStore(Protocol):
    """Protocol for persistent blob storage (cached provider metadata, login records)."""

    async def load(self, key: str) -> bytes:
        """
        Returns the data stored under `key`.
        Raises BlobNotFoundError if nothing is stored there, StorageError on other failures.
        """
        ...

    async def save(self, key: str, data: bytes) -> None:
        """Stores `data` under `key`, replacing any previous value. Raises StorageError."""
        ...


class SessionStore(Protocol):
    """Protocol for a session manager. Data set here must persist across HTTP requests."""

    def get(self, key: str) -> bytes:
        """Returns data previously stored, or empty bytes."""
        ...

    def set(self, key: str, value: bytes) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryBlobStore:
    """
    In-memory implementation of BlobStore.
    Not suitable for distributed systems.
    """

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def load(self, key: str) -> bytes:
        try:
            return self._blobs[key]
        except KeyError:
            raise BlobNotFoundError(key) from None

    async def save(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)


class LocalBlobStore:
    """
    Stores blobs as files under a root directory.

    Keys are relative POSIX paths (e.g. `logins/123.json`). Parent directories
    are not created; saving into a missing directory is an error. Writes go to
    a temporary file that then replaces the target, so readers never observe a
    partially written record.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise StorageError(f"storage directory {self.root} does not exist")

    def _path(self, key: str) -> anyio.Path:
        relative = PurePosixPath(key)
        if not key or relative.is_absolute() or ".." in relative.parts:
            raise StorageError(f"invalid storage key {key!r}")
        return anyio.Path(self.root.joinpath(*relative.parts))

    async def load(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFoundError(key) from None
        except OSError as e:
            raise StorageError(f"cannot read {key}: {e}") from e

    async def save(self, key: str, data: bytes) -> None:
        path = self._path(key)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            await tmp.write_bytes(data)
            await tmp.replace(path)
        except OSError as e:
            raise StorageError(f"cannot write {key}: {e}") from e
        finally:
            if await tmp.exists():
                await tmp.unlink()


class MemorySessionStore:
    """In-memory implementation of SessionStore."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes:
        return self._data.get(key, b"")

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)
