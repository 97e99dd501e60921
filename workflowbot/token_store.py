"""
Per-user encrypted token storage.

Maps a Telegram user id to one encrypted credential blob. Backends:
- JsonFileTokenStore: a local JSON file, rewritten atomically on every change
- CloudflareKVTokenStore: a Cloudflare Workers KV namespace over its REST API
- MemoryTokenStore: in-process dict, for tests and TOKEN_STORE=memory
"""
import asyncio
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

import aiohttp

from .logging_config import get_logger

logger = get_logger("workflowbot.token_store")


class StorageError(Exception):
    """Token store could not be read or written"""
    pass


class TokenStore(ABC):
    """Mapping of user id -> encrypted credential blob."""

    @abstractmethod
    async def get(self, user_id: Union[int, str]) -> Optional[str]:
        """Return the stored blob, or None if the user has none."""

    @abstractmethod
    async def put(self, user_id: Union[int, str], blob: str) -> None:
        """Insert or overwrite the user's blob. Durable once this returns."""

    @abstractmethod
    async def delete(self, user_id: Union[int, str]) -> None:
        """Remove the user's blob. No error if there is none."""

    async def close(self) -> None:
        pass


class MemoryTokenStore(TokenStore):

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, user_id):
        return self._data.get(str(user_id))

    async def put(self, user_id, blob):
        self._data[str(user_id)] = blob

    async def delete(self, user_id):
        self._data.pop(str(user_id), None)


class JsonFileTokenStore(TokenStore):
    """
    JSON file backend.

    File layout is ``{"<user_id>": {"token": "<blob>"}}``. Every mutation is a
    read-modify-write under a lock, written to a temp file in the same
    directory, fsynced, then swapped in with ``os.replace`` so a crash never
    leaves a half-written file and concurrent writers never drop each
    other's entries.
    """

    FILE_MODE = 0o600

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read tokens file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Tokens file {self.path} does not contain a JSON object")
        return data

    def _write(self, data: Dict[str, dict]) -> None:
        directory = self.path.parent
        tmp_path = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, self.FILE_MODE)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise StorageError(f"Failed to write tokens file {self.path}: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError as e:
                    logger.warning(f"Failed to remove temp tokens file {tmp_path}: {e}")

    def _get_sync(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._read().get(key)
        if isinstance(entry, dict):
            return entry.get("token") or None
        # Accept a bare blob as well
        if isinstance(entry, str):
            return entry or None
        return None

    def _put_sync(self, key: str, blob: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = {"token": blob}
            self._write(data)

    def _delete_sync(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key not in data:
                return
            del data[key]
            self._write(data)

    async def get(self, user_id):
        return await asyncio.to_thread(self._get_sync, str(user_id))

    async def put(self, user_id, blob):
        await asyncio.to_thread(self._put_sync, str(user_id), blob)
        logger.debug_with("Stored credential", user_id=str(user_id))

    async def delete(self, user_id):
        await asyncio.to_thread(self._delete_sync, str(user_id))
        logger.debug_with("Deleted credential", user_id=str(user_id))


class CloudflareKVTokenStore(TokenStore):
    """
    Cloudflare Workers KV backend, via the REST API.

    Each user id is its own KV key holding the bare blob, so writes for
    different users never touch each other.
    """
    BASE_URL = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        api_token: str,
        timeout: float = 15.0,
        base_url: Optional[str] = None,
    ):
        self.account_id = account_id
        self.namespace_id = namespace_id
        self.api_token = api_token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self.api_token}"},
                timeout=self.timeout,
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    def _value_url(self, user_id) -> str:
        return (
            f"{self.base_url}/accounts/{self.account_id}"
            f"/storage/kv/namespaces/{self.namespace_id}/values/{user_id}"
        )

    async def _request(self, method: str, user_id, data: Optional[bytes] = None):
        session = await self._get_session()
        try:
            async with session.request(method, self._value_url(user_id), data=data) as response:
                body = await response.text()
                return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageError(f"KV {method} failed: {str(e) or type(e).__name__}") from e

    async def get(self, user_id):
        status, body = await self._request("GET", user_id)
        if status == 404:
            return None
        if status != 200:
            raise StorageError(f"KV GET returned {status}")
        return body or None

    async def put(self, user_id, blob):
        status, _ = await self._request("PUT", user_id, data=blob.encode("utf-8"))
        if status not in (200, 201):
            raise StorageError(f"KV PUT returned {status}")

    async def delete(self, user_id):
        status, _ = await self._request("DELETE", user_id)
        if status not in (200, 204, 404):
            raise StorageError(f"KV DELETE returned {status}")


def create_token_store(settings) -> TokenStore:
    """Build the backend selected by ``settings.token_store``."""
    if settings.token_store == "cloudflare-kv":
        return CloudflareKVTokenStore(
            settings.cf_account_id,
            settings.cf_kv_namespace_id,
            settings.cf_api_token,
            timeout=settings.http_timeout,
        )
    if settings.token_store == "memory":
        logger.warning("Using in-memory token store; tokens are lost on restart")
        return MemoryTokenStore()
    return JsonFileTokenStore(settings.tokens_file)
