import asyncio
import json
import os
import stat
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from workflowbot.config import Settings
from workflowbot.token_store import (
    CloudflareKVTokenStore,
    JsonFileTokenStore,
    MemoryTokenStore,
    StorageError,
    create_token_store,
)


class TestMemoryTokenStore:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        assert await MemoryTokenStore().get(1) is None

    @pytest.mark.asyncio
    async def test_put_overwrites(self):
        store = MemoryTokenStore()
        await store.put(1, "a")
        await store.put("1", "b")
        assert await store.get(1) == "b"

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self):
        store = MemoryTokenStore({"1": "a"})
        await store.delete(1)
        await store.delete(1)
        assert await store.get(1) is None


class TestJsonFileTokenStore:
    @pytest.mark.asyncio
    async def test_missing_file_reads_empty(self, tmp_path):
        store = JsonFileTokenStore(tmp_path / "tokens.json")
        assert await store.get(42) is None

    @pytest.mark.asyncio
    async def test_put_writes_original_layout(self, tmp_path):
        path = tmp_path / "tokens.json"
        store = JsonFileTokenStore(path)
        await store.put(42, "blob-42")

        assert json.loads(path.read_text()) == {"42": {"token": "blob-42"}}
        assert await store.get(42) == "blob-42"

    @pytest.mark.asyncio
    async def test_file_is_owner_only(self, tmp_path):
        path = tmp_path / "tokens.json"
        await JsonFileTokenStore(path).put(1, "blob")
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "tokens.json"
        await JsonFileTokenStore(path).put(1, "blob")
        assert path.exists()

    @pytest.mark.asyncio
    async def test_put_overwrites_single_entry(self, tmp_path):
        store = JsonFileTokenStore(tmp_path / "tokens.json")
        await store.put(1, "old")
        await store.put(2, "other")
        await store.put(1, "new")
        assert await store.get(1) == "new"
        assert await store.get(2) == "other"

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, tmp_path):
        path = tmp_path / "tokens.json"
        store = JsonFileTokenStore(path)
        await store.delete(7)
        assert not path.exists()

        await store.put(1, "blob")
        await store.delete(7)
        assert await store.get(1) == "blob"

    @pytest.mark.asyncio
    async def test_reads_bare_blob_entries(self, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps({"5": "bare-blob"}))
        assert await JsonFileTokenStore(path).get(5) == "bare-blob"

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_and_is_left_alone(self, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text("{not json")
        store = JsonFileTokenStore(path)

        with pytest.raises(StorageError):
            await store.get(1)
        with pytest.raises(StorageError):
            await store.put(1, "blob")
        assert path.read_text() == "{not json"

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path):
        store = JsonFileTokenStore(tmp_path / "tokens.json")
        for i in range(5):
            await store.put(i, f"blob-{i}")
        assert [p.name for p in tmp_path.iterdir()] == ["tokens.json"]

    @pytest.mark.asyncio
    async def test_concurrent_put_and_delete_are_isolated(self, tmp_path):
        store = JsonFileTokenStore(tmp_path / "tokens.json")
        await store.put("A", "a-0")
        await store.put("B", "b-0")

        await asyncio.gather(store.put("A", "a-1"), store.delete("B"))

        assert await store.get("A") == "a-1"
        assert await store.get("B") is None

    @pytest.mark.asyncio
    async def test_concurrent_puts_from_many_users(self, tmp_path):
        store = JsonFileTokenStore(tmp_path / "tokens.json")
        await store.put("keep", "kept")

        await asyncio.gather(*(store.put(i, f"blob-{i}") for i in range(30)))

        for i in range(30):
            assert await store.get(i) == f"blob-{i}"
        assert await store.get("keep") == "kept"


def _kv_response(status, text=""):
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=text)
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


def _kv_store(*responses):
    store = CloudflareKVTokenStore("acct", "ns", "cf-token")
    session = MagicMock()
    session.request = MagicMock(side_effect=list(responses))
    store._get_session = AsyncMock(return_value=session)
    return store, session


class TestCloudflareKVTokenStore:
    @pytest.mark.asyncio
    async def test_get_hit(self):
        store, session = _kv_store(_kv_response(200, "blob"))
        assert await store.get(42) == "blob"
        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == (
            "https://api.cloudflare.com/client/v4/accounts/acct"
            "/storage/kv/namespaces/ns/values/42"
        )

    @pytest.mark.asyncio
    async def test_get_miss(self):
        store, _ = _kv_store(_kv_response(404))
        assert await store.get(42) is None

    @pytest.mark.asyncio
    async def test_put_sends_blob(self):
        store, session = _kv_store(_kv_response(200, '{"success": true}'))
        await store.put(42, "blob")
        assert session.request.call_args.args[0] == "PUT"
        assert session.request.call_args.kwargs["data"] == b"blob"

    @pytest.mark.asyncio
    async def test_delete_missing_is_ok(self):
        store, _ = _kv_store(_kv_response(404))
        await store.delete(42)

    @pytest.mark.asyncio
    async def test_error_status_raises_storage_error(self):
        store, _ = _kv_store(_kv_response(500))
        with pytest.raises(StorageError):
            await store.put(42, "blob")

    @pytest.mark.asyncio
    async def test_network_error_raises_storage_error(self):
        store, _ = _kv_store(aiohttp.ClientConnectionError("boom"))
        with pytest.raises(StorageError):
            await store.get(42)


class TestCreateTokenStore:
    BASE = {
        "TELEGRAM_TOKEN": "t",
        "BOT_SECRET": "s",
        "REPO_OWNER": "o",
        "REPO_NAME": "r",
        "WORKFLOW_ID": "ci.yml",
    }

    def test_default_is_file(self, tmp_path):
        settings = Settings.from_env({**self.BASE, "TOKENS_FILE": str(tmp_path / "t.json")})
        store = create_token_store(settings)
        assert isinstance(store, JsonFileTokenStore)
        assert store.path == tmp_path / "t.json"

    def test_cloudflare_kv(self):
        settings = Settings.from_env({
            **self.BASE,
            "TOKEN_STORE": "cloudflare-kv",
            "CF_ACCOUNT_ID": "acct",
            "CF_KV_NAMESPACE_ID": "ns",
            "CF_API_TOKEN": "tok",
        })
        store = create_token_store(settings)
        assert isinstance(store, CloudflareKVTokenStore)
        assert store.namespace_id == "ns"

    def test_memory(self):
        settings = Settings.from_env({**self.BASE, "TOKEN_STORE": "memory"})
        assert isinstance(create_token_store(settings), MemoryTokenStore)
