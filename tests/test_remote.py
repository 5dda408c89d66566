"""Tests for remote event store implementations."""

import httpx
import pytest

from habitsync.sync import (
    DocumentExistsError,
    DocumentNotFoundError,
    HttpRemoteStore,
    InMemoryRemoteStore,
    RemoteStoreError,
)
from habitsync.sync.remote import union_events


def event(event_id: str, ts: int = 1) -> dict:
    return {
        "id": event_id,
        "type": "NOTE_DELETE",
        "payload": {"id": 1},
        "timestamp": ts,
        "deviceId": "dev_a",
    }


class TestUnionEvents:
    """Tests for array-union semantics."""

    def test_appends_new(self):
        assert union_events([event("a")], [event("b")]) == [event("a"), event("b")]

    def test_skips_known_ids(self):
        assert union_events([event("a")], [event("a"), event("b")]) == [event("a"), event("b")]

    def test_skips_duplicates_within_batch(self):
        assert union_events([], [event("a"), event("a")]) == [event("a")]


class TestInMemoryRemoteStore:
    """Tests for the in-memory store."""

    @pytest.fixture
    def store(self):
        return InMemoryRemoteStore()

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("acct") is None

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        await store.create("acct", {"lastUpdated": 1, "events": [event("a")]})

        document = await store.get("acct")

        assert document == {"lastUpdated": 1, "events": [event("a")]}

    @pytest.mark.asyncio
    async def test_create_existing_fails(self, store):
        await store.create("acct", {"lastUpdated": 1, "events": []})

        with pytest.raises(DocumentExistsError):
            await store.create("acct", {"lastUpdated": 2, "events": []})

    @pytest.mark.asyncio
    async def test_append_missing_fails(self, store):
        with pytest.raises(DocumentNotFoundError):
            await store.append_merge("acct", [event("a")], 5)

    @pytest.mark.asyncio
    async def test_append_merge(self, store):
        await store.create("acct", {"lastUpdated": 1, "events": [event("a")]})

        await store.append_merge("acct", [event("a"), event("b")], 5)

        document = await store.get("acct")
        assert [e["id"] for e in document["events"]] == ["a", "b"]
        assert document["lastUpdated"] == 5

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, store):
        await store.create("acct", {"lastUpdated": 1, "events": []})

        document = await store.get("acct")
        document["events"].append(event("x"))

        assert (await store.get("acct"))["events"] == []

    @pytest.mark.asyncio
    async def test_overwrite(self, store):
        await store.create("acct", {"lastUpdated": 1, "events": [event("a")]})
        await store.overwrite("acct", {"lastUpdated": 9, "events": []})

        assert await store.get("acct") == {"lastUpdated": 9, "events": []}

    @pytest.mark.asyncio
    async def test_user_record_merge(self, store):
        assert await store.get_user_record("acct") is None

        await store.update_user_record("acct", {"email": "a@example.com"})
        await store.update_user_record("acct", {"lastSnapshot": {"timestamp": 1}})

        assert await store.get_user_record("acct") == {
            "email": "a@example.com",
            "lastSnapshot": {"timestamp": 1},
        }


def make_store(handler) -> HttpRemoteStore:
    return HttpRemoteStore(
        "http://store.test",
        max_retries=3,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


class TestHttpRemoteStore:
    """Tests for the HTTP client against a mocked transport."""

    @pytest.mark.asyncio
    async def test_get(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/accounts/acct/sync-events"
            return httpx.Response(200, json={"lastUpdated": 1, "events": []})

        store = make_store(handler)
        assert await store.get("acct") == {"lastUpdated": 1, "events": []}
        await store.close()

    @pytest.mark.asyncio
    async def test_get_not_found(self):
        store = make_store(lambda request: httpx.Response(404, json={"detail": "not-found"}))
        assert await store.get("acct") is None
        await store.close()

    @pytest.mark.asyncio
    async def test_append_not_found_raises(self):
        store = make_store(lambda request: httpx.Response(404, json={"detail": "not-found"}))

        with pytest.raises(DocumentNotFoundError):
            await store.append_merge("acct", [event("a")], 1)
        await store.close()

    @pytest.mark.asyncio
    async def test_create_conflict_raises(self):
        store = make_store(lambda request: httpx.Response(409, json={"detail": "already-exists"}))

        with pytest.raises(DocumentExistsError):
            await store.create("acct", {"lastUpdated": 1, "events": []})
        await store.close()

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text="bad request")

        store = make_store(handler)
        with pytest.raises(RemoteStoreError):
            await store.overwrite("acct", {"lastUpdated": 1, "events": []})

        assert len(calls) == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"appended": 1})])

        store = make_store(lambda request: next(responses))
        await store.append_merge("acct", [event("a")], 1)
        await store.close()

    @pytest.mark.asyncio
    async def test_connection_failure_exhausts_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        store = make_store(handler)
        with pytest.raises(RemoteStoreError, match="3 attempts"):
            await store.get("acct")

        assert len(calls) == 3
        await store.close()

    @pytest.mark.asyncio
    async def test_update_user_record_sends_patch(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            return httpx.Response(200, json={"updated": ["lastSnapshot"]})

        store = make_store(handler)
        await store.update_user_record("acct", {"lastSnapshot": {"timestamp": 1}})

        assert seen == {"method": "PATCH", "path": "/accounts/acct/record"}
        await store.close()

    @pytest.mark.asyncio
    async def test_health_check(self):
        store = make_store(lambda request: httpx.Response(200, json={"status": "ok"}))
        assert await store.health_check() is True
        await store.close()

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        store = make_store(handler)
        assert await store.health_check() is False
        await store.close()
