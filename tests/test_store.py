"""
Tests for the message store implementations.

- InMemoryMessageStore semantics
- PocketbaseMessageStore against a mocked Pocketbase REST API
"""
import json
from typing import Optional

import httpx
import pytest


class TestMakeTitle:
    """Tests for thread titles derived from prompts."""

    def test_short_prompt_kept(self):
        from streamrelay.services.store import make_title

        assert make_title("Hello there") == "Hello there"

    def test_long_prompt_truncated(self):
        from streamrelay.services.store import make_title

        prompt = "x" * 80
        assert make_title(prompt) == "x" * 50 + "..."

    def test_exactly_limit_not_truncated(self):
        from streamrelay.services.store import make_title

        assert make_title("y" * 50) == "y" * 50

    def test_blank_prompt_default(self):
        from streamrelay.services.store import make_title

        assert make_title("   ") == "New Thread"


class TestInMemoryMessageStore:
    """Tests for InMemoryMessageStore."""

    @pytest.mark.asyncio
    async def test_create_and_read_message(self, store):
        from streamrelay.models import MessageRole, MessageStatus

        thread = await store.create_thread("user-1", "Title")
        message = await store.create_message(thread.id, MessageRole.ASSISTANT)

        loaded = await store.read_message(message.id)
        assert loaded.thread_id == thread.id
        assert loaded.content == ""
        assert loaded.status == MessageStatus.STREAMING
        assert loaded.error is None

    @pytest.mark.asyncio
    async def test_read_returns_copy(self, store):
        from streamrelay.models import MessageRole

        thread = await store.create_thread("user-1", "Title")
        message = await store.create_message(thread.id, MessageRole.ASSISTANT)

        loaded = await store.read_message(message.id)
        loaded.content = "tampered"

        assert (await store.read_message(message.id)).content == ""

    @pytest.mark.asyncio
    async def test_missing_message(self, store):
        from streamrelay.services.store import MessageNotFoundError

        with pytest.raises(MessageNotFoundError):
            await store.read_message("nope")

    @pytest.mark.asyncio
    async def test_message_requires_thread(self, store):
        from streamrelay.models import MessageRole
        from streamrelay.services.store import ThreadNotFoundError

        with pytest.raises(ThreadNotFoundError):
            await store.create_message("missing", MessageRole.USER, content="hi")

    @pytest.mark.asyncio
    async def test_content_writes_replace(self, store):
        from streamrelay.models import MessageRole

        thread = await store.create_thread("user-1", "Title")
        message = await store.create_message(thread.id, MessageRole.ASSISTANT)

        await store.write_message_content(message.id, "Hel")
        await store.write_message_content(message.id, "Hello")

        assert (await store.read_message(message.id)).content == "Hello"

    @pytest.mark.asyncio
    async def test_terminal_complete(self, store):
        from streamrelay.models import MessageRole, MessageStatus

        thread = await store.create_thread("user-1", "Title")
        message = await store.create_message(thread.id, MessageRole.ASSISTANT)

        await store.write_message_terminal(message.id, MessageStatus.COMPLETE, content="Done")

        loaded = await store.read_message(message.id)
        assert loaded.status == MessageStatus.COMPLETE
        assert loaded.content == "Done"
        assert loaded.error is None

    @pytest.mark.asyncio
    async def test_terminal_error_keeps_partial_content(self, store):
        from streamrelay.models import MessageRole, MessageStatus

        thread = await store.create_thread("user-1", "Title")
        message = await store.create_message(thread.id, MessageRole.ASSISTANT)
        await store.write_message_content(message.id, "Partial")

        await store.write_message_terminal(message.id, MessageStatus.ERROR, error="boom")

        loaded = await store.read_message(message.id)
        assert loaded.status == MessageStatus.ERROR
        assert loaded.content == "Partial"
        assert loaded.error == "boom"

    @pytest.mark.asyncio
    async def test_terminal_is_final(self, store):
        """No write may follow a terminal transition."""
        from streamrelay.models import MessageRole, MessageStatus
        from streamrelay.services.store import MessageTerminalError

        thread = await store.create_thread("user-1", "Title")
        message = await store.create_message(thread.id, MessageRole.ASSISTANT)
        await store.write_message_terminal(message.id, MessageStatus.COMPLETE, content="Done")

        with pytest.raises(MessageTerminalError):
            await store.write_message_content(message.id, "Done more")
        with pytest.raises(MessageTerminalError):
            await store.write_message_terminal(message.id, MessageStatus.ERROR, error="late")

        loaded = await store.read_message(message.id)
        assert loaded.status == MessageStatus.COMPLETE
        assert loaded.content == "Done"

    @pytest.mark.asyncio
    async def test_terminal_rejects_streaming_status(self, store):
        from streamrelay.models import MessageRole, MessageStatus

        thread = await store.create_thread("user-1", "Title")
        message = await store.create_message(thread.id, MessageRole.ASSISTANT)

        with pytest.raises(ValueError):
            await store.write_message_terminal(message.id, MessageStatus.STREAMING)

    @pytest.mark.asyncio
    async def test_list_messages_in_creation_order(self, store):
        from streamrelay.models import MessageRole, MessageStatus

        thread = await store.create_thread("user-1", "Title")
        first = await store.create_message(
            thread.id, MessageRole.USER, content="Q", status=MessageStatus.COMPLETE
        )
        second = await store.create_message(thread.id, MessageRole.ASSISTANT)

        messages = await store.list_messages(thread.id)
        assert [m.id for m in messages] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_list_threads_scoped_to_user(self, store):
        await store.create_thread("user-1", "Mine")
        await store.create_thread("user-2", "Theirs")

        threads = await store.list_threads("user-1")
        assert [t.title for t in threads] == ["Mine"]

    @pytest.mark.asyncio
    async def test_list_threads_paging(self, store):
        for i in range(5):
            await store.create_thread("user-1", f"T{i}")

        page = await store.list_threads("user-1", limit=2, offset=1)
        assert len(page) == 2

    @pytest.mark.asyncio
    async def test_delete_thread_cascades(self, store):
        from streamrelay.models import MessageRole
        from streamrelay.services.store import MessageNotFoundError, ThreadNotFoundError

        thread = await store.create_thread("user-1", "Title")
        message = await store.create_message(thread.id, MessageRole.ASSISTANT)

        await store.delete_thread(thread.id)

        with pytest.raises(ThreadNotFoundError):
            await store.get_thread(thread.id)
        with pytest.raises(MessageNotFoundError):
            await store.read_message(message.id)


def _record(**overrides) -> dict:
    record = {
        "id": "m1",
        "thread_id": "t1",
        "role": "assistant",
        "content": "",
        "status": "streaming",
        "error": "",
        "model": "gpt-4o",
        "provider": "openai",
        "created": "2024-01-01 00:00:00.000Z",
        "updated": "2024-01-01 00:00:00.000Z",
    }
    record.update(overrides)
    return record


class FakePocketbase:
    """Records requests and answers from a canned record table."""

    def __init__(self, records: dict, page_size: Optional[int] = 1):
        self.records = records
        self.page_size = page_size  # None: honour perPage
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/collections/_superusers/auth-with-password":
            return httpx.Response(200, json={"token": "admin-token"})

        if path == "/api/health":
            return httpx.Response(200, json={"code": 200, "message": "API is healthy."})

        parts = path.strip("/").split("/")
        # api/collections/<name>/records[/<id>]
        collection = parts[2]
        record_id = parts[4] if len(parts) > 4 else None
        table = self.records.setdefault(collection, {})

        if request.method == "GET" and record_id:
            if record_id not in table:
                return httpx.Response(404, json={"message": "The requested resource wasn't found."})
            return httpx.Response(200, json=table[record_id])

        if request.method == "GET":
            page = int(request.url.params.get("page", "1"))
            size = self.page_size or int(request.url.params["perPage"])
            items = list(table.values())
            return httpx.Response(
                200,
                json={
                    "page": page,
                    "totalPages": max(1, -(-len(items) // size)),
                    "items": items[(page - 1) * size : page * size],
                },
            )

        if request.method == "PATCH":
            table[record_id].update(json.loads(request.content))
            return httpx.Response(200, json=table[record_id])

        if request.method == "POST":
            data = json.loads(request.content)
            data["id"] = f"{collection}-{len(table) + 1}"
            table[data["id"]] = data
            return httpx.Response(200, json=data)

        if request.method == "DELETE":
            table.pop(record_id, None)
            return httpx.Response(204)

        return httpx.Response(405)

    def patches(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "PATCH"]


def _make_store(fake: FakePocketbase, **kwargs):
    from streamrelay.services.pocketbase import PocketbaseService
    from streamrelay.services.store import PocketbaseMessageStore

    client = PocketbaseService(
        "http://pocketbase:8090",
        transport=httpx.MockTransport(fake),
        **kwargs,
    )
    return PocketbaseMessageStore(client)


class TestPocketbaseMessageStore:
    """Tests for PocketbaseMessageStore over a mocked REST API."""

    @pytest.mark.asyncio
    async def test_read_message_maps_record(self):
        from streamrelay.models import MessageRole, MessageStatus

        fake = FakePocketbase({"messages": {"m1": _record(content="Hello")}})
        store = _make_store(fake)

        message = await store.read_message("m1")
        assert message.role == MessageRole.ASSISTANT
        assert message.status == MessageStatus.STREAMING
        assert message.content == "Hello"
        assert message.error is None
        await store.close()

    @pytest.mark.asyncio
    async def test_read_missing_message(self):
        from streamrelay.services.store import MessageNotFoundError

        store = _make_store(FakePocketbase({"messages": {}}))

        with pytest.raises(MessageNotFoundError):
            await store.read_message("missing")
        await store.close()

    @pytest.mark.asyncio
    async def test_terminal_write_sends_status_content_and_error(self):
        from streamrelay.models import MessageStatus

        fake = FakePocketbase({"messages": {"m1": _record(content="Par")}})
        store = _make_store(fake)

        await store.write_message_terminal("m1", MessageStatus.ERROR, content="Partial", error="boom")

        assert fake.patches() == [{"status": "error", "error": "boom", "content": "Partial"}]
        await store.close()

    @pytest.mark.asyncio
    async def test_write_after_terminal_rejected(self):
        from streamrelay.services.store import MessageTerminalError

        fake = FakePocketbase({"messages": {"m1": _record(status="complete", content="Done")}})
        store = _make_store(fake)

        with pytest.raises(MessageTerminalError):
            await store.write_message_content("m1", "Done!")
        assert fake.patches() == []
        await store.close()

    @pytest.mark.asyncio
    async def test_list_messages_walks_pages(self):
        fake = FakePocketbase(
            {
                "messages": {
                    "m1": _record(id="m1"),
                    "m2": _record(id="m2"),
                    "m3": _record(id="m3"),
                }
            }
        )
        store = _make_store(fake)

        messages = await store.list_messages("t1")
        assert [m.id for m in messages] == ["m1", "m2", "m3"]

        list_request = next(r for r in fake.requests if r.method == "GET")
        assert list_request.url.params["filter"] == 'thread_id="t1"'
        assert list_request.url.params["sort"] == "+created,+id"
        await store.close()

    @pytest.mark.asyncio
    async def test_list_threads_pages_from_offset(self):
        threads = {
            f"t{i}": {"id": f"t{i}", "user_id": "user-1", "title": f"T{i}"}
            for i in range(10)
        }
        fake = FakePocketbase({"threads": threads}, page_size=None)
        store = _make_store(fake)

        page = await store.list_threads("user-1", limit=4, offset=6)

        assert [t.id for t in page] == ["t6", "t7", "t8", "t9"]
        list_requests = [r for r in fake.requests if r.method == "GET"]
        assert [r.url.params["page"] for r in list_requests] == ["2", "3"]
        assert all(r.url.params["perPage"] == "4" for r in list_requests)
        await store.close()

    @pytest.mark.asyncio
    async def test_list_threads_large_offset_stays_under_page_cap(self):
        from streamrelay.services.store.pocketbase import MAX_PER_PAGE

        fake = FakePocketbase({"threads": {}}, page_size=None)
        store = _make_store(fake)

        assert await store.list_threads("user-1", limit=100, offset=5000) == []
        list_request = next(r for r in fake.requests if r.method == "GET")
        assert int(list_request.url.params["perPage"]) <= MAX_PER_PAGE
        assert list_request.url.params["page"] == "51"
        await store.close()

    @pytest.mark.asyncio
    async def test_admin_token_sent(self):
        fake = FakePocketbase({"messages": {"m1": _record()}})
        store = _make_store(fake, admin_email="admin@example.com", admin_password="secret")

        await store.read_message("m1")

        record_request = fake.requests[-1]
        assert record_request.headers["Authorization"] == "admin-token"
        await store.close()

    @pytest.mark.asyncio
    async def test_connection_error_is_store_error(self):
        from streamrelay.services.pocketbase import PocketbaseService
        from streamrelay.services.store import PocketbaseMessageStore, StoreError

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        store = PocketbaseMessageStore(
            PocketbaseService("http://pocketbase:8090", transport=httpx.MockTransport(refuse))
        )

        with pytest.raises(StoreError):
            await store.read_message("m1")
        await store.close()
