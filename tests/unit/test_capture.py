"""
Unit tests for live content storage and state capture.
"""

import pytest
from datetime import datetime, timedelta, timezone

from checkpoint_cms.checkpoint.capture import StateCapture, resolve_latest
from checkpoint_cms.models import ContentEntity, ContentKind
from checkpoint_cms.storage.content_store import ContentStore, TOMBSTONE
from checkpoint_cms.utils.errors import CaptureError

from conftest import FlakyContentStore


TEXT = ContentKind.TEXT
TEAM = ContentKind.TEAM_MEMBER
LISTING = ContentKind.LISTING


class TestSQLiteContentStore:
    """Test the SQLite content store."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, content_store):
        await content_store.write("about", TEXT, "hero", "Welcome")
        await content_store.write("about", TEXT, "hero", "Hello")

        rows = await content_store.read("about", TEXT)
        assert [(r.id, r.value) for r in rows] == [("hero", "Hello")]
        assert rows[0].updated_at is not None

    @pytest.mark.asyncio
    async def test_contexts_are_isolated(self, content_store):
        await content_store.write("about", TEXT, "hero", "A")
        await content_store.write("home", TEXT, "hero", "B")

        rows = await content_store.read("home", TEXT)
        assert [r.value for r in rows] == ["B"]

    @pytest.mark.asyncio
    async def test_tombstone_soft_removes(self, content_store):
        await content_store.write("about", TEAM, "7", {"name": "Ann"})
        await content_store.write("about", TEAM, "7", TOMBSTONE)

        assert await content_store.read("about", TEAM) == []

        await content_store.write("about", TEAM, "7", {"name": "Ann"})
        rows = await content_store.read("about", TEAM)
        assert [r.value for r in rows] == [{"name": "Ann"}]

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, content_store):
        new_id = await content_store.insert("about", LISTING, {"title": "Loft"})

        rows = await content_store.read("about", LISTING)
        assert [(r.id, r.value) for r in rows] == [(new_id, {"title": "Loft"})]

    @pytest.mark.asyncio
    async def test_write_retires_duplicates(self, content_store):
        await content_store.append_row("about", TEXT, "hero", "one")
        await content_store.append_row("about", TEXT, "hero", "two")
        assert len(await content_store.read("about", TEXT)) == 2

        await content_store.write("about", TEXT, "hero", "three")

        rows = await content_store.read("about", TEXT)
        assert [r.value for r in rows] == ["three"]


class TestResolveLatest:
    """Test duplicate resolution."""

    def test_latest_timestamp_wins(self):
        now = datetime(2024, 1, 1, 12, 0, 0)
        rows = [
            ContentEntity("about", TEXT, "hero", "new", updated_at=now),
            ContentEntity("about", TEXT, "hero", "old", updated_at=now - timedelta(days=1)),
        ]
        assert [e.value for e in resolve_latest(rows)] == ["new"]

    def test_tie_goes_to_later_row(self):
        now = datetime(2024, 1, 1, 12, 0, 0)
        rows = [
            ContentEntity("about", TEXT, "hero", "first", updated_at=now),
            ContentEntity("about", TEXT, "hero", "second", updated_at=now),
        ]
        assert [e.value for e in resolve_latest(rows)] == ["second"]

    def test_missing_timestamp_loses(self):
        rows = [
            ContentEntity("about", TEXT, "hero", "dated", updated_at=datetime(2024, 1, 1)),
            ContentEntity("about", TEXT, "hero", "undated"),
        ]
        assert [e.value for e in resolve_latest(rows)] == ["dated"]

    def test_mixed_timestamp_styles(self):
        utc = timezone.utc
        rows = [
            ContentEntity("about", TEAM, "7", {"name": "aware"}, updated_at=datetime(2024, 1, 1, tzinfo=utc)),
            ContentEntity("about", TEAM, "7", {"name": "null"}),
            ContentEntity("about", TEAM, "7", {"name": "naive"}, updated_at=datetime(2023, 6, 1)),
            ContentEntity("about", TEAM, "8", {"name": "naive"}, updated_at=datetime(2024, 3, 1, 12)),
            ContentEntity(
                "about", TEAM, "8", {"name": "offset"},
                updated_at=datetime(2024, 3, 1, 13, tzinfo=timezone(timedelta(hours=2)))
            ),
        ]

        resolved = {e.id: e.value["name"] for e in resolve_latest(rows)}

        assert resolved == {"7": "aware", "8": "naive"}

    @pytest.mark.asyncio
    async def test_capture_with_mixed_timestamps(self):
        class DuplicateRows(ContentStore):
            async def read(self, context, kind):
                if kind is not TEAM:
                    return []
                return [
                    ContentEntity(context, TEAM, "7", {"name": "B"}, updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
                    ContentEntity(context, TEAM, "7", {"name": "A"}, updated_at=None),
                ]

            async def write(self, context, kind, entity_id, value):
                raise NotImplementedError

            async def insert(self, context, kind, value):
                raise NotImplementedError

        snapshot = await StateCapture(DuplicateRows()).capture("about")

        assert snapshot.values() == {"team_member": {"7": {"name": "B"}}}


class TestStateCapture:
    """Test snapshot capture."""

    @pytest.mark.asyncio
    async def test_capture_orders_entities(self, content_store):
        await content_store.write("about", LISTING, "b", {"title": "B"})
        await content_store.write("about", TEXT, "z", "Z")
        await content_store.write("about", TEAM, "1", {"name": "Ann"})
        await content_store.write("about", TEXT, "a", "A")

        snapshot = await StateCapture(content_store).capture("about")

        assert snapshot.keys() == [(TEXT, "a"), (TEXT, "z"), (TEAM, "1"), (LISTING, "b")]
        assert snapshot.values() == {
            "text": {"a": "A", "z": "Z"},
            "team_member": {"1": {"name": "Ann"}},
            "listing": {"b": {"title": "B"}},
        }

    @pytest.mark.asyncio
    async def test_capture_is_deterministic(self, content_store):
        await content_store.write("about", TEXT, "hero", "Hi")
        capture = StateCapture(content_store)

        first = await capture.capture("about")
        second = await capture.capture("about")

        assert first == second
        assert first.content_hash == second.content_hash

    @pytest.mark.asyncio
    async def test_capture_resolves_duplicates(self, content_store):
        base = datetime(2024, 1, 1)
        await content_store.append_row("about", TEXT, "hero", "newest", updated_at=base + timedelta(hours=1))
        await content_store.append_row("about", TEXT, "hero", "older", updated_at=base)

        snapshot = await StateCapture(content_store).capture("about")

        assert len(snapshot) == 1
        assert snapshot.get(TEXT, "hero").value == "newest"

    @pytest.mark.asyncio
    async def test_empty_context(self, content_store):
        snapshot = await StateCapture(content_store).capture("empty")
        assert len(snapshot) == 0
        assert snapshot.values() == {}

    @pytest.mark.asyncio
    async def test_transient_read_failures_are_retried(self, test_db):
        store = FlakyContentStore(test_db)
        await store.initialize()
        await store.write("about", TEXT, "hero", "Hi")
        store.read_failures = 2

        snapshot = await StateCapture(store, read_retries=3, retry_base_delay=0).capture("about")

        assert snapshot.get(TEXT, "hero").value == "Hi"

    @pytest.mark.asyncio
    async def test_persistent_read_failure_raises(self, test_db):
        store = FlakyContentStore(test_db)
        await store.initialize()
        store.failing_kinds.add(LISTING)

        capture = StateCapture(store, read_retries=2, retry_base_delay=0)
        with pytest.raises(CaptureError) as exc_info:
            await capture.capture("about")

        assert exc_info.value.kind == "listing"
