"""
Unit tests for the change tracker.
"""

import pytest

from checkpoint_cms.checkpoint.tracker import ChangeTracker, merge_value
from checkpoint_cms.models import ChangeOp, ContentKind, RECORD_KINDS
from checkpoint_cms.utils.config import DEFAULT_FIELD_LIMITS
from checkpoint_cms.utils.errors import ValidationError
from checkpoint_cms.utils.notifications import EventBus
from checkpoint_cms.utils.validators import ContentValidator


TEXT = ContentKind.TEXT
TEAM = ContentKind.TEAM_MEMBER


class TestMergeValue:
    """Test per-kind merge rules."""

    def test_record_merges_fields(self):
        merged = merge_value(TEAM, {"name": "Ann", "bio": "Old"}, {"bio": "New"})
        assert merged == {"name": "Ann", "bio": "New"}

    def test_record_merge_does_not_alias_inputs(self):
        existing = {"name": "Ann"}
        merged = merge_value(TEAM, existing, {"position": "CEO"})
        merged["name"] = "Changed"
        assert existing == {"name": "Ann"}

    def test_text_replaces(self):
        assert merge_value(TEXT, "old", "new") == "new"


class TestChangeTracker:
    """Test pending change set maintenance."""

    @pytest.fixture
    def tracker(self):
        validator = ContentValidator(DEFAULT_FIELD_LIMITS, record_kinds=RECORD_KINDS)
        return ChangeTracker(validator=validator, events=EventBus())

    @pytest.mark.asyncio
    async def test_update_records_modification(self, tracker):
        view = await tracker.track_change("about", "text", "hero", "Old", "New")

        assert view.modified == {(TEXT, "hero"): "New"}
        assert view.change_count == 1
        assert tracker.has_pending_changes("about")
        assert not tracker.has_pending_changes("home")

    @pytest.mark.asyncio
    async def test_repeated_record_updates_merge(self, tracker):
        await tracker.track_change("about", TEAM, "7", new_value={"bio": "A"})
        view = await tracker.track_change("about", TEAM, "7", new_value={"email": "a@b.c"})

        assert view.modified[(TEAM, "7")] == {"bio": "A", "email": "a@b.c"}
        assert len(view.changes) == 2

    @pytest.mark.asyncio
    async def test_delete_drops_modification(self, tracker):
        await tracker.track_change("about", TEAM, "7", new_value={"bio": "A"})
        view = await tracker.track_change("about", TEAM, "7", op=ChangeOp.DELETE)

        assert (TEAM, "7") not in view.modified
        assert view.deleted == frozenset({(TEAM, "7")})

    @pytest.mark.asyncio
    async def test_added_entity_stays_added(self, tracker):
        await tracker.track_change("about", TEAM, "tmp-1", new_value={"name": "New"}, op="create")
        view = await tracker.track_change("about", TEAM, "tmp-1", new_value={"position": "CTO"})

        assert view.added == {(TEAM, "tmp-1"): {"name": "New", "position": "CTO"}}
        assert view.modified == {}

    @pytest.mark.asyncio
    async def test_deleting_added_entity_removes_it(self, tracker):
        await tracker.track_change("about", TEAM, "tmp-1", new_value={"name": "New"}, op="create")
        view = await tracker.track_change("about", TEAM, "tmp-1", op="delete")

        assert view.is_empty()
        assert not tracker.has_pending_changes("about")

    @pytest.mark.asyncio
    async def test_undelete(self, tracker):
        await tracker.track_change("about", TEAM, "7", op="delete")
        view = await tracker.track_change("about", TEAM, "7", op="undelete")

        assert view.deleted == frozenset()

    @pytest.mark.asyncio
    async def test_update_of_deleted_entity_rejected(self, tracker):
        await tracker.track_change("about", TEAM, "7", op="delete")
        before = tracker.get_pending_change_set("about")

        with pytest.raises(ValidationError):
            await tracker.track_change("about", TEAM, "7", new_value={"bio": "x"})

        assert tracker.get_pending_change_set("about") == before

    @pytest.mark.asyncio
    async def test_create_with_existing_id_rejected(self, tracker):
        await tracker.track_change("about", TEAM, "7", new_value={"bio": "x"})

        with pytest.raises(ValidationError):
            await tracker.track_change("about", TEAM, "7", new_value={"name": "y"}, op="create")

    @pytest.mark.asyncio
    async def test_field_limit_rejects_without_touching_set(self, tracker):
        await tracker.track_change("about", TEAM, "7", new_value={"name": "ok"})

        with pytest.raises(ValidationError) as exc_info:
            await tracker.track_change("about", TEAM, "7", new_value={"name": "x" * 501})

        assert exc_info.value.field == "name"
        view = tracker.get_pending_change_set("about")
        assert view.modified[(TEAM, "7")] == {"name": "ok"}
        assert len(view.changes) == 1

    @pytest.mark.asyncio
    async def test_rejects_bad_shapes(self, tracker):
        with pytest.raises(ValidationError):
            await tracker.track_change("about", TEAM, "7", new_value="not a record")
        with pytest.raises(ValidationError):
            await tracker.track_change("about", TEXT, "hero", new_value={"value": "x"})
        with pytest.raises(ValidationError):
            await tracker.track_change("about", "gallery", "1", new_value="x")
        with pytest.raises(ValidationError):
            await tracker.track_change("about", TEXT, "hero", new_value=None)
        with pytest.raises(ValidationError):
            await tracker.track_change("", TEXT, "hero", new_value="x")
        with pytest.raises(ValidationError):
            await tracker.track_change("about", TEXT, "hero", new_value="x", op="rename")

        assert not tracker.has_pending_changes("about")

    @pytest.mark.asyncio
    async def test_view_is_detached(self, tracker):
        view = await tracker.track_change("about", TEAM, "7", new_value={"bio": "A"})
        await tracker.track_change("about", TEAM, "7", new_value={"bio": "B"})

        assert view.modified[(TEAM, "7")] == {"bio": "A"}
        with pytest.raises(TypeError):
            view.modified[(TEAM, "8")] = {}

    @pytest.mark.asyncio
    async def test_clear(self, tracker):
        await tracker.track_change("about", TEXT, "hero", new_value="x")
        await tracker.track_change("about", TEXT, "intro", new_value="y")

        assert tracker.clear("about") == 2
        assert tracker.get_pending_change_set("about").is_empty()
        assert tracker.clear("about") == 0

    @pytest.mark.asyncio
    async def test_emits_change_tracked(self, tracker):
        await tracker.track_change("about", TEXT, "hero", new_value="x")

        events = tracker.events.get_history("change_tracked")
        assert len(events) == 1
        assert events[0].data["id"] == "hero"
        assert events[0].data["pending"] == 1


class TestDiscardApplied:
    """Test pruning of applied entries after a save."""

    @pytest.fixture
    def tracker(self):
        return ChangeTracker()

    @pytest.mark.asyncio
    async def test_removes_succeeded_entries(self, tracker):
        await tracker.track_change("about", TEXT, "hero", new_value="x")
        view = await tracker.track_change("about", TEXT, "intro", new_value="y")

        remaining = tracker.discard_applied("about", view, [(TEXT, "hero")])

        assert remaining == 1
        assert tracker.get_pending_change_set("about").modified == {(TEXT, "intro"): "y"}

    @pytest.mark.asyncio
    async def test_keeps_entries_edited_after_view(self, tracker):
        view = await tracker.track_change("about", TEXT, "hero", new_value="x")
        await tracker.track_change("about", TEXT, "hero", new_value="z")

        tracker.discard_applied("about", view, [(TEXT, "hero")])

        pending = tracker.get_pending_change_set("about")
        assert pending.modified == {(TEXT, "hero"): "z"}
        assert len(pending.changes) == 1

    @pytest.mark.asyncio
    async def test_keeps_session_started_after_clear(self, tracker):
        view = await tracker.track_change("about", TEXT, "hero", new_value="x")
        tracker.clear("about")
        await tracker.track_change("about", TEXT, "hero", new_value="x")
        await tracker.track_change("about", TEXT, "intro", new_value="y")

        remaining = tracker.discard_applied("about", view, [(TEXT, "hero")])

        pending = tracker.get_pending_change_set("about")
        assert remaining == 2
        assert pending.modified == {(TEXT, "hero"): "x", (TEXT, "intro"): "y"}
        assert [c.id for c in pending.changes] == ["hero", "intro"]
        assert pending.session_id != view.session_id

    @pytest.mark.asyncio
    async def test_failed_keys_follow_pending_entries(self, tracker):
        await tracker.track_change("about", TEXT, "hero", new_value="x")
        view = await tracker.track_change("about", TEXT, "intro", new_value="y")

        tracker.discard_applied("about", view, [(TEXT, "hero")])
        tracker.mark_failed("about", [(TEXT, "intro")])
        assert tracker.failed_keys("about") == {(TEXT, "intro")}

        tracker.discard_applied("about", view, [(TEXT, "intro")])
        assert tracker.failed_keys("about") == set()
        assert tracker.contexts() == set()
