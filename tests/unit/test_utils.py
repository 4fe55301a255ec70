"""
Unit tests for validators, events, errors and logging helpers.
"""

import pytest
import logging

from checkpoint_cms.models import ContentKind, EntityWriteStatus, RECORD_KINDS
from checkpoint_cms.utils.errors import (
    ApplyError,
    ConcurrencyError,
    ErrorRecovery,
    NotFoundError,
    ValidationError,
)
from checkpoint_cms.utils.logging import MetricsLogger, get_logger, log_function_call
from checkpoint_cms.utils.notifications import EventBus, EventCategory, EventPriority
from checkpoint_cms.utils.validators import (
    ContentValidator,
    Validator,
    context_name_validator,
)


class TestValidators:
    """Test field validation."""

    def test_chained_rules(self):
        validator = Validator("title").required().not_empty().max_length(5)

        validator.validate("short")
        with pytest.raises(ValidationError):
            validator.validate(None)
        with pytest.raises(ValidationError):
            validator.validate("")
        with pytest.raises(ValidationError) as exc_info:
            validator.validate("too long")
        assert exc_info.value.field == "title"

    def test_context_names(self):
        validator = context_name_validator()

        validator.validate("about")
        with pytest.raises(ValidationError):
            validator.validate("x" * 201)
        with pytest.raises(ValidationError):
            validator.validate(42)

    def test_content_limits(self):
        validator = ContentValidator(
            {"text": {"value": 10}, "listing": {"title": 3}},
            default_limit=5,
            record_kinds=RECORD_KINDS,
        )

        validator.validate("text", "0123456789")
        validator.validate("listing", {"title": "abc", "price": 1200000})
        with pytest.raises(ValidationError):
            validator.validate("text", "01234567890")
        with pytest.raises(ValidationError):
            validator.validate("listing", {"title": "abcd"})
        with pytest.raises(ValidationError) as exc_info:
            validator.validate("listing", {"address": "123456"})
        assert exc_info.value.field == "address"


class TestEventBus:
    """Test event delivery."""

    @pytest.mark.asyncio
    async def test_filters_by_category_and_name(self):
        bus = EventBus()
        saved, everything = [], []
        bus.subscribe(saved.append, event_names="changes_saved")
        bus.subscribe(everything.append, categories=[EventCategory.CHECKPOINT, EventCategory.RESTORE])

        await bus.emit("changes_saved", EventCategory.CHECKPOINT, {"version_number": 2})
        await bus.emit("version_restored", EventCategory.RESTORE, {"version_number": 1})
        await bus.emit("change_tracked", EventCategory.TRACKING, {})

        assert [e.name for e in saved] == ["changes_saved"]
        assert [e.name for e in everything] == ["changes_saved", "version_restored"]

    @pytest.mark.asyncio
    async def test_async_handlers_and_priority(self):
        bus = EventBus()
        received = []

        async def handler(event):
            received.append(event.data["n"])

        bus.subscribe(handler, priority_min=EventPriority.HIGH)
        await bus.emit("save_failed", EventCategory.ERROR, {"n": 1}, priority=EventPriority.HIGH)
        await bus.emit("changes_saved", EventCategory.CHECKPOINT, {"n": 2})

        assert received == [1]

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_propagate(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        await bus.emit("changes_saved", EventCategory.CHECKPOINT, {})

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_and_history(self):
        bus = EventBus(max_history=2)
        received = []
        subscription = bus.subscribe(received.append)

        await bus.emit("a", EventCategory.SYSTEM, {})
        assert bus.unsubscribe(subscription)
        assert not bus.unsubscribe(subscription)
        await bus.emit("b", EventCategory.SYSTEM, {})
        await bus.emit("c", EventCategory.SYSTEM, {})

        assert len(received) == 1
        assert [e.name for e in bus.get_history()] == ["b", "c"]
        assert [e.name for e in bus.get_history(event_name="c")] == ["c"]


class TestErrors:
    """Test error payloads and recovery."""

    def test_apply_error_partitions_statuses(self):
        statuses = [
            EntityWriteStatus(ContentKind.TEXT, "hero", "update", ok=True),
            EntityWriteStatus(ContentKind.TEXT, "intro", "update", ok=False, error="locked"),
        ]
        error = ApplyError("partial", statuses=statuses, version_number=3)

        payload = error.to_dict()["error"]
        assert payload["code"] == "APPLY_ERROR"
        assert payload["details"]["version_number"] == 3
        assert [s["id"] for s in payload["details"]["failed"]] == ["intro"]
        assert [s.id for s in error.succeeded] == ["hero"]

    def test_error_messages(self):
        assert str(ConcurrencyError("about", operation="restore")) == "session already active"
        assert "Version 4" in str(NotFoundError("about", 4))

    @pytest.mark.asyncio
    async def test_backoff_retries_then_succeeds(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise OSError("busy")
            return "ok"

        result = await ErrorRecovery.exponential_backoff(flaky, max_retries=3, base_delay=0)

        assert result == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_backoff_gives_up(self):
        async def failing():
            raise OSError("down")

        with pytest.raises(OSError):
            await ErrorRecovery.exponential_backoff(failing, max_retries=2, base_delay=0)


class TestLogging:
    """Test logging helpers."""

    def test_log_function_call_requires_coroutine(self):
        with pytest.raises(TypeError):
            @log_function_call(get_logger("test"))
            def not_async():
                pass

    @pytest.mark.asyncio
    async def test_log_function_call_preserves_result(self):
        @log_function_call(get_logger("test"))
        async def add(a, b):
            return a + b

        assert await add(2, 3) == 5

    def test_metrics_logger(self, caplog):
        metrics = MetricsLogger(logging.getLogger("checkpoint-cms-test.unit-metrics"))

        with caplog.at_level(logging.INFO, logger="checkpoint-cms-test.unit-metrics"):
            metrics.log_duration("restore", 12.5, {"context": "about"})

        record = caplog.records[-1]
        assert record.metric_name == "restore.duration_ms"
        assert record.metric_value == 12.5
