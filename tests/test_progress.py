"""Tests for progress throttling and the live/silent progress strategies.

A fake clock drives the throttler so timing is deterministic.
"""

import pytest

from fakes import RecordingSurface
from quarry.api.models import Attachment
from quarry.api.progress import (
    NO_ANSWER_TEXT,
    THINKING_PLACEHOLDER,
    LiveProgress,
    ProgressThrottler,
    SilentProgress,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestProgressThrottler:
    def test_needs_both_time_and_chars(self):
        clock = FakeClock()
        throttler = ProgressThrottler(interval=1.0, min_chars=50, clock=clock)

        clock.now = 5.0
        assert not throttler.should_push("x" * 49)  # enough time, too few chars
        clock.now = 0.5
        assert not throttler.should_push("x" * 500)  # enough chars, too soon
        clock.now = 1.0
        assert throttler.should_push("x" * 50)

    def test_forced_always_pushes(self):
        throttler = ProgressThrottler(clock=FakeClock())
        assert throttler.should_push("", forced=True)

    def test_chars_counted_since_last_push(self):
        clock = FakeClock()
        throttler = ProgressThrottler(clock=clock)
        throttler.mark_pushed("x" * 100)
        clock.now = 10.0
        assert not throttler.should_push("x" * 120)
        assert throttler.should_push("x" * 150)

    def test_mark_pushed_resets_timer(self):
        clock = FakeClock()
        throttler = ProgressThrottler(clock=clock)
        clock.now = 3.0
        throttler.mark_pushed("abc")
        assert throttler.state.last_push_at == 3.0
        assert throttler.state.last_pushed_text == "abc"


class TestLiveProgress:
    def _live(self, surface=None, clock=None):
        clock = clock or FakeClock()
        surface = surface or RecordingSurface()
        return LiveProgress(surface, ProgressThrottler(1.0, 50, clock=clock)), surface, clock

    @pytest.mark.asyncio
    async def test_steady_stream_pushes_about_once_per_second(self):
        progress, surface, clock = self._live()
        buffer = ""
        # 5 chars every 10 ms for 3 seconds
        for tick in range(1, 301):
            clock.now = tick * 10 / 1000
            buffer += "abcde"
            await progress.update(buffer)

        assert len(surface.pushes) == 3
        assert [len(t) for t in surface.texts] == [500, 1000, 1500]

    @pytest.mark.asyncio
    async def test_forced_update_bypasses_throttle(self):
        progress, surface, _ = self._live()
        await progress.update("short", force=True)
        await progress.update("short", force=True)
        assert surface.texts == ["short", "short"]

    @pytest.mark.asyncio
    async def test_empty_text_shows_placeholder(self):
        progress, surface, _ = self._live()
        await progress.update("", force=True)
        assert surface.texts == [THINKING_PLACEHOLDER]

    @pytest.mark.asyncio
    async def test_tool_status_appends_to_response(self):
        progress, surface, _ = self._live()
        await progress.tool_status("Looking it up.", "🔍 querying")
        await progress.tool_status("", "🔍 querying")
        assert surface.texts == ["Looking it up.\n\n🔍 querying", "🔍 querying"]

    @pytest.mark.asyncio
    async def test_reasoning_is_throttled_and_formatted(self):
        progress, surface, clock = self._live()
        await progress.reasoning("x" * 60)
        assert surface.pushes == []
        clock.now = 1.0
        await progress.reasoning("x" * 120)
        assert len(surface.pushes) == 1
        assert "Thinking" in surface.texts[0]
        assert "x" * 120 in surface.texts[0]

    @pytest.mark.asyncio
    async def test_deliver_reuses_current_text(self):
        progress, surface, _ = self._live()
        chart = Attachment(filename="chart.png", data=b"png")
        await progress.update("Here is the chart", force=True)
        await progress.deliver([chart])
        assert surface.pushes[-1] == ("Here is the chart", [chart])

    @pytest.mark.asyncio
    async def test_deliver_nothing_is_noop(self):
        progress, surface, _ = self._live()
        await progress.deliver([])
        assert surface.pushes == []

    @pytest.mark.asyncio
    async def test_finish_and_fail(self):
        progress, surface, _ = self._live()
        await progress.finish("")
        await progress.fail("db down")
        assert surface.texts[0] == NO_ANSWER_TEXT
        assert surface.texts[1].startswith("❌ An error occurred.")
        assert "db down" in surface.texts[1]

    @pytest.mark.asyncio
    async def test_surface_failure_is_swallowed(self):
        progress, _, _ = self._live(surface=RecordingSurface(fail=True))
        await progress.update("text", force=True)
        await progress.finish("done")


class TestSilentProgress:
    @pytest.mark.asyncio
    async def test_collects_results(self):
        progress = SilentProgress()
        chart = Attachment(filename="chart.png", data=b"png")
        await progress.update("partial", force=True)
        await progress.tool_status("partial", "status")
        await progress.deliver([chart])
        await progress.finish("final")
        assert progress.attachments == [chart]
        assert progress.answer == "final"
        assert progress.error is None

    @pytest.mark.asyncio
    async def test_records_failure(self):
        progress = SilentProgress()
        await progress.fail("boom")
        assert progress.error == "boom"
