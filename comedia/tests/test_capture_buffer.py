"""Tests for capture sessions, flush triggers and the in-flight guard."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from comedia.common.errors import UpstreamServiceError
from comedia.common.schemas import SourceType
from comedia.scribe.capture_buffer import (
    CaptureBuffer,
    CaptureSession,
    DispatchResult,
    FlushPolicy,
    extract_speakers,
)

MANUAL_ONLY = FlushPolicy(periodic_interval=None, silence_timeout=None)


def _handler(tasks_created=1):
    return AsyncMock(return_value=DispatchResult(success=True, tasks_created=tasks_created))


class TestCaptureSession:
    def test_append_suppresses_repeats(self):
        session = CaptureSession(session_id="s1")
        assert session.append("Alice Smith: hello") is True
        assert session.append("Alice Smith: hello") is False
        assert session.append("  ") is False
        assert session.append("Bob Jones: hi") is True
        assert session.append("Alice Smith: hello") is True
        assert session.buffered == 3

    def test_drain_joins_and_clears(self):
        session = CaptureSession(session_id="s1")
        session.append(" one ")
        session.append("two")
        assert session.drain() == "one two"
        assert session.fragments == []
        assert session.drain() == ""


class TestFlushPolicy:
    def test_defaults(self):
        policy = FlushPolicy()
        assert policy.periodic_interval == 30.0
        assert policy.silence_timeout == 5.0

    def test_slow_polling(self):
        policy = FlushPolicy.slow_polling()
        assert policy.periodic_interval == 120.0
        assert policy.silence_timeout is None


class TestExtractSpeakers:
    def test_unique_in_order(self):
        text = "Alice Smith: hi Bob Jones: hello Alice Smith: bye"
        assert extract_speakers(text) == ["Alice Smith", "Bob Jones"]

    def test_single_names_ignored(self):
        assert extract_speakers("Alice: hi") == []


class TestCaptureBuffer:
    @pytest.mark.asyncio
    async def test_explicit_flush(self):
        handler = _handler()
        buffer = CaptureBuffer(handler, MANUAL_ONLY)
        session = buffer.start_session(SourceType.ZOOM, title="Weekly sync")

        buffer.append(session.session_id, "Alice Smith: I'll send the deck")
        buffer.append(session.session_id, "Bob Jones: thanks")
        result = await buffer.flush(session.session_id)

        assert result == DispatchResult(success=True, tasks_created=1)
        payload = handler.await_args.args[0]
        assert payload.meeting_title == "Weekly sync"
        assert payload.transcript == "Alice Smith: I'll send the deck Bob Jones: thanks"
        assert payload.speakers == ["Alice Smith", "Bob Jones"]
        assert payload.source_type == SourceType.ZOOM
        assert payload.session_id == session.session_id
        assert session.last_flush_at is not None

        # Nothing buffered: no-op
        assert await buffer.flush(session.session_id) is None
        handler.assert_awaited_once()
        await buffer.close()

    @pytest.mark.asyncio
    async def test_default_title(self):
        buffer = CaptureBuffer(_handler(), MANUAL_ONLY)
        assert buffer.start_session().title == "Untitled Meeting"
        await buffer.close()

    @pytest.mark.asyncio
    async def test_duplicate_session_id(self):
        buffer = CaptureBuffer(_handler(), MANUAL_ONLY)
        buffer.start_session(session_id="s1")
        with pytest.raises(ValueError):
            buffer.start_session(session_id="s1")
        await buffer.close()

    @pytest.mark.asyncio
    async def test_unknown_session(self):
        buffer = CaptureBuffer(_handler(), MANUAL_ONLY)
        with pytest.raises(KeyError):
            buffer.append("missing", "text")
        with pytest.raises(KeyError):
            await buffer.flush("missing")
        with pytest.raises(KeyError):
            await buffer.end_session("missing")

    @pytest.mark.asyncio
    async def test_silence_timeout_flushes(self):
        handler = _handler()
        buffer = CaptureBuffer(handler, FlushPolicy(periodic_interval=None, silence_timeout=0.05))
        session = buffer.start_session()

        buffer.append(session.session_id, "Alice Smith: I'll send the deck")
        await asyncio.sleep(0.2)

        handler.assert_awaited_once()
        assert session.buffered == 0
        await buffer.close()

    @pytest.mark.asyncio
    async def test_new_fragment_restarts_silence_countdown(self):
        handler = _handler()
        buffer = CaptureBuffer(handler, FlushPolicy(periodic_interval=None, silence_timeout=0.2))
        session = buffer.start_session()

        buffer.append(session.session_id, "first")
        await asyncio.sleep(0.12)
        buffer.append(session.session_id, "second")
        await asyncio.sleep(0.12)
        handler.assert_not_awaited()

        await asyncio.sleep(0.25)
        handler.assert_awaited_once()
        assert handler.await_args.args[0].transcript == "first second"
        await buffer.close()

    @pytest.mark.asyncio
    async def test_periodic_flush(self):
        handler = _handler()
        buffer = CaptureBuffer(handler, FlushPolicy(periodic_interval=0.05, silence_timeout=None))
        session = buffer.start_session()

        buffer.append(session.session_id, "Alice Smith: agenda")
        await asyncio.sleep(0.2)

        # Later ticks find an empty buffer and do nothing
        handler.assert_awaited_once()
        await buffer.close()

    @pytest.mark.asyncio
    async def test_concurrent_flush_is_dropped(self):
        release = asyncio.Event()
        calls = []

        async def slow_handler(payload):
            calls.append(payload.transcript)
            await release.wait()
            return DispatchResult(success=True, tasks_created=1)

        buffer = CaptureBuffer(slow_handler, MANUAL_ONLY)
        session = buffer.start_session()
        buffer.append(session.session_id, "first")

        first = asyncio.ensure_future(buffer.flush(session.session_id))
        await asyncio.sleep(0.01)
        assert session.in_flight

        buffer.append(session.session_id, "second")
        assert await buffer.flush(session.session_id) is None

        release.set()
        assert (await first).success
        assert not session.in_flight

        await buffer.flush(session.session_id)
        assert calls == ["first", "second"]
        await buffer.close()

    @pytest.mark.asyncio
    async def test_end_session_flushes_remainder(self):
        handler = _handler(tasks_created=2)
        buffer = CaptureBuffer(handler, MANUAL_ONLY)
        session = buffer.start_session()
        buffer.append(session.session_id, "last words")

        result = await buffer.end_session(session.session_id)

        assert result.tasks_created == 2
        assert buffer.get_session(session.session_id) is None
        with pytest.raises(KeyError):
            buffer.append(session.session_id, "too late")

    @pytest.mark.asyncio
    async def test_end_session_without_flush(self):
        handler = _handler()
        buffer = CaptureBuffer(handler, MANUAL_ONLY)
        session = buffer.start_session()
        buffer.append(session.session_id, "discarded")

        assert await buffer.end_session(session.session_id, flush=False) is None
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_end_session_waits_for_in_flight_flush(self):
        release = asyncio.Event()
        calls = []

        async def slow_handler(payload):
            calls.append(payload.transcript)
            await release.wait()
            return DispatchResult(success=True)

        buffer = CaptureBuffer(slow_handler, MANUAL_ONLY)
        session = buffer.start_session()
        buffer.append(session.session_id, "first")
        first = asyncio.ensure_future(buffer.flush(session.session_id))
        await asyncio.sleep(0.01)
        buffer.append(session.session_id, "late")

        ending = asyncio.ensure_future(buffer.end_session(session.session_id))
        await asyncio.sleep(0.01)
        release.set()
        await first
        await ending

        assert calls == ["first", "late"]

    @pytest.mark.asyncio
    async def test_handler_error_reported(self):
        handler = AsyncMock(side_effect=UpstreamServiceError("timeout", provider="google"))
        buffer = CaptureBuffer(handler, MANUAL_ONLY)
        session = buffer.start_session()
        buffer.append(session.session_id, "Alice Smith: hello")

        result = await buffer.flush(session.session_id)

        assert result.success is False
        assert result.error == "timeout"
        assert not session.in_flight
        await buffer.close()

    @pytest.mark.asyncio
    async def test_close_flushes_every_session(self):
        handler = _handler()
        buffer = CaptureBuffer(handler, MANUAL_ONLY)
        for name in ("a", "b"):
            session = buffer.start_session(session_id=name)
            buffer.append(session.session_id, f"text for {name}")

        await buffer.close()

        assert handler.await_count == 2
        assert buffer.sessions == {}
