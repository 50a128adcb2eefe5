"""
Capture Buffer

Accumulates text fragments from a live capture channel (meeting captions,
chat pollers) and flushes them to the dispatcher in batches.

Flush triggers:
- periodic: ``periodic_interval`` seconds after the last flush, regardless of activity
- silence: ``silence_timeout`` seconds after the last accepted fragment
- explicit: flush() or end_session()

At most one flush is in flight per session; extra triggers are dropped,
and fragments keep accumulating for the next flush.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..common.errors import PipelineError
from ..common.schemas import SourceType, utc_now

logger = logging.getLogger("comedia.scribe.capture_buffer")

_SPEAKER_NAME_RE = re.compile(r"([A-Z][a-z]+ [A-Z][a-z]+):")


@dataclass
class FlushPolicy:
    periodic_interval: Optional[float] = 30.0
    silence_timeout: Optional[float] = 5.0  # None disables silence flushing

    @classmethod
    def slow_polling(cls, interval: float = 120.0) -> "FlushPolicy":
        """Policy for sources polled every few minutes (no silence timer)"""
        return cls(periodic_interval=interval, silence_timeout=None)


@dataclass
class FlushPayload:
    """Batch handed to the dispatcher"""
    meeting_title: str
    transcript: str
    speakers: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    source_type: SourceType = SourceType.GOOGLE_MEET
    session_id: Optional[str] = None


@dataclass
class DispatchResult:
    success: bool
    tasks_created: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


FlushHandler = Callable[[FlushPayload], Awaitable[DispatchResult]]


@dataclass
class CaptureSession:
    """Per-channel capture state, owned by the CaptureBuffer registry"""
    session_id: str
    source_type: SourceType = SourceType.GOOGLE_MEET
    title: str = ""
    policy: FlushPolicy = field(default_factory=FlushPolicy)
    fragments: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    last_flush_at: Optional[datetime] = None
    in_flight: bool = False

    _silence_handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    _periodic_task: Optional[asyncio.Task] = field(default=None, repr=False)
    _idle: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def __post_init__(self):
        self._idle.set()

    def append(self, fragment: str) -> bool:
        """
        Buffer a fragment.

        Returns False for empty text and for a repeat of the immediately
        preceding fragment (caption widgets re-emit the same line).
        """
        text = (fragment or "").strip()
        if not text:
            return False
        if self.fragments and self.fragments[-1] == text:
            return False
        self.fragments.append(text)
        return True

    def drain(self) -> str:
        text = " ".join(self.fragments)
        self.fragments = []
        return text

    @property
    def buffered(self) -> int:
        return len(self.fragments)


def extract_speakers(text: str) -> List[str]:
    """Names written as ``First Last:`` in the text, unique, in order"""
    speakers: List[str] = []
    for name in _SPEAKER_NAME_RE.findall(text or ""):
        if name not in speakers:
            speakers.append(name)
    return speakers


class CaptureBuffer:
    """
    Registry of capture sessions bound to one asyncio event loop.

    Usage:
        buffer = CaptureBuffer(dispatcher.handle_flush)
        session = buffer.start_session(SourceType.ZOOM, title="Weekly sync")
        buffer.append(session.session_id, "Alice Smith: I'll send the deck")
        ...
        await buffer.end_session(session.session_id)
    """

    def __init__(self, flush_handler: FlushHandler, policy: Optional[FlushPolicy] = None):
        self._flush_handler = flush_handler
        self._policy = policy or FlushPolicy()
        self._sessions: Dict[str, CaptureSession] = {}
        self._background: Set[asyncio.Task] = set()

    @property
    def sessions(self) -> Dict[str, CaptureSession]:
        return dict(self._sessions)

    def get_session(self, session_id: str) -> Optional[CaptureSession]:
        return self._sessions.get(session_id)

    def start_session(
        self,
        source_type: SourceType = SourceType.GOOGLE_MEET,
        title: str = "",
        session_id: Optional[str] = None,
        policy: Optional[FlushPolicy] = None,
    ) -> CaptureSession:
        """Open a session. Must be called from within the running event loop."""
        session_id = session_id or str(uuid.uuid4())
        if session_id in self._sessions:
            raise ValueError(f"Capture session already exists: {session_id}")

        session = CaptureSession(
            session_id=session_id,
            source_type=source_type,
            title=title or "Untitled Meeting",
            policy=policy or self._policy,
        )
        self._sessions[session_id] = session

        if session.policy.periodic_interval:
            loop = asyncio.get_running_loop()
            session._periodic_task = loop.create_task(self._periodic_flush(session))

        logger.info("Capture session %s started (%s)", session_id, source_type.value)
        return session

    def append(self, session_id: str, fragment: str) -> bool:
        """
        Add a fragment to a session.

        Raises:
            KeyError: unknown session
        """
        session = self._require(session_id)
        accepted = session.append(fragment)
        if accepted:
            self._restart_silence_timer(session)
        return accepted

    async def flush(self, session_id: str) -> Optional[DispatchResult]:
        """
        Flush a session now.

        Returns None when there was nothing to flush or a flush was already
        in flight.

        Raises:
            KeyError: unknown session
        """
        return await self._flush_session(self._require(session_id))

    async def end_session(self, session_id: str, flush: bool = True) -> Optional[DispatchResult]:
        """Stop timers, remove the session and flush whatever is left."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise KeyError(session_id)

        self._cancel_timers(session)
        logger.info("Capture session %s ended", session_id)

        if not flush:
            return None
        # Let a running flush finish so late fragments go out in the final one
        await session._idle.wait()
        return await self._flush_session(session)

    async def close(self) -> None:
        """End every session and wait for pending flushes."""
        for session_id in list(self._sessions):
            await self.end_session(session_id)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _require(self, session_id: str) -> CaptureSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        return session

    async def _flush_session(self, session: CaptureSession) -> Optional[DispatchResult]:
        if session.in_flight:
            logger.debug("Flush already in flight for %s, dropping trigger", session.session_id)
            return None
        if not session.fragments:
            return None

        if session._silence_handle is not None:
            session._silence_handle.cancel()
            session._silence_handle = None

        transcript = session.drain()
        session.last_flush_at = utc_now()
        payload = FlushPayload(
            meeting_title=session.title,
            transcript=transcript,
            speakers=extract_speakers(transcript),
            timestamp=session.last_flush_at,
            source_type=session.source_type,
            session_id=session.session_id,
        )

        session.in_flight = True
        session._idle.clear()
        try:
            result = await self._flush_handler(payload)
        except PipelineError as e:
            logger.error("Flush failed for session %s: %s", session.session_id, e)
            result = DispatchResult(success=False, error=str(e))
        finally:
            session.in_flight = False
            session._idle.set()

        logger.info(
            "Flushed session %s: success=%s tasks_created=%d",
            session.session_id, result.success, result.tasks_created,
        )
        return result

    def _restart_silence_timer(self, session: CaptureSession) -> None:
        if session._silence_handle is not None:
            session._silence_handle.cancel()
            session._silence_handle = None

        timeout = session.policy.silence_timeout
        if timeout is None:
            return

        loop = asyncio.get_running_loop()
        session._silence_handle = loop.call_later(timeout, self._on_silence, session)

    def _on_silence(self, session: CaptureSession) -> None:
        session._silence_handle = None
        if self._sessions.get(session.session_id) is not session:
            return
        logger.debug("Silence timeout for session %s", session.session_id)
        self._spawn(self._flush_session(session))

    async def _periodic_flush(self, session: CaptureSession) -> None:
        """Flush once periodic_interval has elapsed since the last flush"""
        interval = session.policy.periodic_interval
        while True:
            last = session.last_flush_at or session.started_at
            remaining = interval - (utc_now() - last).total_seconds()
            if remaining <= 0:
                # Spawned so that ending the session never cancels a running flush
                self._spawn(self._flush_session(session))
                remaining = interval
            await asyncio.sleep(remaining)

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @staticmethod
    def _cancel_timers(session: CaptureSession) -> None:
        if session._silence_handle is not None:
            session._silence_handle.cancel()
            session._silence_handle = None
        if session._periodic_task is not None:
            session._periodic_task.cancel()
            session._periodic_task = None
