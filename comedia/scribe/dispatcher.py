"""
Dispatcher

Runs the extraction pipeline for one unit of input and persists the result:

    normalize -> extract -> deduplicate -> promote -> TaskStore.upsert

Three entry points:
- handle_flush: Capture Buffer callback, never raises, returns DispatchResult
- process_transcript: single-shot, surfaces the first error
- process_messages: batch over handler Messages, returns BatchReport
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Set

from ..common.errors import PersistenceError, PipelineError, ValidationError
from ..common.schemas import DEFAULT_RECURRENCE_DAYS, ExtractedTaskCandidate, SourceReference, SourceType, Task
from ..common.task_store import TaskStore
from .capture_buffer import DispatchResult, FlushPayload
from .classifiers import ACTION_ITEM_MATCHER
from .deduplicator import DEFAULT_SIMILARITY_THRESHOLD, deduplicate
from .extractor import ExtractionSource, SourceMetadata, TaskExtractor, adjust_confidence
from .handlers.base import Message
from .normalizer import clean_transcript, extract_participants

logger = logging.getLogger("comedia.scribe.dispatcher")


@dataclass
class BatchReport:
    """Aggregate counts for a batch run"""
    processed: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Dispatcher:
    """
    Two-phase writer: tasks are built locally, then upserted one at a time.
    The task returned by the store is authoritative.
    """

    def __init__(
        self,
        extractor: TaskExtractor,
        store: TaskStore,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        recurrence_days: int = DEFAULT_RECURRENCE_DAYS,
        boost_confidence: bool = False,
    ):
        self._extractor = extractor
        self._store = store
        self._similarity_threshold = similarity_threshold
        self._recurrence_days = recurrence_days
        self._boost_confidence = boost_confidence

    @property
    def store(self) -> TaskStore:
        return self._store

    # ------------------------------------------------------------------
    # Capture path
    # ------------------------------------------------------------------

    async def handle_flush(self, payload: FlushPayload) -> DispatchResult:
        """Process one capture flush. Errors are reported, not raised."""
        source = ExtractionSource(
            content=clean_transcript(payload.transcript),
            source_type=payload.source_type,
            metadata=SourceMetadata(
                subject=payload.meeting_title,
                date=payload.timestamp.isoformat(),
                participants=list(payload.speakers),
            ),
        )
        reference = SourceReference(
            meeting_id=payload.session_id,
            snippet=payload.transcript,
        )

        try:
            created = await self._run(source, reference, batch=False)
        except ValidationError as e:
            logger.debug("Nothing to extract from flush of %r: %s", payload.meeting_title, e)
            return DispatchResult(success=True, tasks_created=0)
        except PipelineError as e:
            logger.error("Dispatch failed for %r: %s", payload.meeting_title, e)
            return DispatchResult(success=False, tasks_created=0, error=str(e))

        return DispatchResult(success=True, tasks_created=len(created))

    # ------------------------------------------------------------------
    # Single-shot path
    # ------------------------------------------------------------------

    async def process_transcript(
        self,
        transcript: str,
        source_type: SourceType = SourceType.MANUAL,
        title: Optional[str] = None,
        participants: Optional[List[str]] = None,
        transcript_id: Optional[str] = None,
    ) -> List[Task]:
        """
        Extract and store tasks from a whole transcript.

        Returns the stored tasks (empty when there was nothing to extract).

        Raises:
            UpstreamServiceError, MalformedResponseError, PersistenceError
        """
        cleaned = clean_transcript(transcript)
        source = ExtractionSource(
            content=cleaned,
            source_type=source_type,
            metadata=SourceMetadata(
                subject=title,
                participants=participants if participants is not None else extract_participants(cleaned),
            ),
        )
        reference = SourceReference(transcript_id=transcript_id, snippet=cleaned)

        try:
            return await self._run(source, reference, batch=False)
        except ValidationError as e:
            logger.info("Nothing to extract: %s", e)
            return []

    # ------------------------------------------------------------------
    # Batch path
    # ------------------------------------------------------------------

    async def process_messages(self, messages: Sequence[Message]) -> BatchReport:
        """
        Extract tasks from many messages.

        Messages already referenced by a stored task are skipped. A failing
        message is counted and logged; the batch continues.
        """
        report = BatchReport()
        known = self._known_references()

        for message in messages:
            report.processed += 1
            if message.message_id in known:
                logger.debug("Skipping already processed message %s", message.message_id)
                report.skipped += 1
                continue

            try:
                created = await self._run(
                    self._source_for(message),
                    self._reference_for(message),
                    batch=True,
                )
            except ValidationError:
                report.skipped += 1
                continue
            except PipelineError as e:
                logger.error("Error processing message %s: %s", message.message_id, e)
                report.errors += 1
                continue

            if created:
                report.created += len(created)
                known.add(message.message_id)
            else:
                report.skipped += 1

        logger.info(
            "Batch complete: processed=%d created=%d skipped=%d errors=%d",
            report.processed, report.created, report.skipped, report.errors,
        )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(
        self,
        source: ExtractionSource,
        reference: SourceReference,
        batch: bool,
    ) -> List[Task]:
        result = await self._extractor.aextract(source)
        if not result.tasks:
            return []

        unique = deduplicate(result.tasks, self._store.list(), self._similarity_threshold)

        stored = []
        for candidate in unique:
            if self._boost_confidence:
                candidate = self._boosted(candidate)
            task = candidate.to_task(source.source_type.task_source, source_reference=reference)
            task.recurrence_days = self._recurrence_days
            try:
                stored.append(self._store.upsert(task))
            except PersistenceError as e:
                if not batch:
                    raise
                logger.error("Failed to store task %r: %s", task.title, e)

        logger.info(
            "Created %d of %d extracted tasks (%s)",
            len(stored), len(result.tasks), source.source_type.value,
        )
        return stored

    @staticmethod
    def _boosted(candidate: ExtractedTaskCandidate) -> ExtractedTaskCandidate:
        """Raise confidence for a stated deadline or an explicit request"""
        has_deadline = bool(candidate.due_date or (candidate.context and candidate.context.deadline))
        explicit = ACTION_ITEM_MATCHER.matches(f"{candidate.title} {candidate.description}")
        score = adjust_confidence(candidate, has_deadline=has_deadline, explicit_action=explicit)
        return candidate.model_copy(update={"confidence": score})

    def _known_references(self) -> Set[str]:
        known = set()
        for task in self._store.list():
            ref = task.source_reference
            if ref is None:
                continue
            for value in (ref.email_id, ref.message_id):
                if value:
                    known.add(value)
        return known

    @staticmethod
    def _source_for(message: Message) -> ExtractionSource:
        date = message.date
        if date is None and message.datetime is not None:
            date = message.datetime.isoformat()
        return ExtractionSource(
            content=clean_transcript(message.text),
            source_type=message.source_type,
            metadata=SourceMetadata(
                from_=message.user or None,
                subject=message.subject,
                date=date,
                participants=[message.user] if message.user else [],
                url=message.url,
            ),
        )

    @staticmethod
    def _reference_for(message: Message) -> SourceReference:
        if message.source_type is SourceType.GMAIL:
            return SourceReference(
                email_id=message.message_id,
                original_url=message.url,
                snippet=message.text,
            )
        return SourceReference(
            message_id=message.message_id,
            original_url=message.url,
            snippet=message.text,
        )
