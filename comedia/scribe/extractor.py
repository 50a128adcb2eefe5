"""
Task Extractor

Turns normalized text plus source metadata into a vetted list of
ExtractedTaskCandidate using a text-generation service.

Rules:
- Input shorter than 10 characters is rejected before any network call
- One attempt per provider: primary, then at most one fallback
- The response must contain a JSON array; no array means zero tasks
- Candidates below the confidence floor (40) are always dropped
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError as SchemaValidationError

from ..common.errors import (
    MalformedResponseError,
    PipelineError,
    UpstreamServiceError,
    ValidationError,
)
from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_json_array
from ..common.schemas import ExtractedTaskCandidate, SourceType
from .normalizer import is_valid_transcript

logger = logging.getLogger("comedia.scribe.extractor")

CONFIDENCE_FLOOR = 40
NO_ARRAY_DIAGNOSTIC = "No valid JSON array found in response"


EXTRACTION_PROMPT = """You are an expert task extraction AI. Analyze the following communication and extract ALL actionable tasks or commitments.

For each task, provide:
1. A clear, actionable title (start with a verb when possible)
2. Detailed description with context
3. Suggested due date (if mentioned, in ISO 8601 format)
4. Priority: high, medium, or low
5. Confidence score (0-100) based on how certain you are this is a genuine task

Guidelines:
- Only extract genuine action items that require follow-up
- Ignore greetings, sign-offs, and pleasantries
- Include tasks for both the sender and recipient
- For meetings, extract action items discussed
- Assign higher confidence (80+) to explicit tasks ("please do X", "I will Y")
- Assign medium confidence (60-79) to implied tasks
- Assign low confidence (40-59) to potential tasks that might need clarification
- Don't extract tasks with confidence below 40

Return ONLY a valid JSON array of tasks, no other text. Format:
[
  {{
    "title": "Review proposal document",
    "description": "Review the Q4 proposal that John sent and provide feedback by Friday",
    "dueDate": "2025-12-13",
    "priority": "high",
    "confidence": 85,
    "extractedContext": {{
      "participants": ["John"],
      "project": "Q4 Proposal",
      "deadline": "Friday",
      "tags": ["review", "proposal"]
    }}
  }}
]

{metadata}

Content:
{content}

Extract tasks as JSON array:"""


@dataclass
class SourceMetadata:
    """Optional context about where the content came from"""
    from_: Optional[str] = None
    subject: Optional[str] = None
    date: Optional[str] = None
    participants: List[str] = field(default_factory=list)
    url: Optional[str] = None


@dataclass
class ExtractionSource:
    content: str
    source_type: SourceType = SourceType.MANUAL
    metadata: SourceMetadata = field(default_factory=SourceMetadata)


@dataclass
class ExtractionResult:
    """Result of one extraction call"""
    tasks: List[ExtractedTaskCandidate] = field(default_factory=list)
    provider: str = ""
    raw_response: Optional[str] = None
    error: Optional[str] = None  # diagnostic, set when the response had no array


@dataclass
class BatchExtractionResult:
    results: List[ExtractionResult] = field(default_factory=list)
    total_tasks: int = 0
    errors: int = 0


def build_extraction_prompt(source: ExtractionSource) -> str:
    """Single instruction payload: task definition, guidelines, metadata, content."""
    meta = source.metadata
    lines = [f"Communication type: {source.source_type.value}"]
    if meta.from_:
        lines.append(f"From: {meta.from_}")
    if meta.subject:
        lines.append(f"Subject: {meta.subject}")
    if meta.date:
        lines.append(f"Date: {meta.date}")
    if meta.participants:
        lines.append(f"Participants: {', '.join(meta.participants)}")
    if meta.url:
        lines.append(f"URL: {meta.url}")

    return EXTRACTION_PROMPT.format(metadata="\n".join(lines), content=source.content)


def _raw_confidence(item: dict) -> Optional[float]:
    value = item.get("confidence")
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_candidates(
    raw: str,
    confidence_floor: int = CONFIDENCE_FLOOR,
) -> Tuple[List[ExtractedTaskCandidate], Optional[str]]:
    """
    Parse candidates out of a free-form response.

    Returns:
        (candidates, diagnostic). The diagnostic is set when no array span
        was found; the candidate list is then empty.

    Raises:
        MalformedResponseError: an array span exists but is not valid JSON
    """
    try:
        items = parse_llm_json_array(raw)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(
            f"Could not parse JSON array in response: {e}", raw_response=raw
        ) from e

    if items is None:
        return [], NO_ARRAY_DIAGNOSTIC

    candidates = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Skipping non-object candidate: %r", item)
            continue
        # Compare the score as sent; the model rounds it for storage
        score = _raw_confidence(item)
        if score is not None and score < confidence_floor:
            logger.debug("Dropping %r (confidence %s < %d)", item.get("title"), score, confidence_floor)
            continue
        try:
            candidate = ExtractedTaskCandidate.model_validate(item)
        except (SchemaValidationError, TypeError, ValueError) as e:
            logger.warning("Skipping invalid candidate: %s", e)
            continue
        if candidate.confidence < confidence_floor:
            continue
        candidates.append(candidate)

    return candidates, None


def adjust_confidence(
    candidate: ExtractedTaskCandidate,
    has_deadline: bool = False,
    from_known_contact: bool = False,
    explicit_action: bool = False,
) -> int:
    """Boost model confidence with context signals, capped at 100."""
    confidence = candidate.confidence
    if has_deadline:
        confidence = min(100, confidence + 5)
    if from_known_contact:
        confidence = min(100, confidence + 5)
    if explicit_action:
        confidence = min(100, confidence + 10)
    return round(confidence)


class TaskExtractor:
    """Extracts task candidates with a primary provider and an optional fallback."""

    def __init__(
        self,
        primary: LLMClient,
        fallback: Optional[LLMClient] = None,
        confidence_floor: int = CONFIDENCE_FLOOR,
    ):
        """
        Args:
            primary: Client tried first
            fallback: Client tried once if the primary raises UpstreamServiceError
            confidence_floor: Minimum accepted confidence (never below 40)
        """
        self._primary = primary
        self._fallback = fallback
        self._confidence_floor = max(CONFIDENCE_FLOOR, confidence_floor)

    @property
    def is_available(self) -> bool:
        if self._primary.is_available:
            return True
        return self._fallback is not None and self._fallback.is_available

    @property
    def confidence_floor(self) -> int:
        return self._confidence_floor

    def extract(self, source: ExtractionSource) -> ExtractionResult:
        """
        Extract candidates from a single source.

        Raises:
            ValidationError: content too short, nothing to extract
            UpstreamServiceError: primary failed and no fallback, or both failed
            MalformedResponseError: response array could not be parsed
        """
        if not is_valid_transcript(source.content):
            raise ValidationError("Nothing to extract: content is empty or shorter than 10 characters")

        prompt = build_extraction_prompt(source)
        raw, provider = self._generate(prompt)

        tasks, diagnostic = parse_candidates(raw, self._confidence_floor)
        if diagnostic:
            logger.warning("%s (provider=%s): %.200s", diagnostic, provider, raw)
        else:
            logger.info("Extracted %d candidates via %s", len(tasks), provider)

        return ExtractionResult(
            tasks=tasks,
            provider=provider,
            raw_response=raw,
            error=diagnostic,
        )

    async def aextract(self, source: ExtractionSource) -> ExtractionResult:
        """Run extract() off the event loop (provider SDKs block)."""
        return await asyncio.to_thread(self.extract, source)

    def batch_extract(self, sources: Sequence[ExtractionSource]) -> BatchExtractionResult:
        """Extract from many sources; one failing source never aborts the batch."""
        batch = BatchExtractionResult()
        for source in sources:
            try:
                result = self.extract(source)
            except ValidationError as e:
                result = ExtractionResult(error=str(e))
            except PipelineError as e:
                logger.error("Batch extraction error: %s", e)
                batch.errors += 1
                result = ExtractionResult(error=str(e))
            batch.results.append(result)
            batch.total_tasks += len(result.tasks)
        return batch

    def _generate(self, prompt: str) -> Tuple[str, str]:
        try:
            return self._primary.generate(prompt), self._primary.provider
        except UpstreamServiceError as e:
            if self._fallback is None:
                raise
            logger.warning(
                "%s failed (%s), trying %s as fallback",
                self._primary.provider, e, self._fallback.provider,
            )
        return self._fallback.generate(prompt), self._fallback.provider
