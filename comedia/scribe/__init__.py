"""
Comedia Scribe

Capture-to-task pipeline: buffers live text, extracts task candidates with a
text-generation service, drops duplicates and stores the rest as incoming
tasks.
"""

from .capture_buffer import (
    CaptureBuffer,
    CaptureSession,
    DispatchResult,
    FlushPayload,
    FlushPolicy,
    extract_speakers,
)
from .classifiers import StatementMatcher, RegexMatcher, classify
from .deduplicator import deduplicate, is_duplicate, title_similarity, levenshtein_distance
from .dispatcher import BatchReport, Dispatcher
from .extractor import (
    CONFIDENCE_FLOOR,
    ExtractionResult,
    ExtractionSource,
    SourceMetadata,
    TaskExtractor,
    build_extraction_prompt,
)
from .normalizer import ParsedTranscript, clean_transcript, is_valid_transcript, parse_transcript

__all__ = [
    "CaptureBuffer",
    "CaptureSession",
    "DispatchResult",
    "FlushPayload",
    "FlushPolicy",
    "extract_speakers",
    "StatementMatcher",
    "RegexMatcher",
    "classify",
    "deduplicate",
    "is_duplicate",
    "title_similarity",
    "levenshtein_distance",
    "BatchReport",
    "Dispatcher",
    "CONFIDENCE_FLOOR",
    "ExtractionResult",
    "ExtractionSource",
    "SourceMetadata",
    "TaskExtractor",
    "build_extraction_prompt",
    "ParsedTranscript",
    "clean_transcript",
    "is_valid_transcript",
    "parse_transcript",
]
