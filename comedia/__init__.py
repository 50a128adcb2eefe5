"""
Comedia Agents

Turns text captured from live communication channels (meeting captions,
chat threads, email bodies) into de-duplicated task records with a
self-expiring lifecycle.

Pipeline:
- Capture Buffer: accumulates caption fragments, flushes on silence or timer
- Normalizer: cleans transcripts and attributes statements to speakers
- Extractor: asks a text-generation service for candidate tasks
- Deduplicator: drops candidates that restate an existing task
- Recurrence: returns completed tasks to the queue after a cool-down

Usage:
    from comedia.common import load_config, LLMClient
    from comedia.common.schemas import Task, ExtractedTaskCandidate
    from comedia.scribe import CaptureBuffer, TaskExtractor, Dispatcher
    from comedia.lifecycle import RecurrenceEngine
"""

__version__ = "0.1.0"
