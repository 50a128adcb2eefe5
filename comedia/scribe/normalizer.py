"""
Text Normalizer

Cleans raw capture blobs and splits them into speaker-attributed statements.

- clean_transcript: strip timestamps, collapse whitespace, drop blank lines
- is_valid_transcript: permissive minimum-length gate
- parse_transcript: speaker attribution plus advisory statement labels
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .classifiers import (
    ACTION_ITEM,
    DECISION,
    QUESTION,
    StatementMatcher,
    default_matchers,
)


UNKNOWN_SPEAKER = "Unknown"
MIN_TRANSCRIPT_LENGTH = 10

# [00:01:23] or [01:23]
_TIMESTAMP_RE = re.compile(r"\[(?:\d{1,2}:)?\d{1,2}:\d{2}\]")
_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
# Any short prefix before the first colon is a speaker ("Action item: x" too),
# except a URL scheme
_SPEAKER_RE = re.compile(r"^([^:]{1,50}):(?!//)\s*(.+)$")


@dataclass
class ParsedTranscript:
    """Speakers in first-seen order, each mapped to their statements"""
    speakers: Dict[str, List[str]] = field(default_factory=dict)
    labels: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def action_items(self) -> List[str]:
        return self.labels.get(ACTION_ITEM, [])

    @property
    def decisions(self) -> List[str]:
        return self.labels.get(DECISION, [])

    @property
    def questions(self) -> List[str]:
        return self.labels.get(QUESTION, [])

    @property
    def participants(self) -> List[str]:
        return [name for name in self.speakers if name != UNKNOWN_SPEAKER]

    def format_summary(self) -> str:
        """Markdown summary for display"""
        sections = []

        if self.speakers:
            lines = ["**Participants:**"]
            for speaker, statements in self.speakers.items():
                lines.append(f"- {speaker} ({len(statements)} statements)")
            sections.append("\n".join(lines))

        for title, items in (
            ("Action Items", self.action_items),
            ("Decisions", self.decisions),
            ("Questions", self.questions),
        ):
            if items:
                sections.append("\n".join([f"**{title}:**"] + [f"- {item}" for item in items]))

        return "\n\n".join(sections)


def clean_transcript(raw: str) -> str:
    """Remove timestamps and formatting artifacts, keeping one statement per line."""
    if not raw:
        return ""

    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = _TIMESTAMP_RE.sub("", text)

    lines = []
    for line in text.split("\n"):
        line = _HORIZONTAL_WS_RE.sub(" ", line).strip()
        if line:
            lines.append(line)
    return "\n".join(lines)


def is_valid_transcript(text: Optional[str]) -> bool:
    """
    Very lenient: at least 10 characters of content.

    A false negative only means nothing is extracted and a false positive
    only means extraction returns zero tasks.
    """
    if not text:
        return False
    return len(text.strip()) >= MIN_TRANSCRIPT_LENGTH


def parse_transcript(
    text: str,
    matchers: Optional[Sequence[StatementMatcher]] = None,
) -> ParsedTranscript:
    """
    Split text into lines and attribute ``Name: statement`` lines to speakers.

    Lines without a speaker prefix are kept under ``Unknown`` only until the
    first attributed line appears; after that they are treated as noise.
    Only attributed statements are labelled.
    """
    if matchers is None:
        matchers = default_matchers()

    parsed = ParsedTranscript()
    seen_attributed = False

    for line in text.split("\n"):
        line = line.strip()
        if not line:
            continue

        match = _SPEAKER_RE.match(line)
        if match:
            speaker = match.group(1).strip()
            statement = match.group(2).strip()
            seen_attributed = True
        elif not seen_attributed:
            speaker = UNKNOWN_SPEAKER
            statement = line
        else:
            continue

        parsed.speakers.setdefault(speaker, []).append(statement)
        if speaker == UNKNOWN_SPEAKER:
            continue

        for matcher in matchers:
            if matcher.matches(statement):
                parsed.labels.setdefault(matcher.category, []).append(f"{speaker}: {statement}")

    return parsed


def extract_participants(text: str) -> List[str]:
    """Named speakers of a transcript, in first-seen order"""
    return parse_transcript(text).participants
