"""
Base Handler

A handler turns one source's raw payloads (webhook events, API message
resources) into Messages the dispatcher can run through extraction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ...common.schemas import SourceType
from ..normalizer import MIN_TRANSCRIPT_LENGTH


@dataclass
class Message:
    """Source-independent unit of text handed to the dispatcher"""
    text: str
    user: str
    source_type: SourceType
    message_id: str  # provenance id: Gmail message id or "<channel>:<ts>"
    timestamp: str = ""
    channel: str = ""
    subject: Optional[str] = None
    date: Optional[str] = None
    thread_id: Optional[str] = None
    url: Optional[str] = None
    is_bot: bool = False
    mentions: List[str] = field(default_factory=list)
    raw_data: Optional[Dict[str, Any]] = None

    @property
    def datetime(self) -> Optional[datetime]:
        """Epoch-seconds timestamp as an aware UTC datetime"""
        try:
            return datetime.fromtimestamp(float(self.timestamp), tz=timezone.utc)
        except (ValueError, TypeError):
            return None

    @property
    def is_valid(self) -> bool:
        return bool(self.text and self.text.strip())


class BaseHandler(ABC):
    def __init__(self, source_type: SourceType):
        self.source_type = source_type

    @property
    def source_name(self) -> str:
        return self.source_type.value

    @abstractmethod
    async def parse_event(self, raw_data: Dict[str, Any]) -> Optional[Message]:
        """Return a Message, or None when the payload carries nothing to read."""

    @abstractmethod
    def verify_signature(self, body: bytes, signature: str, timestamp: str) -> bool:
        """Authenticate a webhook request. Pull-based sources return True."""

    def should_process(self, message: Message) -> bool:
        """Skip empty text, bot authors and text too short to hold a task."""
        if not message.is_valid or message.is_bot:
            return False
        return len(message.text.strip()) >= MIN_TRANSCRIPT_LENGTH
