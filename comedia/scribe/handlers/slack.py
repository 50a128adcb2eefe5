"""
Slack Handler

Turns Slack Events API callbacks into Messages for the batch path.
Edited messages are re-read, since an edit can add a commitment.
"""

import hashlib
import hmac
import re
import time
from typing import Any, Dict, Optional

from ...common.schemas import SourceType
from .base import BaseHandler, Message

SIGNATURE_VERSION = "v0"
MAX_REQUEST_AGE = 300  # seconds

_MENTION_RE = re.compile(r"<@(U[A-Z0-9]+)>")
_LINK_RE = re.compile(r"<https?://[^>]+>")

# Housekeeping subtypes that never carry a request
SKIPPED_SUBTYPES = frozenset({
    "bot_message",
    "channel_join",
    "channel_leave",
    "channel_name",
    "channel_purpose",
    "channel_topic",
    "message_deleted",
})


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    """``v0=`` HMAC-SHA256 over ``v0:<timestamp>:<body>``"""
    basestring = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), basestring, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def permalink(channel: str, ts: str) -> Optional[str]:
    if not channel or not ts:
        return None
    return f"https://slack.com/archives/{channel}/p{ts.replace('.', '')}"


class SlackHandler(BaseHandler):
    """Slack webhook events: new and edited channel/DM messages, no bots."""

    def __init__(self, signing_secret: str = ""):
        super().__init__(SourceType.SLACK)
        self._signing_secret = signing_secret

    async def parse_event(self, raw_data: Dict[str, Any]) -> Optional[Message]:
        if raw_data.get("type") != "event_callback":
            return None

        event = raw_data.get("event") or {}
        if event.get("type") != "message":
            return None

        if event.get("subtype") == "message_changed":
            # The edited message body is nested; channel stays on the event
            body = event.get("message") or {}
        else:
            if event.get("subtype") in SKIPPED_SUBTYPES:
                return None
            body = event

        if body.get("bot_id"):
            return None
        return self._to_message(event.get("channel", ""), body, event)

    def _to_message(self, channel: str, body: Dict[str, Any], event: Dict[str, Any]) -> Message:
        text = body.get("text", "")
        ts = body.get("ts", "")
        return Message(
            text=text,
            user=body.get("user", ""),
            source_type=SourceType.SLACK,
            message_id=f"{channel}:{ts}",
            timestamp=ts,
            channel=channel,
            thread_id=body.get("thread_ts"),
            url=permalink(channel, ts),
            mentions=_MENTION_RE.findall(text),
            raw_data=event,
        )

    def verify_signature(self, body: bytes, signature: str, timestamp: str) -> bool:
        """
        Check X-Slack-Signature against the signing secret.

        Without a configured secret every request is accepted. Requests
        older than five minutes are rejected as replays.
        """
        if not self._signing_secret:
            return True
        if not signature or not timestamp:
            return False

        try:
            sent_at = int(timestamp)
        except ValueError:
            return False
        if abs(time.time() - sent_at) > MAX_REQUEST_AGE:
            return False

        expected = compute_signature(self._signing_secret, timestamp, body)
        return hmac.compare_digest(expected, signature)

    def should_process(self, message: Message) -> bool:
        if not super().should_process(message):
            return False
        # Nothing left once mentions and bare links are removed
        remainder = _LINK_RE.sub("", _MENTION_RE.sub("", message.text))
        return bool(remainder.strip())

    @staticmethod
    def is_url_verification(raw_data: Dict[str, Any]) -> bool:
        return raw_data.get("type") == "url_verification"

    def get_challenge(self, raw_data: Dict[str, Any]) -> Optional[str]:
        if not self.is_url_verification(raw_data):
            return None
        return raw_data.get("challenge")
