"""
Email Handler

Converts Gmail API message resources (format=full) into Messages.

Content is assembled as a header block followed by the body:

    Subject: <subject>
    From: <from>
    Date: <date>

    <text/plain body, or the snippet when there is none>
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from ...common.schemas import SourceType
from .base import BaseHandler, Message

logger = logging.getLogger("comedia.scribe.handlers.email")


def get_header(headers: List[Dict[str, str]], name: str) -> str:
    """Case-insensitive header lookup, empty string when missing"""
    for header in headers or []:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def decode_base64url(data: Optional[str]) -> str:
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        logger.warning("Could not decode message body: %s", e)
        return ""


def find_text_part(parts: Optional[List[Dict[str, Any]]]) -> str:
    """Depth-first search for the first text/plain part with data"""
    for part in parts or []:
        data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == "text/plain" and data:
            return decode_base64url(data)
        nested = find_text_part(part.get("parts"))
        if nested:
            return nested
    return ""


class EmailHandler(BaseHandler):
    """Handler for Gmail messages fetched through the Gmail API"""

    def __init__(self, user: str = "me"):
        super().__init__(SourceType.GMAIL)
        self._user = user

    async def parse_event(self, raw_data: Dict[str, Any]) -> Optional[Message]:
        message_id = raw_data.get("id")
        if not message_id:
            return None

        payload = raw_data.get("payload") or {}
        headers = payload.get("headers") or []
        subject = get_header(headers, "subject")
        sender = get_header(headers, "from")
        date = get_header(headers, "date")

        body_data = (payload.get("body") or {}).get("data")
        body = decode_base64url(body_data) if body_data else find_text_part(payload.get("parts"))
        body = body or raw_data.get("snippet", "")

        text = f"Subject: {subject}\nFrom: {sender}\nDate: {date}\n\n{body}"

        return Message(
            text=text,
            user=sender,
            source_type=SourceType.GMAIL,
            message_id=message_id,
            subject=subject or None,
            date=date or None,
            thread_id=raw_data.get("threadId"),
            url=f"https://mail.google.com/mail/u/{self._user}/#inbox/{message_id}",
            raw_data=raw_data,
        )

    def verify_signature(
        self,
        body: bytes,
        signature: str,
        timestamp: str
    ) -> bool:
        # Messages are pulled through the API, there is no webhook to sign
        return True
