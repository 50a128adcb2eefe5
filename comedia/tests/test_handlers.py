"""Tests for Slack and Gmail message handlers."""

import base64
import hashlib
import hmac
import time

import pytest

from comedia.common.schemas import SourceType
from comedia.scribe.handlers import EmailHandler, Message, SlackHandler
from comedia.scribe.handlers.email import decode_base64url, find_text_part, get_header


def _b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _gmail_message(body_text=None, parts=None, snippet="snippet text"):
    payload = {
        "headers": [
            {"name": "Subject", "value": "Contract"},
            {"name": "From", "value": "Jennifer <jen@example.com>"},
            {"name": "Date", "value": "Mon, 8 Dec 2025 09:00:00 +0000"},
        ],
    }
    if body_text is not None:
        payload["body"] = {"data": _b64(body_text)}
    if parts is not None:
        payload["parts"] = parts
    return {"id": "msg-1", "threadId": "thr-1", "snippet": snippet, "payload": payload}


def _slack_event(text="Can you send the Q4 numbers before Friday's review?", **event_fields):
    event = {"type": "message", "user": "U123", "text": text, "channel": "C42", "ts": "1700000000.000100"}
    event.update(event_fields)
    return {"type": "event_callback", "team_id": "T1", "event": event}


class TestEmailHelpers:
    def test_get_header_case_insensitive(self):
        headers = [{"name": "Subject", "value": "Hi"}]
        assert get_header(headers, "subject") == "Hi"
        assert get_header(headers, "from") == ""

    def test_decode_base64url(self):
        assert decode_base64url(_b64("héllo?>")) == "héllo?>"
        assert decode_base64url(None) == ""

    def test_find_nested_text_part(self):
        parts = [
            {"mimeType": "multipart/alternative", "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>html</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("plain body")}},
            ]},
        ]
        assert find_text_part(parts) == "plain body"
        assert find_text_part(None) == ""


class TestEmailHandler:
    @pytest.mark.asyncio
    async def test_builds_header_block(self):
        message = await EmailHandler().parse_event(_gmail_message(body_text="Please sign by Friday."))

        assert message.source_type == SourceType.GMAIL
        assert message.message_id == "msg-1"
        assert message.thread_id == "thr-1"
        assert message.subject == "Contract"
        assert message.user == "Jennifer <jen@example.com>"
        assert message.text == (
            "Subject: Contract\n"
            "From: Jennifer <jen@example.com>\n"
            "Date: Mon, 8 Dec 2025 09:00:00 +0000\n"
            "\n"
            "Please sign by Friday."
        )
        assert message.url == "https://mail.google.com/mail/u/me/#inbox/msg-1"

    @pytest.mark.asyncio
    async def test_multipart_body(self):
        raw = _gmail_message(parts=[{"mimeType": "text/plain", "body": {"data": _b64("From parts")}}])
        message = await EmailHandler().parse_event(raw)
        assert message.text.endswith("From parts")

    @pytest.mark.asyncio
    async def test_snippet_fallback(self):
        message = await EmailHandler().parse_event(_gmail_message())
        assert message.text.endswith("snippet text")

    @pytest.mark.asyncio
    async def test_missing_id_ignored(self):
        assert await EmailHandler().parse_event({"payload": {}}) is None

    def test_no_signature_to_verify(self):
        assert EmailHandler().verify_signature(b"", "", "")


class TestSlackParsing:
    @pytest.mark.asyncio
    async def test_message_event(self):
        message = await SlackHandler().parse_event(_slack_event(text="<@U999> can you send the deck?"))

        assert message.source_type == SourceType.SLACK
        assert message.message_id == "C42:1700000000.000100"
        assert message.channel == "C42"
        assert message.mentions == ["U999"]
        assert message.url == "https://slack.com/archives/C42/p1700000000000100"

    @pytest.mark.asyncio
    async def test_message_changed_event(self):
        raw = _slack_event(subtype="message_changed", message={"text": "edited: send the deck", "user": "U123", "ts": "1.2"})
        message = await SlackHandler().parse_event(raw)
        assert message.text == "edited: send the deck"
        assert message.message_id == "C42:1.2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [
        {"bot_id": "B1"},
        {"subtype": "channel_join"},
        {"subtype": "bot_message"},
    ])
    async def test_ignored_events(self, fields):
        assert await SlackHandler().parse_event(_slack_event(**fields)) is None

    @pytest.mark.asyncio
    async def test_non_callback_ignored(self):
        assert await SlackHandler().parse_event({"type": "url_verification", "challenge": "abc"}) is None

    def test_url_verification(self):
        handler = SlackHandler()
        data = {"type": "url_verification", "challenge": "abc"}
        assert handler.is_url_verification(data)
        assert handler.get_challenge(data) == "abc"
        assert handler.get_challenge({"type": "event_callback"}) is None


class TestSlackFiltering:
    def _msg(self, text, is_bot=False):
        return Message(text=text, user="U1", source_type=SourceType.SLACK, message_id="m", is_bot=is_bot)

    def test_regular_message_processed(self):
        assert SlackHandler().should_process(self._msg("Can you send the deck by Friday?"))

    @pytest.mark.parametrize("text", ["", "ok", "<@U12345> <@U67890>", "<https://example.com/a/very/long/link>"])
    def test_filtered(self, text):
        assert not SlackHandler().should_process(self._msg(text))

    def test_bot_filtered(self):
        assert not SlackHandler().should_process(self._msg("Automated reminder to file expenses", is_bot=True))


class TestSlackSignature:
    SECRET = "shhh"

    def _sign(self, body, timestamp):
        base = f"v0:{timestamp}:{body.decode('utf-8')}"
        return "v0=" + hmac.new(self.SECRET.encode(), base.encode(), hashlib.sha256).hexdigest()

    def test_valid_signature(self):
        body = b'{"type": "event_callback"}'
        ts = str(int(time.time()))
        assert SlackHandler(self.SECRET).verify_signature(body, self._sign(body, ts), ts)

    def test_tampered_body(self):
        ts = str(int(time.time()))
        signature = self._sign(b"original", ts)
        assert not SlackHandler(self.SECRET).verify_signature(b"tampered", signature, ts)

    def test_stale_timestamp(self):
        body = b"{}"
        ts = str(int(time.time()) - 600)
        assert not SlackHandler(self.SECRET).verify_signature(body, self._sign(body, ts), ts)

    def test_missing_headers(self):
        assert not SlackHandler(self.SECRET).verify_signature(b"{}", "", "")

    def test_no_secret_skips_verification(self):
        assert SlackHandler().verify_signature(b"{}", "", "")


class TestMessage:
    def test_datetime(self):
        message = Message(text="x", user="u", source_type=SourceType.SLACK, message_id="m", timestamp="1700000000.5")
        assert message.datetime.year == 2023
        assert Message(text="x", user="u", source_type=SourceType.GMAIL, message_id="m").datetime is None
