"""
Source Handlers

Extensible handlers for different message sources.
Each handler converts source-specific events to a common Message format.

Available Handlers:
- SlackHandler: Slack Events API webhooks
- EmailHandler: Gmail API message resources
"""

from .base import BaseHandler, Message
from .email import EmailHandler
from .slack import SlackHandler

__all__ = [
    "BaseHandler",
    "Message",
    "EmailHandler",
    "SlackHandler",
]
