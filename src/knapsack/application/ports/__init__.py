"""Application ports - protocols and interfaces."""

from .backend import Backend
from .llm import CompletionClient, CompletionRequest
from .message_bus import MessageBus
from .notifications import MEETING_BUTTONS, NotificationBridge, NotificationButton
from .web_search import WebSearch

__all__ = [
    "MEETING_BUTTONS",
    "Backend",
    "CompletionClient",
    "CompletionRequest",
    "MessageBus",
    "NotificationBridge",
    "NotificationButton",
    "WebSearch",
]
