"""Session store module for copbot.

The persistence collaborator: chat session records plus a live query
that pushes each user's full session list whenever it changes.
"""

from .base import LiveQueryHub, SessionStore, Subscription
from .factory import create_session_store
from .in_memory import InMemorySessionStore
from .models import ChatSession, Message, Sender, new_message_id, order_sessions

__all__ = [
    "ChatSession",
    "InMemorySessionStore",
    "LiveQueryHub",
    "Message",
    "Sender",
    "SessionStore",
    "Subscription",
    "create_session_store",
    "new_message_id",
    "order_sessions",
]
