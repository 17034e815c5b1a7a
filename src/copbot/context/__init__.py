"""Conversation context module for copbot.

Holds the role-tagged transcripts sent to the completion collaborator.
"""

from .manager import ConversationContextManager

__all__ = ["ConversationContextManager"]
