"""Conversation controller and state events."""

from memochat.agent.conversation import ConversationController, build_system_message
from memochat.agent.events import EventHub

__all__ = ["ConversationController", "EventHub", "build_system_message"]
