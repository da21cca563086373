"""Conversation memory: chat sessions and the session table."""
from siasef.memory.sessions import (
    ChatSession,
    InMemorySessionStore,
    SessionStore,
    get_or_create_session,
)

__all__ = ["ChatSession", "InMemorySessionStore", "SessionStore", "get_or_create_session"]
