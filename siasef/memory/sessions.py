"""Conversation sessions for Si Asef.

Handles per-session chat history, the streamed reply of one turn, and the
process-wide table of active sessions.
"""
from abc import ABC, abstractmethod
from typing import AsyncGenerator, Callable, Dict, List, Optional
import structlog

from siasef.llm_client import LLMProvider
from siasef.models import Turn
from siasef.rag.prompt import SYSTEM_INSTRUCTION

logger = structlog.get_logger()


class ChatSession:
    """A conversation with the LLM, keyed by a client-issued session id."""

    def __init__(
        self,
        session_id: str,
        provider: LLMProvider,
        system_instruction: str = SYSTEM_INSTRUCTION,
    ):
        """Initialize the session.

        Args:
            session_id: Opaque id chosen by the client
            provider: Chat backend
            system_instruction: Fixed instruction sent with every turn
        """
        self.session_id = session_id
        self.provider = provider
        self.system_instruction = system_instruction
        self.history: List[Turn] = []

    async def stream_reply(
        self,
        prompt: str,
        on_complete: Optional[Callable[[str], None]] = None,
    ) -> AsyncGenerator[str, None]:
        """Stream the answer to ``prompt`` given the history so far.

        The history is snapshotted when the turn starts and the user and
        model turns are appended only after the provider stream completes.
        Two turns running at once on the same session therefore both see the
        same snapshot, and their entries land in completion order.

        Args:
            prompt: Text sent as the user turn (usually the augmented prompt)
            on_complete: Called with the full answer after a completed turn
        """
        snapshot = list(self.history)
        deltas = self.provider.chat_stream(snapshot, prompt, self.system_instruction)
        parts: List[str] = []

        try:
            async for delta in deltas:
                parts.append(delta)
                yield delta
        finally:
            # Stops the upstream request when the client goes away
            aclose = getattr(deltas, "aclose", None)
            if aclose is not None:
                await aclose()

        answer = "".join(parts)
        self.history.append(Turn("user", prompt))
        self.history.append(Turn("model", answer))

        logger.info(
            "chat_turn_completed",
            session_id=self.session_id,
            history_length=len(self.history),
            answer_length=len(answer),
        )

        if on_complete is not None:
            on_complete(answer)


class SessionStore(ABC):
    """Table of active chat sessions."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[ChatSession]:
        """Return the session, or None if absent."""

    @abstractmethod
    def put(self, session: ChatSession) -> None:
        """Register a session under its id, replacing any previous one."""

    @abstractmethod
    def invalidate(self, session_id: str) -> bool:
        """Drop one session. Returns True if it existed."""

    @abstractmethod
    def invalidate_all(self) -> int:
        """Drop every session, e.g. after the document corpus changed.

        Returns:
            Number of sessions dropped
        """

    @abstractmethod
    def __len__(self) -> int:
        ...


class InMemorySessionStore(SessionStore):
    """Process-lifetime session table without eviction."""

    def __init__(self):
        self._sessions: Dict[str, ChatSession] = {}

    def get(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def put(self, session: ChatSession) -> None:
        self._sessions[session.session_id] = session
        logger.info("chat_session_created", session_id=session.session_id)

    def invalidate(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("chat_session_invalidated", session_id=session_id)
        return removed

    def invalidate_all(self) -> int:
        count = len(self._sessions)
        self._sessions.clear()
        logger.info("chat_sessions_invalidated", count=count)
        return count

    def __len__(self) -> int:
        return len(self._sessions)


def get_or_create_session(
    store: SessionStore,
    session_id: str,
    provider: LLMProvider,
    system_instruction: str = SYSTEM_INSTRUCTION,
) -> ChatSession:
    """Return the active session for ``session_id``, creating it on first use."""
    session = store.get(session_id)
    if session is None:
        session = ChatSession(session_id, provider, system_instruction)
        store.put(session)
    return session
