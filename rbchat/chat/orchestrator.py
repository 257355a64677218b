"""Conversation orchestrator — one user turn from input to final reply.

A turn runs through an explicit state machine::

    AWAITING_INPUT → KNOWLEDGE (optional) → DISPATCH ⇄ EXECUTE_TOOLS → AWAITING_INPUT

Knowledge lookup happens at most once per turn, before the first dispatch.
The dispatch/tool cycle is capped at ``max_tool_rounds`` dispatches. If a
dispatch fails or the turn is cancelled, the conversation is truncated back
to where it was when the turn started; hitting the round cap instead keeps
everything up to the last completed step.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from rbchat.chat.context import build_context_messages
from rbchat.chat.models import Conversation, Message, MessageKind, Session
from rbchat.chat.storage import default_session_name
from rbchat.errors import EmbeddingError, IterationLimitError, KnowledgeIndexError, SessionIOError
from rbchat.llm.base import SendOptions
from rbchat.tools.executor import ToolExecutor
from rbchat.tools.registry import registry as default_registry

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from rbchat.chat.models import ImagePart
    from rbchat.chat.persona import Persona
    from rbchat.chat.storage import SessionStore
    from rbchat.knowledge.store import KnowledgeStore
    from rbchat.llm.base import ChatBackend, UsageStats
    from rbchat.llm.models import ModelConfig

logger = logging.getLogger(__name__)

WISH_PREFIX = "Users wish: "


class TurnState(StrEnum):
    AWAITING_INPUT = "awaiting_input"
    KNOWLEDGE = "knowledge_augment"
    DISPATCH = "dispatch_to_backend"
    EXECUTE_TOOLS = "execute_tools"


class Orchestrator:
    """Drives one conversation against one backend.

    Everything it needs is passed in at construction; it reads no global
    configuration. ``executor`` defaults to a disabled executor, so tool
    calls are answered with errors unless tools were explicitly enabled.
    """

    def __init__(
        self,
        backend: ChatBackend,
        model: ModelConfig,
        persona: Persona,
        *,
        directories: Iterable[Path | str] = (),
        executor: ToolExecutor | None = None,
        knowledge: KnowledgeStore | None = None,
        use_knowledge: bool = False,
        knowledge_top_k: int = 10,
        sessions: SessionStore | None = None,
        offer_tools: bool = False,
        timeout: float = 30.0,
        max_tokens: int = 4096,
        max_tool_rounds: int = 10,
    ) -> None:
        if max_tool_rounds < 1:
            msg = "max_tool_rounds must be at least 1"
            raise ValueError(msg)
        self.backend = backend
        self.model = model
        self.persona = persona
        self.directories = list(directories)
        self.executor = executor or ToolExecutor(default_registry, enabled=False)
        self.knowledge = knowledge
        self.use_knowledge = use_knowledge
        self.knowledge_top_k = knowledge_top_k
        self.sessions = sessions
        self.offer_tools = offer_tools
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.max_tool_rounds = max_tool_rounds
        self.session_name: str | None = None

        self.conversation = Conversation([self._persona_message()])
        self._state = TurnState.AWAITING_INPUT

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def stats(self) -> UsageStats:
        return self.backend.stats

    # -- Context -----------------------------------------------------------

    def _persona_message(self) -> Message:
        return Message.system(self.persona.system_prompt, kind=MessageKind.PERSONA, origin=self.persona.name)

    def setup_context(self) -> None:
        """(Re)load the directory context right after the persona message.

        Existing context messages are dropped first; everything else stays
        in place.
        """
        rest = [m for m in self.conversation if m.info.kind not in (MessageKind.PERSONA, MessageKind.CONTEXT)]
        context = build_context_messages(self.directories, self.persona)
        self.conversation.replace([self._persona_message(), *context, *rest])

    def renew(self) -> None:
        """Reset to the persona message plus freshly read directory context."""
        self.conversation.replace([self._persona_message()])
        self.setup_context()
        logger.info("Conversation renewed: %d baseline message(s)", len(self.conversation))

    # -- Turns -------------------------------------------------------------

    async def send(
        self,
        text: str,
        images: Iterable[ImagePart] = (),
        *,
        offer_tools: bool | None = None,
    ) -> str:
        """Run one user turn and return the assistant's final text."""
        start = len(self.conversation)
        try:
            if self.use_knowledge:
                self._state = TurnState.KNOWLEDGE
                await self._augment(text)
            self.conversation.append(Message.user(text, images))
            return await self._tool_loop(self.offer_tools if offer_tools is None else offer_tools)
        except IterationLimitError:
            raise
        except BaseException:
            self.conversation.truncate(start)
            logger.info("Turn aborted, conversation rolled back to %d message(s)", start)
            raise
        finally:
            self._state = TurnState.AWAITING_INPUT

    async def wish(self, text: str) -> str:
        """Ask the backend to act on the project, with the file tools offered."""
        return await self.send(f"{WISH_PREFIX}{text}", offer_tools=True)

    async def _augment(self, query: str) -> None:
        if self.knowledge is None or not self.knowledge.available:
            return
        try:
            hits = await self.knowledge.search(query, self.knowledge_top_k)
        except KnowledgeIndexError:
            logger.warning("Knowledge index unusable, continuing without knowledge", exc_info=True)
            self.use_knowledge = False
            return
        except EmbeddingError:
            logger.warning("Knowledge lookup failed for this turn", exc_info=True)
            return

        for hit in hits:
            self.conversation.append(
                Message.system(hit.entry.text, kind=MessageKind.KNOWLEDGE, origin=hit.entry.source, score=hit.score)
            )
        logger.info("Injected %d knowledge entr(ies)", len(hits))

    async def _tool_loop(self, offer_tools: bool) -> str:
        options = SendOptions(
            model=self.model,
            timeout=self.timeout,
            tools=self.executor.registry.get_specs() if offer_tools and self.model.tools else [],
            vision=self.model.vision,
            max_tokens=self.max_tokens,
        )

        for round_num in range(self.max_tool_rounds):
            self._state = TurnState.DISPATCH
            turn = await self.backend.send(self.conversation.snapshot(), options)
            self.conversation.append(Message.assistant(turn, persona_name=self.persona.name))

            if not turn.tool_calls:
                return turn.text or ""

            logger.info(
                "Round %d: %d tool call(s): %s",
                round_num + 1,
                len(turn.tool_calls),
                ", ".join(c.name for c in turn.tool_calls),
            )
            self._state = TurnState.EXECUTE_TOOLS
            for result in await self.executor.run(turn.tool_calls):
                self.conversation.append(Message.tool(result))

        logger.warning("Hit max tool rounds (%d)", self.max_tool_rounds)
        msg = f"Backend still requested tools after {self.max_tool_rounds} round(s)"
        raise IterationLimitError(msg)

    # -- Sessions ----------------------------------------------------------

    def _require_sessions(self) -> SessionStore:
        if self.sessions is None:
            msg = "No session store configured"
            raise SessionIOError(msg)
        return self.sessions

    def save(self, name: str | None = None) -> Session:
        store = self._require_sessions()
        session = Session(
            name=name or self.session_name or default_session_name(),
            persona_name=self.persona.name,
            messages=self.conversation.snapshot(),
        )
        store.save(session)
        self.session_name = session.name
        return session

    def load(self, name: str) -> Session:
        session = self._require_sessions().load(name)
        self._restore(session)
        return session

    def continue_last(self) -> Session | None:
        session = self._require_sessions().continue_last()
        if session is not None:
            self._restore(session)
        return session

    def _restore(self, session: Session) -> None:
        if session.persona_name != self.persona.name:
            logger.warning(
                "Session '%s' was saved with persona '%s', continuing with '%s'",
                session.name,
                session.persona_name,
                self.persona.name,
            )
        self.conversation.replace(session.messages)
        self.session_name = session.name


async def run_one_shot(orchestrator: Orchestrator, text: str, images: Iterable[ImagePart] = ()) -> str:
    """Run exactly one turn and return its final text."""
    return await orchestrator.send(text, images)
