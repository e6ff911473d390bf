"""Chat turn orchestration: admission, routing, streaming, finalization."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..agents.catalog import handoff_prompt
from ..agents.handoff import HandoffState
from ..agents.persona import AgentPersona
from ..agents.registry import PersonaRegistry
from ..agents.router import PersonaRouter
from ..config import AppConfig
from ..errors import APIError, ErrorKind, toast_for
from ..memory.store import ConversationMemory, MemoryCapacityError
from ..persistence.models import ChatRecord, MessageRecord, derive_chat_title, make_id, utc_now_iso
from ..persistence.protocol import ChatRepository
from ..redaction import summarize_parts
from ..retry import RetryConfig, retry_with_backoff
from ..runtime.runner import AgentRunner, RunContext
from ..streaming.adapter import StreamAdapter
from ..streaming.events import ErrorEvent, FinishEvent, StreamEvent, is_terminal
from .entitlements import EntitlementChecker
from .finalizer import ResponseFinalizer
from .inputs import build_agent_input, history_from_records, parts_to_text

logger = logging.getLogger(__name__)

TURN_STREAMING = "streaming"
TURN_TERMINAL_STATES = frozenset({"finished", "failed", "cancelled"})
VISIBILITIES = ("private", "public")


@dataclass
class TurnRecord:
    turn_id: str
    chat_id: str
    user_id: str
    message_id: str
    assistant_message_id: str
    persona_id: str
    created_at: str
    status: str = TURN_STREAMING
    events: List[Dict[str, Any]] = field(default_factory=list)
    event_seq: int = 0
    stop_requested: bool = False
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TURN_TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "chat_id": self.chat_id,
            "message_id": self.message_id,
            "assistant_message_id": self.assistant_message_id,
            "persona_id": self.persona_id,
            "status": self.status,
            "created_at": self.created_at,
            "stop_requested": self.stop_requested,
        }


@dataclass
class ChatSession:
    """In-process state of one chat: memory, hand-off state and its turns."""

    chat_id: str
    user_id: str
    memory: ConversationMemory
    handoff: HandoffState
    turns: Dict[str, TurnRecord] = field(default_factory=dict)
    message_turns: Dict[str, str] = field(default_factory=dict)
    active_turn_id: Optional[str] = None
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def active_turn(self) -> Optional[TurnRecord]:
        if not self.active_turn_id:
            return None
        turn = self.turns.get(self.active_turn_id)
        if turn is None or turn.is_terminal:
            return None
        return turn

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def prune_turns(self, keep: int) -> int:
        """Forget all but the newest ``keep`` finished turns and their replay logs."""
        finished = [turn_id for turn_id, turn in self.turns.items() if turn.is_terminal]
        stale = finished[: max(len(finished) - keep, 0)]
        for turn_id in stale:
            turn = self.turns.pop(turn_id)
            if self.message_turns.get(turn.message_id) == turn_id:
                del self.message_turns[turn.message_id]
        return len(stale)


class ChatService:
    """Runs chat turns, one at a time per chat, many chats concurrently."""

    def __init__(
        self,
        repository: ChatRepository,
        registry: PersonaRegistry,
        router: PersonaRouter,
        runner: AgentRunner,
        *,
        finalizer: Optional[ResponseFinalizer] = None,
        entitlements: Optional[EntitlementChecker] = None,
        memory_max_items: int = 50,
        context_items: int = 10,
        history_messages: int = 15,
        turn_timeout_seconds: float = 60.0,
        retry_config: Optional[RetryConfig] = None,
        session_ttl_seconds: float = 3600.0,
        cleanup_interval_seconds: float = 300.0,
        max_turns_per_session: int = 20,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.router = router
        self.runner = runner
        self.adapter = StreamAdapter(runner, registry)
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)
        self.finalizer = finalizer or ResponseFinalizer(repository, router=router, retry_config=self.retry_config)
        self.entitlements = entitlements
        self.memory_max_items = memory_max_items
        self.context_items = context_items
        self.history_messages = history_messages
        self.turn_timeout_seconds = turn_timeout_seconds
        self._sessions: Dict[str, ChatSession] = {}
        self._chat_locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self.session_ttl_seconds = max(session_ttl_seconds, 0.0)
        self.cleanup_interval_seconds = max(cleanup_interval_seconds, 0.01)
        self.max_turns_per_session = max(max_turns_per_session, 1)
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        repository: ChatRepository,
        registry: PersonaRegistry,
        runner: AgentRunner,
    ) -> "ChatService":
        router = PersonaRouter(
            registry,
            fallback_persona_id=config.routing.fallback_persona,
            switch_phrases=config.routing.switch_phrases,
        )
        retry_config = RetryConfig(
            max_attempts=config.retry.max_attempts,
            base_delay=config.retry.base_delay,
            max_delay=config.retry.max_delay,
        )
        return cls(
            repository,
            registry,
            router,
            runner,
            finalizer=ResponseFinalizer(
                repository,
                router=router,
                retry_config=retry_config,
                persist_partial_on_error=config.turn.persist_partial_on_error,
            ),
            entitlements=EntitlementChecker(repository, config.entitlements.max_messages_per_day),
            memory_max_items=config.memory.max_items,
            context_items=config.memory.context_items,
            history_messages=config.turn.history_messages,
            turn_timeout_seconds=config.turn.timeout_seconds,
            retry_config=retry_config,
            session_ttl_seconds=config.sessions.ttl_seconds,
            cleanup_interval_seconds=config.sessions.cleanup_interval_seconds,
            max_turns_per_session=config.sessions.max_turns_per_session,
        )

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Start the idle-session cleanup worker."""
        if self._cleanup_task is None and self.session_ttl_seconds > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_worker())

    async def stop(self, grace_seconds: float = 5.0) -> None:
        """Stop in-flight turns. They finalize as cancelled when they can."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        tasks = [task for task in self._tasks.values() if not task.done()]
        for session in self._sessions.values():
            turn = session.active_turn
            if turn is not None:
                turn.stop_requested = True
                turn.cancel_event.set()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)
        for session in self._sessions.values():
            await session.memory.flush()

    async def cleanup_expired_sessions(self, now: Optional[float] = None) -> List[str]:
        """Evict sessions idle for ``session_ttl_seconds`` and drop their locks.

        Sessions with a streaming turn or a held lock are kept. Evicted chats
        are rebuilt from the repository on their next request.
        """
        if self.session_ttl_seconds <= 0:
            return []
        now = time.monotonic() if now is None else now
        removed: List[str] = []
        for chat_id, session in list(self._sessions.items()):
            lock = self._chat_locks.get(chat_id)
            if session.active_turn is not None or (lock is not None and lock.locked()):
                continue
            if now - session.last_activity < self.session_ttl_seconds:
                continue
            del self._sessions[chat_id]
            self._chat_locks.pop(chat_id, None)
            removed.append(chat_id)
            await session.memory.flush()
        # Locks left by requests that were rejected before a session existed.
        for chat_id, lock in list(self._chat_locks.items()):
            if chat_id not in self._sessions and not lock.locked():
                del self._chat_locks[chat_id]
        if removed:
            logger.info("sessions_evicted count=%d remaining=%d", len(removed), len(self._sessions))
        return removed

    async def _cleanup_worker(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                await self.cleanup_expired_sessions()
            except Exception:
                logger.exception("session_cleanup_failed")

    # -- turns ---------------------------------------------------------------

    async def submit_message(
        self,
        *,
        user_id: str,
        user_type: str,
        chat_id: str,
        message_id: str,
        parts: List[Dict[str, Any]],
        visibility: str = "private",
        persona_hint: Optional[str] = None,
    ) -> Tuple[TurnRecord, bool]:
        """Admit a user message and start its turn.

        Returns:
            The turn and whether it already existed (a client retry of the same message id)

        Raises:
            APIError: 400 invalid message, 403 foreign chat, 409 active turn or
                already processed message, 429 daily quota exceeded
        """
        user_text = parts_to_text(parts).strip()
        if not user_text:
            raise APIError(400, "BAD_REQUEST", "Message must contain text or a file", kind=ErrorKind.BAD_REQUEST)
        if visibility not in VISIBILITIES:
            raise APIError(400, "BAD_REQUEST", f"Unsupported visibility '{visibility}'", kind=ErrorKind.BAD_REQUEST)

        async with self._lock_for(chat_id):
            chat = await self.repository.get_chat_by_id(chat_id)
            if chat is not None and chat.user_id != user_id:
                raise APIError(403, "FORBIDDEN", "Chat belongs to another user", kind=ErrorKind.FORBIDDEN)

            # No session is cached for a chat until its record is saved, so a
            # rejected request leaves nothing behind.
            session = await self._session_for(chat) if chat is not None else None
            if session is not None:
                existing_turn_id = session.message_turns.get(message_id)
                if existing_turn_id:
                    logger.info(
                        "turn_reattached chat_id=%s turn_id=%s message_id=%s", chat_id, existing_turn_id, message_id
                    )
                    return session.turns[existing_turn_id], True

                active = session.active_turn
                if active is not None:
                    raise APIError(
                        409,
                        "ACTIVE_TURN_EXISTS",
                        "Chat already has a response in progress",
                        {"turn_id": active.turn_id, "status": active.status},
                        kind=ErrorKind.ACTIVE_TURN,
                    )
            if await self.repository.get_message_by_id(message_id) is not None:
                raise APIError(
                    409,
                    "MESSAGE_ALREADY_PROCESSED",
                    f"Message '{message_id}' was already answered",
                    {"message_id": message_id},
                )

            if self.entitlements is not None:
                await self.entitlements.check(user_id, user_type)

            prior = await self.repository.get_messages_by_chat_id(chat_id, limit=self.history_messages)
            if chat is None:
                chat = ChatRecord(id=chat_id, user_id=user_id, title=derive_chat_title(user_text), visibility=visibility)
                await self._write(self.repository.save_chat, chat, operation="save_chat")
            await self._write(
                self.repository.save_messages,
                [MessageRecord(id=message_id, chat_id=chat_id, role="user", parts=[dict(p) for p in parts])],
                operation="save_user_message",
            )
            if session is None:
                session = await self._session_for(chat)

            turn = self._start_turn(session, user_type, message_id, parts, user_text, prior, persona_hint)
        return turn, False

    def _start_turn(
        self,
        session: ChatSession,
        user_type: str,
        message_id: str,
        parts: List[Dict[str, Any]],
        user_text: str,
        prior: List[MessageRecord],
        persona_hint: Optional[str],
    ) -> TurnRecord:
        handoff = session.handoff
        active_id = handoff.active_persona_id
        if persona_hint and persona_hint in self.registry:
            current = persona_hint
        elif len(session.memory) or prior:
            current = active_id
        else:
            current = None
        decision = self.router.route(user_text, current)

        routed_from = None
        if decision.persona_id != active_id:
            handoff.stage(decision.persona_id)
            routed_from = active_id
        persona = self.registry.get_persona(decision.persona_id)

        turn_id = make_id("turn")
        turn = TurnRecord(
            turn_id=turn_id,
            chat_id=session.chat_id,
            user_id=session.user_id,
            message_id=message_id,
            assistant_message_id=make_id("msg"),
            persona_id=persona.id,
            created_at=utc_now_iso(),
        )
        session.turns[turn_id] = turn
        session.message_turns[message_id] = turn_id
        session.active_turn_id = turn_id

        context = RunContext(
            chat_id=session.chat_id,
            user_id=session.user_id,
            user_type=user_type,
            memory_context=session.memory.render_context(self.context_items),
            history=history_from_records(prior, self.history_messages),
            previous_persona_id=routed_from,
        )
        logger.info(
            "turn_started chat_id=%s turn_id=%s persona=%s reason=%s keyword=%s parts=%s",
            session.chat_id,
            turn_id,
            persona.id,
            decision.reason,
            decision.matched_keyword or "-",
            summarize_parts(parts),
        )
        task = asyncio.create_task(
            self._run_turn(session, turn, persona, build_agent_input(parts), context, routed_from, user_text)
        )
        turn.task = task
        self._tasks[turn_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(turn_id, None))
        return turn

    async def _run_turn(
        self,
        session: ChatSession,
        turn: TurnRecord,
        persona: AgentPersona,
        agent_input: str,
        context: RunContext,
        routed_from: Optional[str],
        user_text: str,
    ) -> None:
        loop = asyncio.get_running_loop()
        stream = self.adapter.start(
            run_id=turn.turn_id,
            message_id=turn.assistant_message_id,
            persona=persona,
            agent_input=agent_input,
            context=context,
            handoff_state=session.handoff,
            cancel_event=turn.cancel_event,
            deadline=loop.time() + self.turn_timeout_seconds,
            routed_from=routed_from,
        )
        terminal: Optional[StreamEvent] = None
        try:
            async for event in stream.events():
                if is_terminal(event):
                    terminal = event
                else:
                    self._publish(turn, event)

            if stream.outcome is None or terminal is None:
                raise RuntimeError("Stream ended without a terminal event")
            # Persist before the client sees the terminal event.
            result = await self.finalizer.finalize(
                stream.outcome,
                chat_id=session.chat_id,
                user_text=user_text,
                handoff_state=session.handoff,
                memory=session.memory,
            )
            for event in result.events:
                self._publish(turn, event)
            terminal = result.terminal_override or terminal
            turn.status = result.status.value if result.terminal_override is None else "failed"
            self._publish(turn, terminal)
        except asyncio.CancelledError:
            session.handoff.rollback()
            turn.status = "cancelled"
            self._publish(turn, FinishEvent(message_id=turn.assistant_message_id, finish_reason="stopped"))
            raise
        except Exception:
            logger.exception("turn_failed chat_id=%s turn_id=%s", session.chat_id, turn.turn_id)
            session.handoff.rollback()
            turn.status = "failed"
            self._publish(turn, ErrorEvent(kind=ErrorKind.INTERNAL.value, message=toast_for(ErrorKind.INTERNAL)))
        finally:
            if session.active_turn_id == turn.turn_id and turn.is_terminal:
                session.active_turn_id = None
            session.prune_turns(self.max_turns_per_session)
            session.touch()
            logger.info("turn_ended chat_id=%s turn_id=%s status=%s events=%d", session.chat_id, turn.turn_id, turn.status, turn.event_seq)

    def _publish(self, turn: TurnRecord, event: StreamEvent) -> None:
        turn.event_seq += 1
        turn.events.append(
            {
                "event_id": f"evt_{turn.turn_id}_{turn.event_seq:04d}",
                "chat_id": turn.chat_id,
                "turn_id": turn.turn_id,
                "type": event.type,
                "ts": utc_now_iso(),
                "payload": event.to_dict(),
            }
        )

    async def get_turn(self, chat_id: str, turn_id: str, user_id: str) -> TurnRecord:
        session = await self._owned_session(chat_id, user_id)
        turn = session.turns.get(turn_id)
        if turn is None:
            raise APIError(404, "TURN_NOT_FOUND", f"Turn '{turn_id}' not found", kind=ErrorKind.NOT_FOUND)
        return turn

    async def snapshot_events(self, chat_id: str, turn_id: str, user_id: str) -> Tuple[List[Dict[str, Any]], str]:
        turn = await self.get_turn(chat_id, turn_id, user_id)
        return list(turn.events), turn.status

    async def event_index_after(self, chat_id: str, turn_id: str, last_event_id: Optional[str], user_id: str) -> int:
        if not last_event_id:
            return 0
        turn = await self.get_turn(chat_id, turn_id, user_id)
        for idx, event in enumerate(turn.events):
            if event["event_id"] == last_event_id:
                return idx + 1
        return 0

    async def stop_turn(self, chat_id: str, user_id: str, turn_id: Optional[str] = None) -> TurnRecord:
        """Request cancellation. Stopping a finished turn is a no-op."""
        session = await self._owned_session(chat_id, user_id)
        target_id = turn_id or session.active_turn_id
        turn = session.turns.get(target_id) if target_id else None
        if turn is None:
            raise APIError(404, "TURN_NOT_FOUND", "No turn to stop", kind=ErrorKind.NOT_FOUND)
        if not turn.is_terminal:
            turn.stop_requested = True
            turn.cancel_event.set()
            logger.info("turn_stop_requested chat_id=%s turn_id=%s", chat_id, turn.turn_id)
        return turn

    # -- chats ---------------------------------------------------------------

    async def delete_chat(self, chat_id: str, user_id: str) -> ChatRecord:
        async with self._lock_for(chat_id):
            chat = await self._owned_chat(chat_id, user_id)
            session = self._sessions.get(chat_id)
            if session is not None and session.active_turn is not None:
                raise APIError(
                    409,
                    "ACTIVE_TURN_EXISTS",
                    "Cannot delete a chat while a response is streaming",
                    {"turn_id": session.active_turn.turn_id},
                    kind=ErrorKind.ACTIVE_TURN,
                )
            deleted = await self.repository.delete_chat_by_id(chat_id)
            self._sessions.pop(chat_id, None)
        logger.info("chat_deleted chat_id=%s user_id=%s", chat_id, user_id)
        return deleted or chat

    async def list_messages(self, chat_id: str, user_id: str) -> List[MessageRecord]:
        await self._owned_chat(chat_id, user_id)
        return await self.repository.get_messages_by_chat_id(chat_id)

    async def get_context(self, chat_id: str, user_id: str, limit: int = 10) -> Dict[str, Any]:
        session = await self._owned_session(chat_id, user_id)
        current = self.registry.get_persona(session.handoff.current_persona_id)
        context = session.memory.summary(limit)
        context["handoff"] = session.handoff.snapshot()
        context["current_persona"] = current.to_public_dict()
        return context

    async def accept_handoff(
        self,
        chat_id: str,
        user_id: str,
        persona_id: str,
        context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Switch the chat's persona between turns."""
        target = self.registry.find_persona(persona_id)
        if target is None:
            raise APIError(404, "PERSONA_NOT_FOUND", f"Persona '{persona_id}' not found", kind=ErrorKind.NOT_FOUND)
        async with self._lock_for(chat_id):
            session = await self._owned_session(chat_id, user_id)
            if session.active_turn is not None:
                raise APIError(
                    409,
                    "ACTIVE_TURN_EXISTS",
                    "Cannot hand off while a response is streaming",
                    {"turn_id": session.active_turn.turn_id},
                    kind=ErrorKind.ACTIVE_TURN,
                )
            previous_id = session.handoff.active_persona_id
            if context:
                message = f"I'm transferring you to our {target.name}. Context: {context}"
            elif session.handoff.suggested_persona_id == target.id:
                message = handoff_prompt(previous_id, target.id)
            else:
                message = f"I'm connecting you with our {target.name} who specializes in {target.specialization}."
            session.handoff.accept(target.id, message)
            try:
                session.memory.add("assistant", message, agent_name=target.id, handoff_from=previous_id)
            except MemoryCapacityError as exc:
                logger.warning("memory_append_failed chat_id=%s error=%s", chat_id, exc)
        logger.info("handoff_accepted chat_id=%s from=%s to=%s", chat_id, previous_id, target.id)
        return {
            "success": True,
            "persona": target.to_public_dict(),
            "previous_persona_id": previous_id,
            "handoff_message": message,
        }

    # -- helpers -------------------------------------------------------------

    def _lock_for(self, chat_id: str) -> asyncio.Lock:
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._chat_locks[chat_id] = lock
        return lock

    async def _session_for(self, chat: ChatRecord) -> ChatSession:
        chat_id = chat.id
        session = self._sessions.get(chat_id)
        if session is not None and session.user_id == chat.user_id:
            session.touch()
            return session
        memory = await ConversationMemory.load(chat_id, self.repository, max_items=self.memory_max_items)
        handoff = HandoffState.rehydrate(
            memory.latest_agent_name(),
            self.router.fallback_persona_id,
            known_ids={p.id for p in self.registry.list_personas()},
        )
        session = ChatSession(chat_id=chat_id, user_id=chat.user_id, memory=memory, handoff=handoff)
        self._sessions[chat_id] = session
        return session

    async def _owned_session(self, chat_id: str, user_id: str) -> ChatSession:
        chat = await self._owned_chat(chat_id, user_id)
        return await self._session_for(chat)

    async def _owned_chat(self, chat_id: str, user_id: str) -> ChatRecord:
        chat = await self.repository.get_chat_by_id(chat_id)
        if chat is None:
            raise APIError(404, "CHAT_NOT_FOUND", f"Chat '{chat_id}' not found", kind=ErrorKind.NOT_FOUND)
        if chat.user_id != user_id:
            raise APIError(403, "FORBIDDEN", "Chat belongs to another user", kind=ErrorKind.FORBIDDEN)
        return chat

    async def _write(self, func, *args: Any, operation: str) -> Any:
        try:
            return await retry_with_backoff(func, self.retry_config, *args, operation=operation)
        except Exception as exc:
            logger.error("%s_failed error=%s", operation, exc)
            raise APIError(
                503,
                "PERSISTENCE_FAILED",
                "Could not save the message",
                kind=ErrorKind.PERSISTENCE_FAILED,
            ) from exc
