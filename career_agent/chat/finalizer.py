"""Persist the outcome of a streamed run exactly once, then settle hand-off and memory."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..agents.handoff import HandoffState, HandoffTransition
from ..agents.router import PersonaRouter
from ..errors import ErrorKind, toast_for
from ..memory.store import ConversationMemory, MemoryCapacityError
from ..memory.topics import extract_topics
from ..persistence.models import MessageRecord
from ..persistence.protocol import ChatRepository
from ..retry import RetryConfig, always_retry, retry_with_backoff
from ..streaming.adapter import RunOutcome, RunState
from ..streaming.events import DataEvent, ErrorEvent, StreamEvent

logger = logging.getLogger(__name__)


@dataclass
class FinalizationResult:
    run_id: str
    status: RunState
    saved_message_id: Optional[str] = None
    transition: Optional[HandoffTransition] = None
    # Events to deliver before the terminal event.
    events: List[StreamEvent] = field(default_factory=list)
    # Replaces the run's own terminal event when persistence failed.
    terminal_override: Optional[ErrorEvent] = None

    @property
    def persisted(self) -> bool:
        return self.saved_message_id is not None


class ResponseFinalizer:
    """Finalizes runs.

    ``finalize`` is idempotent per run id: a repeated call returns the first
    result without writing again. Message saves are retried with backoff;
    once retries are exhausted the turn ends with a ``persistence_failed``
    error and any staged hand-off is rolled back.
    """

    def __init__(
        self,
        repository: ChatRepository,
        router: Optional[PersonaRouter] = None,
        retry_config: Optional[RetryConfig] = None,
        persist_partial_on_error: bool = False,
        max_cached_results: int = 512,
    ) -> None:
        self.repository = repository
        self.router = router
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)
        self.persist_partial_on_error = persist_partial_on_error
        self._max_cached = max_cached_results
        self._results: "OrderedDict[str, FinalizationResult]" = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = {}

    async def finalize(
        self,
        outcome: RunOutcome,
        *,
        chat_id: str,
        user_text: str,
        handoff_state: HandoffState,
        memory: ConversationMemory,
    ) -> FinalizationResult:
        run_id = outcome.run_id
        cached = self._results.get(run_id)
        if cached is not None:
            logger.debug("finalize_skipped run_id=%s reason=already_finalized", run_id)
            return cached

        lock = self._locks.setdefault(run_id, asyncio.Lock())
        async with lock:
            cached = self._results.get(run_id)
            if cached is not None:
                return cached
            if outcome.status == RunState.FINISHED:
                result = await self._finalize_finished(outcome, chat_id, user_text, handoff_state, memory)
            elif outcome.status == RunState.CANCELLED:
                result = await self._finalize_cancelled(outcome, chat_id, user_text, handoff_state, memory)
            else:
                result = await self._finalize_failed(outcome, chat_id, handoff_state)
            self._remember(run_id, result)
        self._locks.pop(run_id, None)

        logger.info(
            "turn_finalized run_id=%s chat_id=%s status=%s persisted=%s persona=%s",
            run_id,
            chat_id,
            result.status.value,
            result.persisted,
            handoff_state.active_persona_id,
        )
        return result

    def result_for(self, run_id: str) -> Optional[FinalizationResult]:
        return self._results.get(run_id)

    # -- per status ----------------------------------------------------------

    async def _finalize_finished(
        self,
        outcome: RunOutcome,
        chat_id: str,
        user_text: str,
        handoff_state: HandoffState,
        memory: ConversationMemory,
    ) -> FinalizationResult:
        text = outcome.final_text
        metadata: Dict[str, Any] = {
            "run_id": outcome.run_id,
            "handoffs": list(outcome.handoffs),
            "topics": extract_topics(text),
        }
        if outcome.side_effects:
            metadata["documents"] = [dict(effect) for effect in outcome.side_effects]
        record = self._assistant_record(outcome, chat_id, text, status="complete", metadata=metadata)

        failure = await self._save(record, handoff_state)
        if failure is not None:
            return FinalizationResult(run_id=outcome.run_id, status=RunState.FAILED, terminal_override=failure)

        transition = handoff_state.commit()
        self._remember_turn(
            memory,
            outcome.persona_id,
            outcome.final_persona_id,
            user_text,
            text,
            {"handoffs": list(outcome.handoffs)},
        )

        result = FinalizationResult(
            run_id=outcome.run_id,
            status=RunState.FINISHED,
            saved_message_id=record.id,
            transition=transition,
        )
        suggestion = self.router.suggest_handoff(handoff_state.active_persona_id, text, user_text) if self.router else None
        if suggestion is not None:
            handoff_state.suggest(suggestion.persona_id, suggestion.rationale)
            result.events.append(
                DataEvent(
                    kind="handoff-suggestion",
                    data={
                        "personaId": suggestion.persona_id,
                        "rationale": suggestion.rationale,
                        "trigger": suggestion.matched_trigger,
                    },
                )
            )
        return result

    async def _finalize_cancelled(
        self,
        outcome: RunOutcome,
        chat_id: str,
        user_text: str,
        handoff_state: HandoffState,
        memory: ConversationMemory,
    ) -> FinalizationResult:
        result = FinalizationResult(run_id=outcome.run_id, status=RunState.CANCELLED)
        partial = outcome.partial_text
        if partial:
            record = self._assistant_record(
                outcome,
                chat_id,
                partial,
                status="incomplete",
                metadata={"run_id": outcome.run_id, "stopped_by_user": True},
            )
            failure = await self._save(record, handoff_state)
            if failure is not None:
                result.terminal_override = failure
                return result
            result.saved_message_id = record.id

        handoff_state.rollback()
        # Rehydration reads agent_name, so memory must name the persona that stayed active.
        active = handoff_state.active_persona_id
        self._remember_turn(memory, active, active, user_text, partial, {"incomplete": True})
        return result

    async def _finalize_failed(
        self,
        outcome: RunOutcome,
        chat_id: str,
        handoff_state: HandoffState,
    ) -> FinalizationResult:
        result = FinalizationResult(run_id=outcome.run_id, status=RunState.FAILED)
        handoff_state.rollback()
        if self.persist_partial_on_error and outcome.partial_text:
            kind = outcome.error_kind.value if outcome.error_kind else ErrorKind.INTERNAL.value
            record = self._assistant_record(
                outcome,
                chat_id,
                outcome.partial_text,
                status="incomplete",
                metadata={"run_id": outcome.run_id, "error": kind},
            )
            failure = await self._save(record, handoff_state)
            if failure is not None:
                result.terminal_override = failure
            else:
                result.saved_message_id = record.id
        return result

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _assistant_record(
        outcome: RunOutcome,
        chat_id: str,
        text: str,
        status: str,
        metadata: Dict[str, Any],
    ) -> MessageRecord:
        return MessageRecord(
            id=outcome.message_id,
            chat_id=chat_id,
            role="assistant",
            parts=[{"type": "text", "text": text}],
            status=status,
            persona_id=outcome.final_persona_id,
            metadata=metadata,
        )

    async def _save(self, record: MessageRecord, handoff_state: HandoffState) -> Optional[ErrorEvent]:
        """Save with retries. Returns the error event to send when every attempt failed."""
        try:
            await retry_with_backoff(
                self.repository.save_messages,
                self.retry_config,
                [record],
                should_retry=always_retry,
                operation=f"save_message[{record.id}]",
            )
        except Exception as exc:
            logger.error("message_persist_failed message_id=%s chat_id=%s error=%s", record.id, record.chat_id, exc)
            handoff_state.rollback()
            return ErrorEvent(
                kind=ErrorKind.PERSISTENCE_FAILED.value,
                message=toast_for(ErrorKind.PERSISTENCE_FAILED),
            )
        return None

    @staticmethod
    def _remember_turn(
        memory: ConversationMemory,
        user_persona_id: str,
        assistant_persona_id: str,
        user_text: str,
        assistant_text: str,
        assistant_metadata: Dict[str, Any],
    ) -> None:
        try:
            if user_text:
                memory.add("user", user_text, agent_name=user_persona_id)
            if assistant_text:
                memory.add("assistant", assistant_text, agent_name=assistant_persona_id, **assistant_metadata)
        except MemoryCapacityError as exc:
            logger.warning("memory_append_failed chat_id=%s error=%s", memory.chat_id, exc)

    def _remember(self, run_id: str, result: FinalizationResult) -> None:
        self._results[run_id] = result
        while len(self._results) > self._max_cached:
            self._results.popitem(last=False)
