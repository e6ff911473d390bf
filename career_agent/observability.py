"""Per-run observability: structured events plus log lines."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .redaction import redact_for_log

logger = logging.getLogger(__name__)


@dataclass
class RunEvent:
    """A single event in a run's execution."""

    timestamp: datetime
    event_type: str  # "run_start", "tool_call", "tool_result", "handoff", "error", "run_end"
    data: Dict[str, Any]
    duration_ms: Optional[float] = None


@dataclass
class RunStats:
    text_deltas: int = 0
    text_chars: int = 0
    tool_calls: int = 0
    handoffs: int = 0
    dropped_events: int = 0


class RunObserver:
    """
    Observability layer for one streamed agent run.

    Collects events and counters for debugging, and mirrors the important
    ones to the ``career_agent.runs`` logger.
    """

    def __init__(self, run_id: str, chat_id: Optional[str] = None, max_events: int = 500):
        self.run_id = run_id
        self.chat_id = chat_id
        self.events: List[RunEvent] = []
        self.stats = RunStats()
        self.logger = logging.getLogger("career_agent.runs")
        self._max_events = max_events
        self._started_at: Optional[datetime] = None

    def _record(self, event_type: str, data: Dict[str, Any], duration_ms: Optional[float] = None) -> None:
        if len(self.events) >= self._max_events:
            return
        self.events.append(
            RunEvent(timestamp=datetime.now(), event_type=event_type, data=data, duration_ms=duration_ms)
        )

    def log_run_start(self, persona_id: str, model: str) -> None:
        self._started_at = datetime.now()
        self._record("run_start", {"persona": persona_id, "model": model})
        self.logger.info(
            "run_start run_id=%s chat_id=%s persona=%s model=%s",
            self.run_id,
            self.chat_id or "-",
            persona_id,
            model,
        )

    def log_text_delta(self, text: str) -> None:
        # Deltas are counted, not recorded individually.
        self.stats.text_deltas += 1
        self.stats.text_chars += len(text)

    def log_tool_call(self, tool_name: str, call_id: str, args: Dict[str, Any]) -> None:
        self.stats.tool_calls += 1
        self._record("tool_call", {"tool": tool_name, "call_id": call_id, "args": redact_for_log(args)})
        self.logger.info("tool_call run_id=%s tool=%s call_id=%s", self.run_id, tool_name, call_id)

    def log_tool_result(self, tool_name: str, call_id: str, success: bool) -> None:
        self._record("tool_result", {"tool": tool_name, "call_id": call_id, "success": success})
        if not success:
            self.logger.warning("tool_failed run_id=%s tool=%s call_id=%s", self.run_id, tool_name, call_id)

    def log_handoff(self, from_persona: Optional[str], to_persona: str, reason: str) -> None:
        self.stats.handoffs += 1
        self._record("handoff", {"from": from_persona, "to": to_persona, "reason": reason})
        self.logger.info(
            "handoff run_id=%s from=%s to=%s reason=%s",
            self.run_id,
            from_persona or "-",
            to_persona,
            reason,
        )

    def log_dropped(self, event_type: str) -> None:
        self.stats.dropped_events += 1
        self.logger.debug("dropped_event run_id=%s type=%s", self.run_id, event_type)

    def log_error(self, error_type: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self._record("error", {"error_type": error_type, "message": message, "context": context or {}})
        self.logger.error(
            "run_error run_id=%s type=%s message=%s",
            self.run_id,
            error_type,
            redact_for_log(message),
        )

    def log_run_end(self, status: str) -> None:
        duration_ms = None
        if self._started_at is not None:
            duration_ms = (datetime.now() - self._started_at).total_seconds() * 1000
        self._record("run_end", {"status": status}, duration_ms=duration_ms)
        self.logger.info(
            "run_end run_id=%s status=%s deltas=%d chars=%d tool_calls=%d handoffs=%d dropped=%d duration_ms=%.2f",
            self.run_id,
            status,
            self.stats.text_deltas,
            self.stats.text_chars,
            self.stats.tool_calls,
            self.stats.handoffs,
            self.stats.dropped_events,
            duration_ms or 0.0,
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "text_deltas": self.stats.text_deltas,
            "tool_calls": self.stats.tool_calls,
            "handoffs": self.stats.handoffs,
            "dropped_events": self.stats.dropped_events,
            "events": len(self.events),
        }
