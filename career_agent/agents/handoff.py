"""Per-chat hand-off state: which persona is active and what is staged or suggested."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandoffTransition:
    from_persona_id: str
    to_persona_id: str


class HandoffState:
    """Active persona for one chat session.

    A turn never mutates ``active_persona_id`` directly. Hand-offs decided by
    the router or announced by the agent run are *staged*; the finalizer
    commits them once the turn is persisted, or rolls them back when the turn
    fails or is cancelled. Readers that need "who is speaking right now" use
    :attr:`current_persona_id`, which already reflects a staged hand-off, so
    exactly one persona is current at any instant.
    """

    def __init__(self, active_persona_id: str) -> None:
        self.active_persona_id = active_persona_id
        self.pending_persona_id: Optional[str] = None
        self.staged_path: List[str] = []
        self.suggested_persona_id: Optional[str] = None
        self.rationale: Optional[str] = None
        self.transition_message: Optional[str] = None

    @classmethod
    def rehydrate(cls, latest_agent_name: Optional[str], default_persona_id: str, known_ids=None) -> "HandoffState":
        """Rebuild state after a reload from the latest memory item's agent name."""
        persona_id = latest_agent_name or default_persona_id
        if known_ids is not None and persona_id not in known_ids:
            logger.warning("Ignoring unknown persona '%s' in memory, using '%s'", persona_id, default_persona_id)
            persona_id = default_persona_id
        return cls(persona_id)

    @property
    def current_persona_id(self) -> str:
        return self.pending_persona_id or self.active_persona_id

    @property
    def transitioning(self) -> bool:
        return self.pending_persona_id is not None

    def stage(self, persona_id: str) -> bool:
        """Stage a hand-off for the in-flight turn.

        Returns:
            True if the current persona changed, False if it already was ``persona_id``
        """
        if persona_id == self.current_persona_id:
            return False
        self.pending_persona_id = None if persona_id == self.active_persona_id else persona_id
        self.staged_path.append(persona_id)
        return True

    def commit(self) -> Optional[HandoffTransition]:
        """Make the staged persona active. Returns the transition, if any."""
        staged = self.pending_persona_id
        self.pending_persona_id = None
        self.staged_path = []
        if staged is None or staged == self.active_persona_id:
            return None
        transition = HandoffTransition(from_persona_id=self.active_persona_id, to_persona_id=staged)
        self.active_persona_id = staged
        self.transition_message = None
        if self.suggested_persona_id == staged:
            self.clear_suggestion()
        return transition

    def rollback(self) -> None:
        """Discard anything staged by the in-flight turn."""
        if self.pending_persona_id is not None:
            logger.info(
                "Rolling back staged hand-off %s -> %s",
                self.active_persona_id,
                self.pending_persona_id,
            )
        self.pending_persona_id = None
        self.staged_path = []

    def suggest(self, persona_id: str, rationale: str) -> None:
        self.suggested_persona_id = persona_id
        self.rationale = rationale

    def clear_suggestion(self) -> None:
        self.suggested_persona_id = None
        self.rationale = None

    def accept(self, persona_id: str, message: Optional[str] = None) -> Tuple[str, str]:
        """Switch immediately between turns (user accepted a hand-off).

        Raises:
            RuntimeError: If a turn has a hand-off staged
        """
        if self.pending_persona_id is not None:
            raise RuntimeError("Cannot accept a hand-off while a turn is in flight")
        previous = self.active_persona_id
        self.active_persona_id = persona_id
        self.transition_message = message
        self.clear_suggestion()
        return previous, persona_id

    def snapshot(self) -> Dict[str, Any]:
        return {
            "current_persona_id": self.current_persona_id,
            "active_persona_id": self.active_persona_id,
            "pending_persona_id": self.pending_persona_id,
            "transitioning": self.transitioning,
            "suggested_persona_id": self.suggested_persona_id,
            "rationale": self.rationale,
            "transition_message": self.transition_message,
            "handoff_available": self.suggested_persona_id is not None,
        }
