"""Keyword routing of user messages to personas, plus hand-off suggestions."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from .catalog import handoff_prompt
from .registry import PersonaRegistry, RegistryValidationError

logger = logging.getLogger(__name__)

DEFAULT_SWITCH_PHRASES: Tuple[str, ...] = ("switch to", "connect me to", "transfer me to")


@dataclass(frozen=True)
class RoutingDecision:
    """Target persona for a turn and why it was chosen."""

    persona_id: str
    reason: str  # "switch_phrase" | "keyword" | "fallback" | "stay"
    matched_keyword: Optional[str] = None


@dataclass(frozen=True)
class HandoffRule:
    from_persona_id: str
    to_persona_id: str
    triggers: Tuple[str, ...]


@dataclass(frozen=True)
class HandoffSuggestion:
    persona_id: str
    rationale: str
    matched_trigger: str


# Table order is priority order within each source persona.
DEFAULT_HANDOFF_RULES: Tuple[HandoffRule, ...] = (
    HandoffRule("resume", "interview", ("interview", "prepare for interview", "mock interview")),
    HandoffRule("resume", "jobsearch", ("job search", "apply", "find jobs", "job hunting")),
    HandoffRule("interview", "resume", ("resume", "cv", "optimize resume")),
    HandoffRule("interview", "jobsearch", ("job search", "find opportunities", "where to apply")),
    HandoffRule("planner", "resume", ("resume", "cv", "update resume")),
    HandoffRule("planner", "interview", ("interview", "interview prep", "behavioral questions")),
    HandoffRule("jobsearch", "resume", ("resume", "cv", "optimize resume")),
    HandoffRule("jobsearch", "interview", ("interview", "prepare for interview")),
)


def _phrase_pattern(phrase: str) -> Pattern[str]:
    # Whole-word match so "ats" does not fire inside "whats".
    return re.compile(r"\b" + r"\s+".join(re.escape(word) for word in phrase.lower().split()) + r"\b")


class PersonaRouter:
    """Deterministic keyword router.

    Precedence for :meth:`route`:

    1. An explicit switch phrase ("switch to", "connect me to") plus any
       persona keyword picks the first matching persona in declaration order.
    2. With no (or an unknown) current persona, the first keyword match wins,
       otherwise the configured fallback persona.
    3. With a current persona, a keyword match for a *different* persona
       switches; otherwise the current persona stays.
    """

    def __init__(
        self,
        registry: PersonaRegistry,
        fallback_persona_id: Optional[str] = None,
        switch_phrases: Sequence[str] = DEFAULT_SWITCH_PHRASES,
        handoff_rules: Iterable[HandoffRule] = DEFAULT_HANDOFF_RULES,
    ) -> None:
        self.registry = registry
        self.fallback_persona_id = fallback_persona_id or registry.entry_persona_id
        if self.fallback_persona_id not in registry:
            raise RegistryValidationError(f"Fallback persona '{self.fallback_persona_id}' is not registered")

        self._switch_patterns = [_phrase_pattern(p) for p in switch_phrases if p.strip()]
        self._keyword_patterns: List[Tuple[str, List[Tuple[str, Pattern[str]]]]] = [
            (persona.id, [(kw, _phrase_pattern(kw)) for kw in persona.keywords])
            for persona in registry.list_personas()
            if persona.keywords
        ]

        self._rules: Dict[str, List[Tuple[HandoffRule, List[Tuple[str, Pattern[str]]]]]] = {}
        for rule in handoff_rules:
            if rule.from_persona_id not in registry or rule.to_persona_id not in registry:
                raise RegistryValidationError(
                    f"Hand-off rule {rule.from_persona_id}->{rule.to_persona_id} references an unknown persona"
                )
            compiled = [(trigger, _phrase_pattern(trigger)) for trigger in rule.triggers]
            self._rules.setdefault(rule.from_persona_id, []).append((rule, compiled))

    def route(self, message: str, current_persona_id: Optional[str] = None) -> RoutingDecision:
        """Pick the persona that should answer ``message``. Never raises."""
        text = (message or "").lower()
        current = current_persona_id if current_persona_id in self.registry else None
        if current_persona_id and current is None:
            logger.warning("Unknown current persona '%s', routing as a new conversation", current_persona_id)

        if self._has_switch_phrase(text):
            match = self._first_keyword_match(text)
            if match:
                return RoutingDecision(persona_id=match[0], reason="switch_phrase", matched_keyword=match[1])

        if current is None:
            match = self._first_keyword_match(text)
            if match:
                return RoutingDecision(persona_id=match[0], reason="keyword", matched_keyword=match[1])
            return RoutingDecision(persona_id=self.fallback_persona_id, reason="fallback")

        match = self._first_keyword_match(text, exclude=current)
        if match:
            return RoutingDecision(persona_id=match[0], reason="keyword", matched_keyword=match[1])
        return RoutingDecision(persona_id=current, reason="stay")

    def suggest_handoff(
        self,
        current_persona_id: Optional[str],
        response_text: str = "",
        user_message: str = "",
    ) -> Optional[HandoffSuggestion]:
        """Advisory suggestion based on what was said this turn, or None."""
        rules = self._rules.get(current_persona_id or "")
        if not rules:
            return None
        haystacks = [(response_text or "").lower(), (user_message or "").lower()]
        for rule, triggers in rules:
            for trigger, pattern in triggers:
                if any(pattern.search(text) for text in haystacks):
                    return HandoffSuggestion(
                        persona_id=rule.to_persona_id,
                        rationale=handoff_prompt(rule.from_persona_id, rule.to_persona_id),
                        matched_trigger=trigger,
                    )
        return None

    def _has_switch_phrase(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self._switch_patterns)

    def _first_keyword_match(self, text: str, exclude: Optional[str] = None) -> Optional[Tuple[str, str]]:
        for persona_id, keywords in self._keyword_patterns:
            if persona_id == exclude:
                continue
            for keyword, pattern in keywords:
                if pattern.search(text):
                    return persona_id, keyword
        return None
