"""Persona definitions, registry, routing and hand-off state."""

from .catalog import ENTRY_PERSONA_ID, HANDOFF_PROMPTS, default_personas, handoff_prompt
from .handoff import HandoffState, HandoffTransition
from .persona import AgentPersona, PersonaContext
from .registry import PersonaNotFoundError, PersonaRegistry, RegistryValidationError, build_default_registry
from .router import HandoffSuggestion, PersonaRouter, RoutingDecision

__all__ = [
    "AgentPersona",
    "ENTRY_PERSONA_ID",
    "HANDOFF_PROMPTS",
    "HandoffState",
    "HandoffSuggestion",
    "HandoffTransition",
    "PersonaContext",
    "PersonaNotFoundError",
    "PersonaRegistry",
    "PersonaRouter",
    "RegistryValidationError",
    "RoutingDecision",
    "build_default_registry",
    "default_personas",
    "handoff_prompt",
]
