"""Read-only registry of personas, validated once at startup."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from .catalog import ENTRY_PERSONA_ID, default_personas
from .persona import AgentPersona

logger = logging.getLogger(__name__)


class PersonaNotFoundError(KeyError):
    """Raised when a persona id is not registered."""

    def __init__(self, persona_id: str) -> None:
        super().__init__(persona_id)
        self.persona_id = persona_id

    def __str__(self) -> str:
        return f"Unknown persona: {self.persona_id}"


class RegistryValidationError(ValueError):
    """Raised when persona definitions are inconsistent."""


class PersonaRegistry:
    """Central registry for the personas of the counseling system.

    The registry provides:
    - Lookup by persona id
    - Declaration-ordered listing (the order routing scans keywords in)
    - Construction-time validation of the hand-off graph

    There is no mutation API: once built, the registry is shared read-only by
    every chat session in the process.

    Example:
        registry = PersonaRegistry(default_personas(), entry_persona_id="triage")
        persona = registry.get_persona("resume")
    """

    def __init__(self, personas: Iterable[AgentPersona], entry_persona_id: str = ENTRY_PERSONA_ID):
        """Build and validate the registry.

        Args:
            personas: Persona definitions in declaration order
            entry_persona_id: Id of the entry node of the hand-off graph

        Raises:
            RegistryValidationError: On duplicate ids, a missing entry persona or
                a hand-off edge pointing at an unknown persona
        """
        self._personas: Dict[str, AgentPersona] = {}
        for persona in personas:
            if persona.id in self._personas:
                raise RegistryValidationError(f"Duplicate persona id '{persona.id}'")
            self._personas[persona.id] = persona

        if entry_persona_id not in self._personas:
            raise RegistryValidationError(f"Entry persona '{entry_persona_id}' is not registered")
        self._entry_persona_id = entry_persona_id

        for persona in self._personas.values():
            for target in persona.handoffs:
                if target not in self._personas:
                    raise RegistryValidationError(
                        f"Persona '{persona.id}' hands off to unknown persona '{target}'"
                    )
                if target == persona.id:
                    raise RegistryValidationError(f"Persona '{persona.id}' hands off to itself")

        logger.info(
            "Persona registry ready: %s (entry=%s)",
            ", ".join(self._personas),
            entry_persona_id,
        )

    def get_persona(self, persona_id: str) -> AgentPersona:
        """Get a persona by id.

        Args:
            persona_id: Id of the persona to retrieve

        Returns:
            The persona

        Raises:
            PersonaNotFoundError: If the id is not registered
        """
        persona = self._personas.get(persona_id)
        if persona is None:
            raise PersonaNotFoundError(persona_id)
        return persona

    def find_persona(self, persona_id: Optional[str]) -> Optional[AgentPersona]:
        """Get a persona by id, or None when the id is empty or unknown."""
        if not persona_id:
            return None
        return self._personas.get(persona_id)

    def find_by_handoff_tool(self, tool_name: str) -> Optional[AgentPersona]:
        """Resolve a ``transfer_to_<id>`` tool name back to its persona."""
        for persona in self._personas.values():
            if persona.handoff_tool_name() == tool_name:
                return persona
        return None

    def list_personas(self) -> List[AgentPersona]:
        """All personas in declaration order."""
        return list(self._personas.values())

    @property
    def entry_persona(self) -> AgentPersona:
        return self._personas[self._entry_persona_id]

    @property
    def entry_persona_id(self) -> str:
        return self._entry_persona_id

    def __contains__(self, persona_id: object) -> bool:
        return persona_id in self._personas

    def __iter__(self) -> Iterator[AgentPersona]:
        return iter(self._personas.values())

    def __len__(self) -> int:
        return len(self._personas)


def build_default_registry() -> PersonaRegistry:
    """Registry with the built-in career personas."""
    return PersonaRegistry(default_personas(), entry_persona_id=ENTRY_PERSONA_ID)
