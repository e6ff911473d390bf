"""Persona definitions: the static configuration of one conversational specialist."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple


@dataclass(frozen=True)
class PersonaContext:
    """Inputs available to an instruction template for one run."""

    memory_context: str = ""
    previous_persona_id: Optional[str] = None
    previous_persona_name: Optional[str] = None
    user_type: str = "regular"


InstructionFn = Callable[[PersonaContext], str]


@dataclass(frozen=True)
class AgentPersona:
    """A named specialist: model settings, instructions, tools and hand-off edges.

    ``instructions`` is a pure function of :class:`PersonaContext`; it is called
    once per run and must not keep state between calls.
    """

    id: str
    name: str
    model: str
    instructions: InstructionFn
    description: str = ""
    specialization: str = ""
    temperature: float = 0.7
    tools: Tuple[str, ...] = ()
    handoffs: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    def render_instructions(self, context: Optional[PersonaContext] = None) -> str:
        return self.instructions(context or PersonaContext())

    def handoff_tool_name(self) -> str:
        """Name of the tool other personas call to transfer the chat here."""
        return f"transfer_to_{self.id}"

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "specialization": self.specialization,
            "model": self.model,
            "tools": list(self.tools),
            "handoffs": list(self.handoffs),
        }
