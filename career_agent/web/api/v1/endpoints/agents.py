"""Persona catalog endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from .....agents.registry import PersonaRegistry
from .....errors import APIError, ErrorKind
from ....schemas import AgentsResponse, PersonaResponse
from ..deps import get_registry

router = APIRouter(prefix="/agents", tags=["agents"])


@router.get("", response_model=AgentsResponse)
async def list_agents(registry: PersonaRegistry = Depends(get_registry)) -> AgentsResponse:
    return AgentsResponse(
        items=[PersonaResponse(**persona.to_public_dict()) for persona in registry.list_personas()],
        entry_persona_id=registry.entry_persona_id,
    )


@router.get("/{persona_id}", response_model=PersonaResponse)
async def get_agent(persona_id: str, registry: PersonaRegistry = Depends(get_registry)) -> PersonaResponse:
    persona = registry.find_persona(persona_id)
    if persona is None:
        raise APIError(404, "PERSONA_NOT_FOUND", f"Persona '{persona_id}' not found", kind=ErrorKind.NOT_FOUND)
    return PersonaResponse(**persona.to_public_dict())
