"""Dependency providers for v1 API."""

from __future__ import annotations

from fastapi import Request

from ....agents.registry import PersonaRegistry
from ....chat.service import ChatService
from ....errors import APIError, ErrorKind
from ...auth import AuthSession


def get_chat_service(request: Request) -> ChatService:
    """Access the shared chat service from app state."""
    return request.app.state.chat_service


def get_registry(request: Request) -> PersonaRegistry:
    return request.app.state.registry


def get_auth_session(request: Request) -> AuthSession:
    """Return the caller resolved by the auth middleware."""
    session = getattr(request.state, "auth", None)
    if session is None:
        raise APIError(401, "UNAUTHORIZED", "Authentication required", kind=ErrorKind.UNAUTHORIZED)
    return session
