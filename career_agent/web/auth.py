"""Identity resolution for API requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from hmac import compare_digest
from typing import Dict, Optional

from fastapi import Request

logger = logging.getLogger(__name__)

USER_TYPES = ("guest", "regular")


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    user_type: str = "regular"


class IdentityProvider:
    """Resolves the caller of a request.

    ``header`` mode trusts ``X-User-ID`` / ``X-User-Type`` and is meant for
    local development behind a trusted proxy. ``token`` mode maps a bearer
    token to a configured user.
    """

    def __init__(self, mode: str = "header", tokens: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        if mode not in ("header", "token"):
            raise ValueError(f"Unsupported auth mode: {mode}")
        self.mode = mode
        self.tokens = dict(tokens or {})

    def auth(self, request: Request) -> Optional[AuthSession]:
        if self.mode == "token":
            return self._from_token(request)
        return self._from_headers(request)

    def _from_headers(self, request: Request) -> Optional[AuthSession]:
        user_id = (request.headers.get("X-User-ID") or "").strip()
        if not user_id:
            return None
        user_type = (request.headers.get("X-User-Type") or "regular").strip().lower()
        if user_type not in USER_TYPES:
            user_type = "regular"
        return AuthSession(user_id=user_id, user_type=user_type)

    def _from_token(self, request: Request) -> Optional[AuthSession]:
        auth_header = (request.headers.get("Authorization") or "").strip()
        if not auth_header.startswith("Bearer "):
            return None
        token = auth_header[len("Bearer ") :].strip()
        if not token:
            return None
        for known_token, user in self.tokens.items():
            if compare_digest(token, known_token):
                user_id = str(user.get("user_id") or "").strip()
                if not user_id:
                    logger.warning("auth_token_without_user_id")
                    return None
                user_type = str(user.get("user_type") or "regular")
                return AuthSession(user_id=user_id, user_type=user_type if user_type in USER_TYPES else "regular")
        return None
