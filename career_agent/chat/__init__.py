"""Chat turn orchestration."""

from .entitlements import EntitlementChecker
from .finalizer import FinalizationResult, ResponseFinalizer
from .service import ChatService, ChatSession, TurnRecord

__all__ = [
    "ChatService",
    "ChatSession",
    "EntitlementChecker",
    "FinalizationResult",
    "ResponseFinalizer",
    "TurnRecord",
]
