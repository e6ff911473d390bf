"""Rolling conversation memory per chat."""

from .models import MemoryItem
from .store import ConversationMemory, MemoryCapacityError, MemoryRepository
from .topics import extract_topics

__all__ = ["ConversationMemory", "MemoryCapacityError", "MemoryItem", "MemoryRepository", "extract_topics"]
