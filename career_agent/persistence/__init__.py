"""Repositories and blob storage used by the chat core."""

from pathlib import Path

from ..config import StorageConfig
from .blob_storage import BlobStorage, LocalBlobStorage, UploadedFile
from .memory_repo import InMemoryChatRepository
from .models import ChatRecord, MessageRecord, derive_chat_title, make_id, utc_now_iso
from .protocol import ChatRepository
from .sqlite_repo import SQLiteChatRepository


def create_repository(config: StorageConfig) -> ChatRepository:
    """Build the repository selected by ``storage.backend``."""
    if config.backend == "sqlite":
        return SQLiteChatRepository(Path(config.sqlite_path))
    return InMemoryChatRepository()


__all__ = [
    "BlobStorage",
    "ChatRecord",
    "ChatRepository",
    "InMemoryChatRepository",
    "LocalBlobStorage",
    "MessageRecord",
    "SQLiteChatRepository",
    "UploadedFile",
    "create_repository",
    "derive_chat_title",
    "make_id",
    "utc_now_iso",
]
