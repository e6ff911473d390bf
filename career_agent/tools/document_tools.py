"""Document and file tools backed by blob storage."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from ..persistence.blob_storage import BlobStorage
from .base import BaseTool, ToolContext, ToolResult

logger = logging.getLogger(__name__)

DOCUMENT_KINDS = ("text", "code", "markdown")
DOCUMENT_CONTENT_TYPES = {"text": "text/plain", "code": "text/plain", "markdown": "text/markdown"}
DOCUMENT_EXTENSIONS = {"text": "txt", "code": "txt", "markdown": "md"}

ANALYSIS_TYPES = ("general", "text_extraction", "document_analysis", "resume_review", "pdf_analysis")
TEXT_MEDIA_PREFIXES = ("text/",)


def _slug(title: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else "-" for ch in title.lower()).strip("-")
    return "-".join(filter(None, cleaned.split("-")))[:48] or "document"


class CreateDocumentTool(BaseTool):
    name = "create_document"
    description = "Create a new document (for example a rewritten resume or cover letter)"
    parameters = {
        "title": {"type": "string", "description": "The title of the document", "required": True},
        "kind": {"type": "string", "enum": list(DOCUMENT_KINDS), "description": "The type of document"},
        "content": {"type": "string", "description": "Initial document content"},
    }

    def __init__(self, storage: BlobStorage) -> None:
        self.storage = storage

    async def execute(
        self,
        context: ToolContext,
        title: str = "",
        kind: str = "text",
        content: str = "",
        **_: Any,
    ) -> ToolResult:
        if kind not in DOCUMENT_KINDS:
            return ToolResult.failure(f"Unsupported document kind: {kind}", "Failed to create document")
        if context.user_type == "guest":
            return ToolResult.failure("Guests cannot save documents", "Sign in to create documents")

        document_id = uuid.uuid4().hex
        uploaded = await self.storage.upload_file(
            (content or "").encode("utf-8"),
            f"{_slug(title)}.{DOCUMENT_EXTENSIONS[kind]}",
            DOCUMENT_CONTENT_TYPES[kind],
        )
        return ToolResult(
            success=True,
            output=f'Creating {kind} document: "{title}"',
            data={
                "action": "create_document",
                "id": document_id,
                "title": title,
                "kind": kind,
                "url": uploaded.url,
                "pathname": uploaded.pathname,
            },
        )


class UpdateDocumentTool(BaseTool):
    name = "update_document"
    description = "Update an existing document with new content"
    parameters = {
        "document_id": {"type": "string", "description": "The ID of the document to update", "required": True},
        "content": {"type": "string", "description": "The new content for the document", "required": True},
        "title": {"type": "string", "description": "New title for the document, if changing it"},
    }

    def __init__(self, storage: BlobStorage) -> None:
        self.storage = storage

    async def execute(
        self,
        context: ToolContext,
        document_id: str = "",
        content: str = "",
        title: Optional[str] = None,
        **_: Any,
    ) -> ToolResult:
        if context.user_type == "guest":
            return ToolResult.failure("Guests cannot save documents", "Sign in to update documents")
        # Each update is stored as a new immutable version.
        uploaded = await self.storage.upload_file(
            content.encode("utf-8"),
            f"{_slug(title or document_id)}-v.md",
            "text/markdown",
        )
        return ToolResult(
            success=True,
            output="Updating document" + (f' with new title: "{title}"' if title else ""),
            data={
                "action": "update_document",
                "document_id": document_id,
                "title": title,
                "url": uploaded.url,
                "pathname": uploaded.pathname,
            },
        )


class AnalyzeFileTool(BaseTool):
    name = "analyze_file"
    description = "Analyze a file the user uploaded (image, PDF, document) to extract content or answer questions"
    parameters = {
        "file_url": {"type": "string", "description": "URL of the uploaded file", "required": True},
        "query": {"type": "string", "description": "What to extract or answer about the file", "required": True},
        "file_name": {"type": "string", "description": "Original file name"},
        "media_type": {"type": "string", "description": "MIME type of the file"},
        "analysis_type": {"type": "string", "enum": list(ANALYSIS_TYPES), "description": "Type of analysis"},
    }

    def __init__(self, storage: BlobStorage, base_url: str = "/blobs") -> None:
        self.storage = storage
        self.base_url = base_url.rstrip("/")

    async def execute(
        self,
        context: ToolContext,
        file_url: str = "",
        query: str = "",
        file_name: Optional[str] = None,
        media_type: Optional[str] = None,
        analysis_type: str = "general",
        **_: Any,
    ) -> ToolResult:
        if analysis_type not in ANALYSIS_TYPES:
            analysis_type = "general"
        details: Dict[str, Any] = {
            "file_url": file_url,
            "file_name": file_name,
            "media_type": media_type,
            "analysis_type": analysis_type,
            "query": query,
        }
        prefix = f"{self.base_url}/"
        if file_url.startswith(prefix) and (media_type or "").startswith(TEXT_MEDIA_PREFIXES):
            content = await self.storage.read_file(file_url[len(prefix):])
            text = content.decode("utf-8", errors="replace")
            details["extracted_text"] = text[:4000]
            details["truncated"] = len(text) > 4000
        else:
            details["extracted_text"] = None
            logger.info("analyze_file without local text extraction media_type=%s", media_type or "-")
        return ToolResult(success=True, output=f"File prepared for {analysis_type.replace('_', ' ')}", data=details)
