"""Tools available to personas."""

from typing import Optional

from ..persistence.blob_storage import BlobStorage
from ..providers.base import ChatProvider
from .base import BaseTool, ToolContext, ToolResult
from .career_tools import (
    AnalyzeResumeTool,
    CareerPathTool,
    JobSearchStrategyTool,
    MockInterviewTool,
    RequestSuggestionsTool,
)
from .document_tools import AnalyzeFileTool, CreateDocumentTool, UpdateDocumentTool
from .registry import ToolRegistry


def build_default_tools(
    storage: BlobStorage,
    provider: Optional[ChatProvider] = None,
    blob_base_url: str = "/blobs",
) -> ToolRegistry:
    """Registry with every built-in tool."""
    return ToolRegistry(
        [
            AnalyzeResumeTool(provider),
            MockInterviewTool(),
            CareerPathTool(provider),
            JobSearchStrategyTool(),
            RequestSuggestionsTool(),
            CreateDocumentTool(storage),
            UpdateDocumentTool(storage),
            AnalyzeFileTool(storage, base_url=blob_base_url),
        ]
    )


__all__ = [
    "AnalyzeFileTool",
    "AnalyzeResumeTool",
    "BaseTool",
    "CareerPathTool",
    "CreateDocumentTool",
    "JobSearchStrategyTool",
    "MockInterviewTool",
    "RequestSuggestionsTool",
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "UpdateDocumentTool",
    "build_default_tools",
]
