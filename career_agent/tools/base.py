"""Base tool class and the context tools run with."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..providers.types import ToolSchema


@dataclass(frozen=True)
class ToolContext:
    """Who a tool is acting for; used for permission checks and storage paths."""

    chat_id: str
    user_id: str
    user_type: str = "regular"
    persona_id: Optional[str] = None


@dataclass
class ToolResult:
    """Result from a tool execution."""
    success: bool
    output: str
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Structured payload returned to the model and surfaced as a tool-result."""
        if self.success:
            return {"success": True, **self.data, "message": self.output}
        return {"success": False, "error": self.error or "unknown error", "message": self.output}

    @classmethod
    def failure(cls, error: str, message: str) -> "ToolResult":
        return cls(success=False, output=message, error=error)


class BaseTool(ABC):
    """Base class for all tools."""

    name: str
    description: str
    parameters: Dict[str, Any]

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        """Execute the tool with given parameters."""
        pass

    def required_params(self) -> List[str]:
        return [k for k, v in self.parameters.items() if v.get("required", False)]

    def to_schema(self) -> ToolSchema:
        """Convert tool to a provider-neutral function schema."""
        properties = {
            key: {k: v for k, v in spec.items() if k != "required"}
            for key, spec in self.parameters.items()
        }
        return ToolSchema(
            name=self.name,
            description=self.description,
            parameters={
                "type": "object",
                "properties": properties,
                "required": self.required_params(),
            },
        )
