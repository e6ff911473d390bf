"""Tool registry: lookup, schemas and error-isolated execution."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from ..providers.types import ToolSchema
from ..redaction import redact_for_log
from .base import BaseTool, ToolContext, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Holds tool instances by name.

    :meth:`execute` is the tool boundary: whatever a tool raises is turned
    into a failed :class:`ToolResult` so one broken tool cannot abort a run.
    """

    def __init__(self, tools: Iterable[BaseTool] = ()) -> None:
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def schemas_for(self, names: Iterable[str]) -> List[ToolSchema]:
        schemas = []
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                logger.warning("Persona references unregistered tool '%s'", name)
                continue
            schemas.append(tool.to_schema())
        return schemas

    async def execute(self, name: str, arguments: Dict[str, Any], context: ToolContext) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.failure(f"Unknown tool: {name}", f"Tool '{name}' is not available")

        missing = [key for key in tool.required_params() if arguments.get(key) in (None, "")]
        if missing:
            return ToolResult.failure(
                f"Missing required arguments: {', '.join(missing)}",
                f"Tool '{name}' needs {', '.join(missing)}",
            )

        start = time.perf_counter()
        try:
            result = await tool.execute(context, **arguments)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "tool_error tool=%s chat_id=%s args=%s error=%s",
                name,
                context.chat_id,
                redact_for_log(arguments),
                exc,
            )
            result = ToolResult.failure(str(exc), f"Tool '{name}' failed")
        logger.debug("tool_done tool=%s success=%s duration_ms=%.2f", name, result.success, (time.perf_counter() - start) * 1000)
        return result
