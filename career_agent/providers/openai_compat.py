"""Streaming provider for OpenAI and OpenAI-compatible chat completion APIs."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from openai import AsyncOpenAI

from .types import FunctionCall, GenerationConfig, Message, StreamDelta, ToolSchema

logger = logging.getLogger(__name__)


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def content_text(content: Any) -> str:
    """Flatten a completion ``content`` field (string or list of parts) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return str(content)
    texts = []
    for item in content:
        if isinstance(item, str):
            texts.append(item)
        elif isinstance(item, dict):
            texts.append(str(item.get("text") or ""))
        else:
            texts.append(str(getattr(item, "text", "") or ""))
    return "".join(texts)


def to_chat_messages(messages: List[Message], system_prompt: str) -> List[Dict[str, Any]]:
    """Render conversation messages as chat-completions ``messages``.

    Every tool result must reference the id of an earlier assistant tool call.
    Results without an id take the oldest unanswered call of the same name.
    """
    rendered: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}] if system_prompt else []
    unanswered: Dict[str, List[str]] = {}

    for message in messages:
        if message.role != "tool":
            entry: Dict[str, Any] = {"role": message.role, "content": message.text}
            calls = []
            for call in message.function_calls:
                if not call.id:
                    call.id = _new_call_id()
                unanswered.setdefault(call.name, []).append(call.id)
                calls.append(
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments or {})},
                    }
                )
            if calls:
                entry["tool_calls"] = calls
            rendered.append(entry)
            continue

        for part in message.parts:
            response = part.function_response
            if response is None:
                continue
            call_id = response.call_id
            if not call_id:
                waiting = unanswered.get(response.name)
                call_id = waiting.pop(0) if waiting else _new_call_id()
            rendered.append(
                {
                    "role": "tool",
                    "tool_call_id": call_id,
                    "content": json.dumps(response.response, ensure_ascii=False, default=str),
                }
            )
    return rendered


class _ToolCallIds:
    """Remembers call ids by index; later chunks of a call often omit the id."""

    def __init__(self) -> None:
        self._by_index: Dict[int, str] = {}

    def resolve(self, index: Any, raw_id: Optional[str]) -> Tuple[Optional[str], Optional[int]]:
        index = index if isinstance(index, int) else None
        if raw_id and index is not None:
            self._by_index[index] = raw_id
        if raw_id:
            return raw_id, index
        return (self._by_index.get(index) if index is not None else None), index


def chunk_to_deltas(chunk: Any, ids: _ToolCallIds) -> List[StreamDelta]:
    """Normalize one streamed completion chunk."""
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return []
    choice = choices[0]
    delta = getattr(choice, "delta", None)
    if delta is None:
        return []

    out: List[StreamDelta] = []
    text = content_text(getattr(delta, "content", None))
    if text:
        out.append(StreamDelta(text=text))

    for tool_call in getattr(delta, "tool_calls", None) or []:
        call_id, index = ids.resolve(getattr(tool_call, "index", None), getattr(tool_call, "id", None))
        function = getattr(tool_call, "function", None)
        name = getattr(function, "name", None) if function is not None else None
        arguments = getattr(function, "arguments", None) if function is not None else None
        if name:
            out.append(
                StreamDelta(
                    function_call_start=FunctionCall(name=name, arguments={}, id=call_id),
                    function_call_id=call_id,
                    function_call_index=index,
                )
            )
        if arguments:
            out.append(StreamDelta(function_call_delta=str(arguments), function_call_id=call_id, function_call_index=index))

    finish_reason = getattr(choice, "finish_reason", None)
    if finish_reason:
        out.append(StreamDelta(finish_reason=finish_reason))
    return out


class OpenAICompatibleProvider:
    """``ChatProvider`` over ``AsyncOpenAI`` chat completions.

    ``api_base`` points the client at any OpenAI-compatible endpoint
    (DeepSeek, Kimi, Azure proxies). A preconfigured ``client`` can be
    injected instead.
    ``cumulative_text`` marks backends whose chunks carry the whole reply so
    far rather than an increment.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str = "",
        client: Optional[AsyncOpenAI] = None,
        cumulative_text: bool = False,
    ) -> None:
        self.model = model
        self.cumulative_text = cumulative_text
        self.api_base = api_base or ""
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=api_base or None)

    def request_kwargs(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": config.model or self.model,
            "messages": to_chat_messages(messages, config.system_prompt),
            "stream": True,
        }
        if config.max_tokens and config.max_tokens > 0:
            kwargs["max_tokens"] = config.max_tokens
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if tools:
            kwargs["tools"] = [tool.to_openai() for tool in tools]
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def generate_stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamDelta]:
        kwargs = self.request_kwargs(messages, tools, config)
        logger.debug(
            "completion_request model=%s messages=%d tools=%d",
            kwargs["model"],
            len(kwargs["messages"]),
            len(kwargs.get("tools", [])),
        )
        stream = await self.client.chat.completions.create(**kwargs)
        ids = _ToolCallIds()
        async for chunk in stream:
            for delta in chunk_to_deltas(chunk, ids):
                yield delta
