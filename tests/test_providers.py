"""Tests for provider construction, the offline stub and OpenAI chunk normalization."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from career_agent.config import ProviderConfig
from career_agent.providers import OpenAICompatibleProvider, StubProvider, create_provider
from career_agent.providers.openai_compat import _ToolCallIds, chunk_to_deltas, content_text, to_chat_messages
from career_agent.providers.types import FunctionCall, FunctionResponse, GenerationConfig, Message, ToolSchema


def _chunk(content=None, tool_calls=None, finish_reason=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def _tool_chunk(index, call_id=None, name=None, arguments=None):
    function = SimpleNamespace(name=name, arguments=arguments)
    return _chunk(tool_calls=[SimpleNamespace(index=index, id=call_id, function=function)])


class _FakeCompletions:
    def __init__(self, chunks):
        self.chunks = chunks
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs

        async def stream():
            for chunk in self.chunks:
                yield chunk

        return stream()


def _fake_client(chunks):
    completions = _FakeCompletions(chunks)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def test_stub_is_the_default_provider():
    provider = create_provider(ProviderConfig())
    assert isinstance(provider, StubProvider)


def test_api_key_from_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-deep")
    provider = create_provider(ProviderConfig(name="deepseek", model="deepseek-chat"))
    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.api_base == "https://api.deepseek.com"


def test_cumulative_text_flag_reaches_provider():
    provider = create_provider(ProviderConfig(name="kimi", api_key="sk-kimi", cumulative_text=True))
    assert provider.cumulative_text is True
    assert provider.api_base == "https://api.moonshot.cn/v1"


def test_missing_api_key_names_the_variable():
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        create_provider(ProviderConfig(name="openai"))


# ---------------------------------------------------------------------------
# Stub
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stub_names_persona_and_echoes_question():
    provider = StubProvider()
    deltas = [
        d
        async for d in provider.generate_stream(
            [Message.user("How do I negotiate salary?")],
            None,
            GenerationConfig(system_prompt="Career Counselor.\nMore instructions"),
        )
    ]
    text = "".join(d.text or "" for d in deltas)
    assert text == "Career Counselor. Here is my take on: How do I negotiate salary?"
    assert deltas[-1].finish_reason == "stop"


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


def test_content_text_flattens_parts():
    assert content_text(None) == ""
    assert content_text("hi") == "hi"
    assert content_text(["a", {"type": "text", "text": "b"}, SimpleNamespace(text="c")]) == "abc"


def test_tool_results_pair_with_calls_by_name():
    messages = [
        Message.user("score my resume"),
        Message.assistant("", [FunctionCall(name="analyze_resume", arguments={"content": "x"})]),
        Message.tool_results([FunctionResponse(name="analyze_resume", response={"score": 70})]),
    ]
    rendered = to_chat_messages(messages, "Resume Expert.")

    assert rendered[0] == {"role": "system", "content": "Resume Expert."}
    call_id = rendered[2]["tool_calls"][0]["id"]
    assert call_id.startswith("call_")
    assert rendered[3] == {"role": "tool", "tool_call_id": call_id, "content": '{"score": 70}'}


def test_later_chunks_reuse_call_id_by_index():
    ids = _ToolCallIds()
    first = chunk_to_deltas(_tool_chunk(0, call_id="call_abc", name="transfer_to_resume"), ids)
    second = chunk_to_deltas(_tool_chunk(0, arguments='{"reason": "cv"}'), ids)

    assert first[0].function_call_start.name == "transfer_to_resume"
    assert first[0].function_call_id == "call_abc"
    assert second[0].function_call_delta == '{"reason": "cv"}'
    assert second[0].function_call_id == "call_abc"
    assert second[0].function_call_index == 0


def test_empty_chunk_yields_nothing():
    assert chunk_to_deltas(SimpleNamespace(choices=[]), _ToolCallIds()) == []


@pytest.mark.asyncio
async def test_generate_stream_sends_persona_model_and_tools():
    client, completions = _fake_client([_chunk(content="Hel"), _chunk(content="lo"), _chunk(finish_reason="stop")])
    provider = OpenAICompatibleProvider(api_key="sk-test", model="gpt-4o", client=client)
    tool = ToolSchema(name="mock_interview", description="Practice", parameters={"type": "object", "properties": {}})

    deltas = [
        d
        async for d in provider.generate_stream(
            [Message.user("hi")],
            [tool],
            GenerationConfig(system_prompt="Interview Coach.", model="gpt-4o-mini", temperature=0.8),
        )
    ]

    assert "".join(d.text or "" for d in deltas) == "Hello"
    assert deltas[-1].finish_reason == "stop"
    assert completions.kwargs["model"] == "gpt-4o-mini"
    assert completions.kwargs["stream"] is True
    assert completions.kwargs["temperature"] == 0.8
    assert completions.kwargs["tools"][0]["function"]["name"] == "mock_interview"
    assert completions.kwargs["tool_choice"] == "auto"
