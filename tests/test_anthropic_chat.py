"""Tests for AnthropicModelService with a stubbed client."""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from graphrun.services.anthropic_chat import DEFAULT_MODEL, AnthropicModelService
from graphrun.services.base import ServiceError


def text(value: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=value)


def tool_use(call_id: str, name: str, args: dict) -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=call_id, name=name, input=args)


class FakeMessages:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(content=response)


def make_service(*responses) -> tuple[AnthropicModelService, FakeMessages]:
    messages = FakeMessages(responses)
    return AnthropicModelService(client=SimpleNamespace(messages=messages)), messages


def request(content: str = "hi", **node) -> dict:
    return {"chat_model_node": node, "messages": [{"role": "user", "content": content}]}


class TestCompleteChat:
    @pytest.mark.asyncio
    async def test_text_reply(self):
        service, messages = make_service([text("Hello"), text(" there")])
        reply = await service.complete_chat(request("hi", system_prompt="be brief"))
        assert reply.message == "Hello there"
        assert reply.tool_calls == []
        call = messages.calls[0]
        assert call["model"] == DEFAULT_MODEL
        assert call["system"] == "be brief"
        assert call["messages"] == [{"role": "user", "content": "hi"}]
        assert "tools" not in call

    @pytest.mark.asyncio
    async def test_node_overrides_model(self):
        service, messages = make_service([text("ok")])
        await service.complete_chat(request(model="claude-haiku-4-5", max_tokens=256))
        assert messages.calls[0]["model"] == "claude-haiku-4-5"
        assert messages.calls[0]["max_tokens"] == 256

    @pytest.mark.asyncio
    async def test_json_node_parsed(self):
        service, _ = make_service([text('{"score": 3}')])
        reply = await service.complete_chat(request(output_type="JSON"))
        assert reply.parsed == {"score": 3}

    @pytest.mark.asyncio
    async def test_json_node_unparseable(self):
        service, _ = make_service([text("three")])
        reply = await service.complete_chat(request(output_type="JSON"))
        assert reply.message == "three"
        assert reply.parsed is None

    @pytest.mark.asyncio
    async def test_tool_round_trip(self):
        tools = [
            {"name": "search", "description": "Web search", "input_schema": {"type": "object"}}
        ]
        service, messages = make_service(
            [text("Let me look."), tool_use("tu_1", "search", {"q": "cats"})],
            [text("Cats are mammals.")],
        )

        first = await service.complete_chat(request("cats?", tools=tools))

        calls = [(c.name, c.args, c.call_id) for c in first.tool_calls]
        assert calls == [("search", {"q": "cats"}, "tu_1")]
        assert first.checkpoint_id
        assert messages.calls[0]["tools"] == [
            {"name": "search", "description": "Web search", "input_schema": {"type": "object"}}
        ]

        continuation = {
            "chat_model_node": {"tools": tools},
            "messages": [
                {"role": "tool", "name": "search", "tool_call_id": "tu_1", "content": "mammals"}
            ],
        }
        second = await service.complete_chat(continuation, first.checkpoint_id)

        assert second.message == "Cats are mammals."
        sent = messages.calls[1]["messages"]
        assert sent[0] == {"role": "user", "content": "cats?"}
        assert sent[1]["role"] == "assistant"
        assert sent[2] == {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "mammals"}],
        }

    @pytest.mark.asyncio
    async def test_unknown_checkpoint(self):
        service, _ = make_service()
        with pytest.raises(ServiceError, match="Unknown checkpoint"):
            await service.complete_chat(request(), "missing")

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self):
        error = anthropic.APIError(
            "overloaded",
            httpx.Request("POST", "https://api.anthropic.com/v1/messages"),
            body=None,
        )
        service, _ = make_service(error)
        with pytest.raises(ServiceError, match="overloaded"):
            await service.complete_chat(request())

    def test_default_schema_for_tool_without_one(self):
        from graphrun.services.anthropic_chat import _tool_definition

        assert _tool_definition({"name": "noop"}) == {
            "name": "noop",
            "description": "",
            "input_schema": {"type": "object", "properties": {}},
        }
