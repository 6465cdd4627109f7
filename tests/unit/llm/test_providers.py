from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from tasklens.imaging.transport import parse_data_url
from tasklens.llm.providers import LiteLLMAgentModel, LiteLLMVisionClient
from tests.support.images import PNG_DATA_URL

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def _chunk(content: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


def _call(call_id: str, name: str, arguments: str | None) -> SimpleNamespace:
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _response(content: str | None, tool_calls: list[SimpleNamespace] | None = None) -> SimpleNamespace:
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class ScriptedStream:
    """Stands in for litellm's streaming completion plus chunk assembly."""

    def __init__(self, chunks: list[SimpleNamespace], assembled: SimpleNamespace):
        self.chunks = chunks
        self.assembled = assembled
        self.requests: list[dict] = []
        self.built_from: list[SimpleNamespace] = []

    async def acompletion(self, **kwargs):
        self.requests.append(kwargs)

        async def _iter():
            for chunk in self.chunks:
                yield chunk

        return _iter()

    def stream_chunk_builder(self, chunks, messages=None):
        self.built_from = list(chunks)
        return self.assembled


@pytest.fixture
def scripted(monkeypatch):
    def _install(chunks, assembled) -> ScriptedStream:
        stream = ScriptedStream(chunks, assembled)
        monkeypatch.setattr("litellm.acompletion", stream.acompletion)
        monkeypatch.setattr("litellm.stream_chunk_builder", stream.stream_chunk_builder)
        return stream

    return _install


MESSAGES = [{"role": "user", "content": "Analyze this image"}]
TOOLS = [{"type": "function", "function": {"name": "inspectImage", "parameters": {}}}]


async def test_final_text_is_streamed_through_on_delta(scripted):
    stream = scripted(
        [_chunk('{"summary": '), SimpleNamespace(choices=[]), _chunk(None), _chunk('"plan"}')],
        _response('{"summary": "plan"}'),
    )
    seen: list[str] = []

    async def on_delta(text: str) -> None:
        seen.append(text)

    model = LiteLLMAgentModel("anthropic/claude-test", max_tokens=512)
    turn = await model.next_turn(MESSAGES, TOOLS, on_delta=on_delta)

    assert turn.is_final
    assert turn.text == '{"summary": "plan"}'
    assert seen == ['{"summary": ', '"plan"}']
    assert len(stream.built_from) == 4
    request = stream.requests[0]
    assert request["stream"] is True
    assert request["tool_choice"] == "auto"
    assert request["max_tokens"] == 512


async def test_assembled_tool_call_becomes_a_request(scripted):
    scripted(
        [_chunk()],
        _response(None, [_call("call_7", "inspectImage", '{"storageId": "blob_1"}')]),
    )
    turn = await LiteLLMAgentModel("m").next_turn(MESSAGES, TOOLS)

    assert not turn.is_final
    assert turn.text == ""
    assert turn.tool_call.call_id == "call_7"
    assert turn.tool_call.name == "inspectImage"
    assert turn.tool_call.arguments == '{"storageId": "blob_1"}'
    assert turn.extra_tool_calls == []


async def test_several_tool_calls_keep_the_first(scripted):
    scripted(
        [_chunk()],
        _response(
            "",
            [
                _call("call_1", "inspectImage", None),
                _call("call_2", "createTask", '{"title": "T"}'),
            ],
        ),
    )
    turn = await LiteLLMAgentModel("m").next_turn(MESSAGES, TOOLS)

    assert turn.tool_call.name == "inspectImage"
    # Missing arguments are treated as an empty object.
    assert turn.tool_call.arguments == "{}"
    assert [c.call_id for c in turn.extra_tool_calls] == ["call_2"]


async def test_no_tools_means_no_tool_choice(scripted):
    stream = scripted([_chunk("done")], _response("done"))
    await LiteLLMAgentModel("m").next_turn(MESSAGES, [])

    assert stream.requests[0]["tools"] is None
    assert stream.requests[0]["tool_choice"] is None


async def test_slow_agent_stream_times_out(monkeypatch):
    async def hang(**kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr("litellm.acompletion", hang)
    with pytest.raises(asyncio.TimeoutError):
        await LiteLLMAgentModel("m", timeout=0.01).next_turn(MESSAGES, TOOLS)


async def test_vision_client_sends_image_as_data_url(monkeypatch):
    requests: list[dict] = []

    async def acompletion(**kwargs):
        requests.append(kwargs)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"tasks": []}'))],
            usage=SimpleNamespace(prompt_tokens=900, completion_tokens=12),
        )

    monkeypatch.setattr("litellm.acompletion", acompletion)
    image = parse_data_url(PNG_DATA_URL)
    client = LiteLLMVisionClient("anthropic/claude-test")

    text = await client.complete_vision(
        system="You are a task extractor.",
        prompt="List the tasks.",
        image=image,
        max_tokens=1000,
        temperature=0.2,
    )

    assert text == '{"tasks": []}'
    (request,) = requests
    assert request["model"] == "anthropic/claude-test"
    system, user = request["messages"]
    assert system == {"role": "system", "content": "You are a task extractor."}
    assert user["content"][0] == {"type": "text", "text": "List the tasks."}
    assert user["content"][1]["image_url"]["url"] == image.to_data_url()
    assert request["max_tokens"] == 1000
    assert request["temperature"] == 0.2


async def test_vision_client_treats_missing_content_as_empty(monkeypatch):
    async def acompletion(**kwargs):
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=None))])

    monkeypatch.setattr("litellm.acompletion", acompletion)
    text = await LiteLLMVisionClient("m").complete_vision(
        system="s", prompt="p", image=parse_data_url(PNG_DATA_URL), max_tokens=10, temperature=0.0
    )
    assert text == ""
