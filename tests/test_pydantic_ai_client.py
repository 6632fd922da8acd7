from fakes import FakeToolExecutor, make_tool_call
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, DeltaToolCall, FunctionModel

from parley.llms.events import ContentDelta, StreamComplete, StreamError, StreamStart, ToolCallsSnapshot
from parley.llms.pydantic_ai_client import PydanticAIChatClient, to_model_messages
from parley.messages import ApprovalRequest, ImageContent, ImageUrl, Message, TextContent
from parley.settings import ChatSettings


async def collect(client, items, model="llama-3.3-70b-versatile"):
    async with client.stream(items, model) as stream:
        return [event async for event in stream]


async def test_streams_text():
    seen_messages = []

    async def stream_text(messages, info: AgentInfo):
        seen_messages.extend(messages)
        yield "Hello"
        yield " world"

    client = PydanticAIChatClient(
        lambda name: FunctionModel(stream_function=stream_text),
        settings=ChatSettings(custom_system_prompt="Be brief."),
    )

    events = await collect(client, [Message.user("hi")])

    assert isinstance(events[0], StreamStart)
    assert "".join(e.content for e in events if isinstance(e, ContentDelta)) == "Hello world"
    complete = events[-1]
    assert isinstance(complete, StreamComplete)
    assert complete.content == "Hello world"
    assert complete.tool_calls is None
    assert complete.finish_reason == "stop"
    assert complete.usage is not None

    request = seen_messages[0]
    assert isinstance(request.parts[0], SystemPromptPart)
    assert request.parts[0].content.endswith("Be brief.")
    assert isinstance(request.parts[1], UserPromptPart)
    assert request.parts[1].content == "hi"


async def test_streams_tool_calls_with_tool_definitions():
    agent_infos = []

    async def stream_tool(messages, info: AgentInfo):
        agent_infos.append(info)
        yield {0: DeltaToolCall(name="get_weather", json_args='{"city": ', tool_call_id="call_1")}
        yield {0: DeltaToolCall(json_args='"Paris"}')}

    client = PydanticAIChatClient(
        lambda name: FunctionModel(stream_function=stream_tool),
        tool_executor=FakeToolExecutor({"get_weather": "sunny"}),
    )

    events = await collect(client, [Message.user("weather in Paris?")])

    assert [tool.name for tool in agent_infos[0].function_tools] == ["get_weather"]
    assert any(isinstance(e, ToolCallsSnapshot) for e in events)
    complete = events[-1]
    assert complete.tool_calls == [make_tool_call("call_1", "get_weather", '{"city": "Paris"}')]
    assert complete.finish_reason == "tool_calls"


async def test_image_input_to_text_only_model_is_rejected():
    built = []

    async def stream_text(messages, info: AgentInfo):
        yield "unused"

    def factory(name):
        built.append(name)
        return FunctionModel(stream_function=stream_text)

    client = PydanticAIChatClient(factory)
    image_message = Message.user([
        TextContent(text="what is this?"),
        ImageContent(image_url=ImageUrl(url="data:image/png;base64,AAAA")),
    ])

    events = await collect(client, [image_message], model="llama-3.1-8b-instant")

    assert len(events) == 1
    assert isinstance(events[0], StreamError)
    assert "does not support image inputs" in events[0].error
    assert built == []


async def test_model_errors_become_error_events():
    def factory(name):
        raise RuntimeError("unknown model")

    events = await collect(PydanticAIChatClient(factory), [Message.user("hi")])

    assert events == [StreamError(error="unknown model")]


def test_to_model_messages_groups_requests_and_names_tool_returns():
    call = make_tool_call("call_1", "get_weather", '{"city": "Paris"}')
    items = [
        Message.user("hi"),
        Message.assistant(tool_calls=[call]),
        Message.tool("call_1", "sunny"),
        ApprovalRequest(id="mcpr_1", name="read_wiki", server_label="deepwiki"),
        Message.assistant("It is sunny."),
    ]

    messages = to_model_messages(items, "system prompt")

    assert [type(m) for m in messages] == [ModelRequest, ModelResponse, ModelRequest, ModelResponse]
    assert [type(p) for p in messages[0].parts] == [SystemPromptPart, UserPromptPart]
    tool_call_part = messages[1].parts[0]
    assert isinstance(tool_call_part, ToolCallPart)
    assert (tool_call_part.tool_name, tool_call_part.tool_call_id) == ("get_weather", "call_1")
    tool_return = messages[2].parts[0]
    assert isinstance(tool_return, ToolReturnPart)
    assert (tool_return.tool_name, tool_return.content, tool_return.tool_call_id) == ("get_weather", "sunny", "call_1")
    assert messages[3].parts == [TextPart(content="It is sunny.")]
