from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable, Sequence

from pydantic_ai.messages import (
    ImageUrl,
    ModelMessage,
    ModelRequest,
    ModelRequestPart,
    ModelResponse,
    ModelResponsePart,
    PartDeltaEvent,
    PartStartEvent,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    ThinkingPart,
    ThinkingPartDelta,
    ToolCallPart,
    ToolCallPartDelta,
    ToolReturnPart,
    UserContent,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters, ModelSettings
from pydantic_ai.tools import ToolDefinition

from parley.llms import ChatClient, ChatStream
from parley.llms.events import (
    ContentDelta,
    ReasoningDelta,
    StreamComplete,
    StreamError,
    StreamEvent,
    StreamStart,
    ToolCallsSnapshot,
)
from parley.llms.models import ModelInfo, lookup_model_info
from parley.llms.payload import build_system_prompt, sanitize_schema
from parley.log import logger
from parley.messages import ConversationItem, ImageContent, Message, TextContent, ToolCall, ToolCallFunction, Usage
from parley.settings import ChatSettings
from parley.tools import ToolExecutor


def _user_content(message: Message) -> str | list[UserContent]:
    if isinstance(message.content, str):
        return message.content
    content: list[UserContent] = []
    for part in message.content:
        if isinstance(part, TextContent):
            content.append(part.text)
        elif isinstance(part, ImageContent):
            content.append(ImageUrl(url=part.image_url.url))
    return content


def to_model_messages(items: Sequence[ConversationItem], system_prompt: str | None = None) -> list[ModelMessage]:
    """Convert conversation history into pydantic-ai request/response messages.

    Consecutive system, user and tool messages are grouped into one
    ``ModelRequest``. Remote approval items have no chat-completions
    counterpart and are skipped.
    """
    messages: list[ModelMessage] = []
    request_parts: list[ModelRequestPart] = []
    if system_prompt:
        request_parts.append(SystemPromptPart(content=system_prompt))
    tool_names: dict[str, str] = {}

    for item in items:
        if not isinstance(item, Message):
            logger.warning(f"Skipping {item.type} item, not supported by chat completions")
            continue

        if item.role == "system":
            request_parts.append(SystemPromptPart(content=item.text()))
        elif item.role == "user":
            request_parts.append(UserPromptPart(content=_user_content(item)))
        elif item.role == "tool":
            request_parts.append(
                ToolReturnPart(
                    tool_name=tool_names.get(item.tool_call_id or "", ""),
                    content=item.text(),
                    tool_call_id=item.tool_call_id or "",
                )
            )
        else:
            if request_parts:
                messages.append(ModelRequest(parts=request_parts))
                request_parts = []
            response_parts: list[ModelResponsePart] = []
            if item.text():
                response_parts.append(TextPart(content=item.text()))
            for tool_call in item.tool_calls or []:
                tool_names[tool_call.id] = tool_call.name
                response_parts.append(
                    ToolCallPart(
                        tool_name=tool_call.name,
                        args=tool_call.function.arguments or "{}",
                        tool_call_id=tool_call.id,
                    )
                )
            if not response_parts:
                response_parts.append(TextPart(content=""))
            messages.append(ModelResponse(parts=response_parts))

    if request_parts:
        messages.append(ModelRequest(parts=request_parts))
    return messages


def _tool_calls(parts: Sequence[ModelResponsePart]) -> list[ToolCall]:
    return [
        ToolCall(
            id=part.tool_call_id,
            function=ToolCallFunction(name=part.tool_name, arguments=part.args_as_json_str()),
        )
        for part in parts
        if isinstance(part, ToolCallPart)
    ]


class PydanticAIChatClient(ChatClient):
    """
    Chat-completions client on top of a pydantic-ai ``Model``.

    ``model_factory`` builds the model for a model name, e.g.
    ``functools.partial(init_model, "groq", api_key=...)``.
    """

    def __init__(
        self,
        model_factory: Callable[[str], Model],
        tool_executor: ToolExecutor | None = None,
        settings: ChatSettings | None = None,
        model_infos: dict[str, ModelInfo] | None = None,
    ) -> None:
        self.model_factory = model_factory
        self.tool_executor = tool_executor
        self.settings = settings or ChatSettings()
        self.model_infos = model_infos

    def tool_definitions(self) -> list[ToolDefinition]:
        if self.tool_executor is None:
            return []
        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description,
                parameters_json_schema=sanitize_schema(tool.input_schema),
            )
            for tool in self.tool_executor.list_tools()
        ]

    def stream(self, items: Sequence[ConversationItem], model: str) -> ChatStream:
        return ChatStream(lambda: self._events(list(items), model))

    async def _events(self, items: list[ConversationItem], model_name: str) -> AsyncIterator[StreamEvent]:
        if _has_user_images(items) and not lookup_model_info(model_name, self.model_infos).vision_supported:
            yield StreamError(
                error=f"The selected model ({model_name}) does not support image inputs. "
                "Please select a vision-capable model."
            )
            return

        try:
            model = self.model_factory(model_name)
            messages = to_model_messages(items, build_system_prompt(self.settings.custom_system_prompt))
            model_settings = ModelSettings(temperature=self.settings.temperature, top_p=self.settings.top_p)
            parameters = ModelRequestParameters(function_tools=self.tool_definitions(), allow_text_output=True)

            yield StreamStart(stream_id=uuid.uuid4().hex)
            reasoning = ""
            async with model.request_stream(messages, model_settings, parameters) as response:
                async for event in response:
                    if isinstance(event, PartStartEvent):
                        part = event.part
                        if isinstance(part, TextPart) and part.content:
                            yield ContentDelta(content=part.content)
                        elif isinstance(part, ThinkingPart) and part.content:
                            reasoning += part.content
                            yield ReasoningDelta(reasoning=part.content, accumulated=reasoning)
                        elif isinstance(part, ToolCallPart):
                            yield ToolCallsSnapshot(tool_calls=_tool_calls(response.get().parts))
                    elif isinstance(event, PartDeltaEvent):
                        delta = event.delta
                        if isinstance(delta, TextPartDelta) and delta.content_delta:
                            yield ContentDelta(content=delta.content_delta)
                        elif isinstance(delta, ThinkingPartDelta) and delta.content_delta:
                            reasoning += delta.content_delta
                            yield ReasoningDelta(reasoning=delta.content_delta, accumulated=reasoning)
                        elif isinstance(delta, ToolCallPartDelta):
                            yield ToolCallsSnapshot(tool_calls=_tool_calls(response.get().parts))
                final = response.get()
        except Exception as e:
            logger.exception(f"Error streaming chat completion: {e}")
            yield StreamError(error=str(e))
            return

        tool_calls = _tool_calls(final.parts)
        yield StreamComplete(
            content="".join(part.content for part in final.parts if isinstance(part, TextPart)),
            tool_calls=tool_calls or None,
            reasoning="".join(part.content for part in final.parts if isinstance(part, ThinkingPart)) or None,
            usage=Usage(
                prompt_tokens=final.usage.input_tokens,
                completion_tokens=final.usage.output_tokens,
                total_tokens=final.usage.total_tokens,
            ),
            finish_reason="tool_calls" if tool_calls else "stop",
        )


def _has_user_images(items: Sequence[ConversationItem]) -> bool:
    return any(isinstance(item, Message) and item.role == "user" and item.has_images() for item in items)
