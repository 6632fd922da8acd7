"""Conversation models for Parley."""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "tool", "system"]


class TextContent(BaseModel):
    """Text part of a structured message."""

    type: Literal["text"] = "text"
    text: str


class ImageUrl(BaseModel):
    url: str
    detail: str | None = None


class ImageContent(BaseModel):
    """Image part of a structured message."""

    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


ContentPart = Annotated[Union[TextContent, ImageContent], Field(discriminator="type")]


class ToolCallFunction(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    arguments: str = ""


class ToolCall(BaseModel):
    """Tool call requested by the model.

    ``server_label`` is set when the call was routed to a remote MCP server and
    executed by the API provider rather than locally.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: Literal["function"] = "function"
    function: ToolCallFunction
    server_label: str | None = None

    @property
    def name(self) -> str:
        return self.function.name

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the serialized arguments.

        Raises:
            ValueError: If the arguments are not a JSON object.
        """
        if not self.function.arguments.strip():
            return {}
        args = json.loads(self.function.arguments)
        if not isinstance(args, dict):
            raise ValueError(f"Arguments for tool '{self.name}' must be a JSON object")
        return args


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class PreResolvedResponse(BaseModel):
    """Output of a tool call the API provider already executed."""

    tool_call_id: str
    content: str


class ApprovalRequest(BaseModel):
    """Remote MCP server asking the user to approve a tool call."""

    model_config = ConfigDict(frozen=True)

    type: Literal["mcp_approval_request"] = "mcp_approval_request"
    id: str
    name: str
    server_label: str
    arguments: str = ""


class ApprovalResponse(BaseModel):
    """User decision for a remote approval request."""

    model_config = ConfigDict(frozen=True)

    type: Literal["mcp_approval_response"] = "mcp_approval_response"
    approval_request_id: str
    approve: bool
    reason: str | None = None


class Message(BaseModel):
    """Chat message model."""

    role: Role
    content: str | list[ContentPart] = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    reasoning: str | None = None
    usage: Usage | None = None
    finish_reason: str | None = None
    pre_resolved_responses: list[PreResolvedResponse] | None = None
    approval_requests: list[ApprovalRequest] | None = None

    is_streaming: bool = False

    @classmethod
    def user(cls, content: str | list[ContentPart]) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role="assistant", content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    @classmethod
    def tool_error(cls, tool_call_id: str, error: str) -> Message:
        return cls.tool(tool_call_id, json.dumps({"error": error}))

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if isinstance(part, TextContent))

    def has_images(self) -> bool:
        return isinstance(self.content, list) and any(isinstance(p, ImageContent) for p in self.content)

    def has_content(self) -> bool:
        return bool(self.text().strip())

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def for_api(self) -> Message:
        """Copy that carries only what the chat API accepts."""
        return Message(
            role=self.role,
            content=self.content,
            tool_calls=self.tool_calls,
            tool_call_id=self.tool_call_id,
        )


ConversationItem = Union[Message, ApprovalRequest, ApprovalResponse]
