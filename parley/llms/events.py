"""Events produced by a streaming chat request."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from parley.messages import ApprovalRequest, Message, PreResolvedResponse, ToolCall, Usage


class StreamStart(BaseModel):
    event_kind: Literal["start"] = "start"
    stream_id: str | None = None


class ContentDelta(BaseModel):
    event_kind: Literal["content"] = "content"
    content: str


class ToolCallsSnapshot(BaseModel):
    """Every tool call accumulated so far in the response."""

    event_kind: Literal["tool_calls"] = "tool_calls"
    tool_calls: list[ToolCall]


class ReasoningDelta(BaseModel):
    event_kind: Literal["reasoning"] = "reasoning"
    reasoning: str
    accumulated: str


class ApprovalRequested(BaseModel):
    event_kind: Literal["approval_request"] = "approval_request"
    approval_request: ApprovalRequest


class StreamComplete(BaseModel):
    """Final state of the assistant response."""

    event_kind: Literal["complete"] = "complete"
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    reasoning: str | None = None
    usage: Usage | None = None
    finish_reason: str | None = None
    pre_resolved_responses: list[PreResolvedResponse] | None = None
    approval_requests: list[ApprovalRequest] | None = None

    def to_message(self) -> Message:
        return Message(
            role="assistant",
            content=self.content,
            tool_calls=self.tool_calls or None,
            reasoning=self.reasoning or None,
            usage=self.usage,
            finish_reason=self.finish_reason,
            pre_resolved_responses=self.pre_resolved_responses or None,
            approval_requests=self.approval_requests or None,
        )


class StreamError(BaseModel):
    event_kind: Literal["error"] = "error"
    error: str


class StreamCancelled(BaseModel):
    event_kind: Literal["cancelled"] = "cancelled"


StreamEvent = Annotated[
    Union[
        StreamStart,
        ContentDelta,
        ToolCallsSnapshot,
        ReasoningDelta,
        ApprovalRequested,
        StreamComplete,
        StreamError,
        StreamCancelled,
    ],
    Field(discriminator="event_kind"),
]

TERMINAL_EVENTS = (StreamComplete, StreamError, StreamCancelled)
