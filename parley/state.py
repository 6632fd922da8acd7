from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from parley.messages import ApprovalRequest, ApprovalResponse, ConversationItem, Message, ToolCall


class TurnStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED_NO_TOOLS = "completed_no_tools"
    COMPLETED_WITH_TOOLS = "completed_with_tools"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def continues(self) -> bool:
        return self in (TurnStatus.PROCESSING, TurnStatus.COMPLETED_WITH_TOOLS)


class TurnResult(BaseModel):
    status: TurnStatus
    assistant_message: Message | None = None
    tool_responses: list[Message] = Field(default_factory=list)


class PausedChatState(BaseModel):
    """Snapshot of a turn waiting for the user to approve a tool call.

    ``current_messages`` is the history sent for the turn, before the
    assistant message. ``accumulated_responses`` holds the tool messages
    resolved so far, in resolution order.
    """

    current_messages: list[ConversationItem]
    assistant_message: Message
    pending: ToolCall | ApprovalRequest
    accumulated_responses: list[Message] = Field(default_factory=list)
    remaining_tool_calls: list[ToolCall] = Field(default_factory=list)

    pending_approvals: list[ApprovalRequest] = Field(default_factory=list)
    approval_request_items: list[ApprovalRequest] = Field(default_factory=list)
    approval_responses: list[ApprovalResponse] = Field(default_factory=list)

    @property
    def is_remote(self) -> bool:
        return isinstance(self.pending, ApprovalRequest)
