"""Turn orchestration: streaming, tool approval and resumption."""

from __future__ import annotations

from collections.abc import Awaitable, Sequence

from parley.approval import ApprovalChoice, ApprovalPolicy
from parley.exceptions import ApprovalStateError, ParleyError
from parley.llms import ChatClient, ChatStream
from parley.llms.events import (
    ApprovalRequested,
    ContentDelta,
    ReasoningDelta,
    StreamCancelled,
    StreamComplete,
    StreamError,
    StreamStart,
    ToolCallsSnapshot,
)
from parley.log import logger
from parley.messages import (
    ApprovalRequest,
    ApprovalResponse,
    ContentPart,
    ConversationItem,
    Message,
    ToolCall,
)
from parley.state import PausedChatState, TurnResult, TurnStatus
from parley.tools import ToolExecutor, run_tool_call
from parley.transcript import Transcript

MAX_EMPTY_RETRIES = 3

DENIED_BY_USER = "Tool execution denied by user."
REMOTE_DENIED_REASON = "User denied the tool execution"
EMPTY_RESPONSE_ERROR = "Error: Model failed to generate a response after multiple attempts."


class ChatOrchestrator:
    """
    Drives a conversation through model turns and tool calls.

    A user message starts a flow of turns. Every turn streams one assistant
    response into the transcript. Local tool calls are executed when the
    approval policy allows it; otherwise the flow pauses until
    ``handle_tool_approval`` is called with the user's decision. The flow
    continues until a turn completes without tool calls, fails, pauses or
    is stopped.
    """

    def __init__(
        self,
        client: ChatClient,
        tool_executor: ToolExecutor,
        approval_policy: ApprovalPolicy,
        model: str,
        transcript: Transcript | None = None,
        max_empty_retries: int = MAX_EMPTY_RETRIES,
    ) -> None:
        self.client = client
        self.tool_executor = tool_executor
        self.approval_policy = approval_policy
        self.model = model
        self.transcript = transcript or Transcript()
        self.max_empty_retries = max_empty_retries

        self.paused_state: PausedChatState | None = None
        self.is_busy = False
        self._cancelled = False
        self._running = False
        self._active_stream: ChatStream | None = None

    @property
    def pending_approval(self) -> ToolCall | ApprovalRequest | None:
        return self.paused_state.pending if self.paused_state else None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def stop(self) -> None:
        """Cancel the current flow. Takes effect at the next cancellation point.

        A running flow stays busy until it reaches that point, so no new
        message can start while it is still unwinding.
        """
        logger.info("Stopping generation...")
        self._cancelled = True
        if self._active_stream is not None:
            self._active_stream.cancel()
        self.paused_state = None
        if not self._running:
            self.is_busy = False

    def reset(self, messages: Sequence[Message] = ()) -> None:
        """Start over with the given messages, e.g. when switching chats."""
        if self.is_busy:
            self.stop()
        self.paused_state = None
        self.transcript.replace_all(messages)

    async def send_message(self, content: str | list[ContentPart]) -> TurnStatus:
        """Append a user message and run turns until the flow settles.

        Raises:
            ValueError: If the message has neither text nor images.
            ParleyError: If another flow is in progress or paused.
        """
        user_message = Message.user(content)
        if not user_message.has_content() and not user_message.has_images():
            raise ValueError("Cannot send an empty message")
        if self.is_busy:
            raise ParleyError("A conversation flow is already in progress")

        self._cancelled = False
        self.paused_state = None
        self.transcript.append(user_message)
        self.is_busy = True
        history = [message.for_api() for message in self.transcript.persistable()]
        return await self._drive(self._run_conversation(history))

    async def _drive(self, flow: Awaitable[TurnStatus]) -> TurnStatus:
        # busy while running or paused
        self._running = True
        try:
            return await flow
        finally:
            self._running = False
            if self._cancelled:
                self.paused_state = None
            if self.paused_state is None:
                self.is_busy = False

    async def _run_conversation(self, history: list[ConversationItem]) -> TurnStatus:
        status = TurnStatus.PROCESSING
        empty_retries = 0
        try:
            while status.continues:
                if self._cancelled:
                    logger.info("Chat flow cancelled before starting a new turn")
                    status = TurnStatus.CANCELLED
                    break

                result = await self.execute_turn(history)
                status = result.status

                if status == TurnStatus.COMPLETED_WITH_TOOLS:
                    empty_retries = 0
                    history = [
                        *history,
                        result.assistant_message.for_api(),
                        *(response.for_api() for response in result.tool_responses),
                    ]
                elif status == TurnStatus.COMPLETED_NO_TOOLS:
                    message = result.assistant_message
                    if message is not None and not message.has_content() and not message.has_tool_calls():
                        if empty_retries < self.max_empty_retries:
                            empty_retries += 1
                            logger.warning(
                                f"Model completed with no content. Retrying ({empty_retries}/{self.max_empty_retries})"
                            )
                            self.transcript.remove_last_assistant()
                            status = TurnStatus.PROCESSING
                        else:
                            logger.error("Max retries reached for empty response")
                            self.transcript.replace_last_assistant(Message.assistant(EMPTY_RESPONSE_ERROR))
                            status = TurnStatus.ERROR
        except Exception as e:
            logger.exception(f"Error in chat flow: {e}")
            self.transcript.append(Message.assistant(f"Error: {e}"))
            status = TurnStatus.ERROR
        return status

    async def execute_turn(self, history: Sequence[ConversationItem]) -> TurnResult:
        """Stream one assistant response and resolve its tool calls.

        The streaming placeholder is replaced by the final message, or by an
        ``Error: ...`` message if the request fails.
        """
        history = list(history)
        self.transcript.append(Message(role="assistant", content="", is_streaming=True))
        try:
            message, status = await self._stream_response(history)
            if message is None:
                return TurnResult(status=status)

            tool_responses: list[Message] = []
            status = TurnStatus.COMPLETED_NO_TOOLS
            if message.tool_calls:
                tool_responses = [
                    Message.tool(response.tool_call_id, response.content)
                    for response in message.pre_resolved_responses or []
                ]
                if tool_responses:
                    logger.info(f"Received {len(tool_responses)} tool responses resolved by the API")
                    self.transcript.extend(tool_responses)

                resolved_ids = {response.tool_call_id for response in tool_responses}
                local_calls = [
                    tool_call
                    for tool_call in message.tool_calls
                    if tool_call.id not in resolved_ids and not tool_call.server_label
                ]
                if local_calls:
                    status, local_responses = await self.process_tool_calls(
                        local_calls, message, history, tool_responses
                    )
                    tool_responses = [*tool_responses, *local_responses]

            if message.approval_requests and status in (TurnStatus.COMPLETED_NO_TOOLS, TurnStatus.COMPLETED_WITH_TOOLS):
                self._pause_for_remote_approvals(history, message, tool_responses)
                status = TurnStatus.PAUSED

            return TurnResult(status=status, assistant_message=message, tool_responses=tool_responses)
        except Exception as e:
            logger.exception(f"Error in chat turn: {e}")
            self.transcript.replace_streaming(Message.assistant(f"Error: {e}"))
            return TurnResult(status=TurnStatus.ERROR)

    async def _stream_response(self, history: list[ConversationItem]) -> tuple[Message | None, TurnStatus]:
        content = ""
        approval_requests: list[ApprovalRequest] = []
        completion: StreamComplete | None = None

        stream = self.client.stream(history, self.model)
        self._active_stream = stream
        if self._cancelled:
            stream.cancel()
        try:
            async with stream:
                async for event in stream:
                    if isinstance(event, StreamStart):
                        continue
                    if isinstance(event, ContentDelta):
                        content += event.content
                        self.transcript.update_streaming(content=content)
                    elif isinstance(event, ToolCallsSnapshot):
                        self.transcript.update_streaming(tool_calls=event.tool_calls)
                    elif isinstance(event, ReasoningDelta):
                        self.transcript.update_streaming(reasoning=event.accumulated)
                    elif isinstance(event, ApprovalRequested):
                        approval_requests.append(event.approval_request)
                    elif isinstance(event, StreamComplete):
                        completion = event
                    elif isinstance(event, StreamError):
                        logger.error(f"Chat stream failed: {event.error}")
                        self.transcript.replace_streaming(Message.assistant(f"Error: {event.error}"))
                        return None, TurnStatus.ERROR
                    elif isinstance(event, StreamCancelled):
                        logger.info("Chat stream cancelled")
                        if content.strip():
                            self.transcript.replace_streaming(Message.assistant(content))
                        else:
                            self.transcript.remove_streaming()
                        return None, TurnStatus.CANCELLED
        finally:
            self._active_stream = None

        if completion is None:
            raise ParleyError("Stream ended unexpectedly.")

        message = completion.to_message()
        if not message.approval_requests and approval_requests:
            message = message.model_copy(update={"approval_requests": approval_requests})
        self.transcript.replace_streaming(message)
        return message, TurnStatus.PROCESSING

    async def process_tool_calls(
        self,
        tool_calls: Sequence[ToolCall],
        assistant_message: Message,
        history: Sequence[ConversationItem],
        resolved_responses: Sequence[Message] = (),
    ) -> tuple[TurnStatus, list[Message]]:
        """Execute local tool calls in order, pausing at the first that needs approval.

        Returns the status (``COMPLETED_WITH_TOOLS``, ``PAUSED`` or
        ``CANCELLED``) and the tool messages produced before it.
        """
        responses: list[Message] = []
        for index, tool_call in enumerate(tool_calls):
            if self._cancelled:
                logger.info("Tool processing cancelled")
                return TurnStatus.CANCELLED, responses

            approval_status = self.approval_policy.get(tool_call.name)
            if not approval_status.auto_approved:
                logger.info(f"Tool '{tool_call.name}' requires user approval")
                self.paused_state = PausedChatState(
                    current_messages=list(history),
                    assistant_message=assistant_message,
                    pending=tool_call,
                    accumulated_responses=[*resolved_responses, *responses],
                    remaining_tool_calls=list(tool_calls[index + 1 :]),
                )
                return TurnStatus.PAUSED, responses

            logger.info(f"Tool '{tool_call.name}' automatically approved ({approval_status.value})")
            response = await run_tool_call(self.tool_executor, tool_call)
            if self._cancelled:
                logger.info(f"Chat flow cancelled while executing tool '{tool_call.name}'")
                return TurnStatus.CANCELLED, responses
            self.transcript.append(response)
            responses.append(response)

        return TurnStatus.COMPLETED_WITH_TOOLS, responses

    def _pause_for_remote_approvals(
        self,
        history: Sequence[ConversationItem],
        assistant_message: Message,
        resolved_responses: Sequence[Message],
    ) -> None:
        requests = list(assistant_message.approval_requests or [])
        logger.info(f"Remote MCP server requested approval for {len(requests)} tool calls")
        self.paused_state = PausedChatState(
            current_messages=list(history),
            assistant_message=assistant_message,
            pending=requests[0],
            accumulated_responses=list(resolved_responses),
            pending_approvals=requests[1:],
            approval_request_items=requests,
        )

    async def handle_tool_approval(self, choice: ApprovalChoice | str) -> TurnStatus:
        """Apply the user's decision for the pending tool call and resume the flow.

        Raises:
            ApprovalStateError: If no tool call is awaiting approval.
        """
        paused = self.paused_state
        if paused is None:
            raise ApprovalStateError("No tool call is awaiting approval")

        choice = ApprovalChoice(choice)
        self.paused_state = None
        self.approval_policy.set(paused.pending.name, choice)

        if isinstance(paused.pending, ApprovalRequest):
            return await self._drive(self._resume_remote_approval(paused, choice))
        return await self._drive(self._resume_local_call(paused, choice))

    async def _resume_local_call(self, paused: PausedChatState, choice: ApprovalChoice) -> TurnStatus:
        tool_call = paused.pending
        if choice == ApprovalChoice.DENY:
            logger.info(f"Tool '{tool_call.name}' denied by user")
            response = Message.tool_error(tool_call.id, DENIED_BY_USER)
        else:
            logger.info(f"Tool '{tool_call.name}' approved by user ({choice.value})")
            response = await run_tool_call(self.tool_executor, tool_call)
        if self._cancelled:
            logger.info(f"Chat flow cancelled while executing tool '{tool_call.name}'")
            return TurnStatus.CANCELLED
        self.transcript.append(response)
        return await self._resume_tool_calls(paused, response)

    async def _resume_tool_calls(self, paused: PausedChatState, handled_response: Message) -> TurnStatus:
        if self._cancelled:
            logger.info("Resume cancelled by user")
            return TurnStatus.CANCELLED

        responses = [*paused.accumulated_responses, handled_response]
        status, more_responses = await self.process_tool_calls(
            paused.remaining_tool_calls, paused.assistant_message, paused.current_messages, responses
        )
        responses.extend(more_responses)
        if status in (TurnStatus.PAUSED, TurnStatus.CANCELLED):
            return status

        if paused.assistant_message.approval_requests:
            self._pause_for_remote_approvals(paused.current_messages, paused.assistant_message, responses)
            return TurnStatus.PAUSED

        history = [
            *paused.current_messages,
            paused.assistant_message.for_api(),
            *(response.for_api() for response in responses),
        ]
        return await self._run_conversation(history)

    async def _resume_remote_approval(self, paused: PausedChatState, choice: ApprovalChoice) -> TurnStatus:
        request = paused.pending
        approved = choice != ApprovalChoice.DENY
        logger.info(f"Remote tool '{request.name}' on '{request.server_label}' {'approved' if approved else 'denied'}")
        approval_responses = [
            *paused.approval_responses,
            ApprovalResponse(
                approval_request_id=request.id,
                approve=approved,
                reason=None if approved else REMOTE_DENIED_REASON,
            ),
        ]

        if paused.pending_approvals:
            self.paused_state = paused.model_copy(
                update={
                    "pending": paused.pending_approvals[0],
                    "pending_approvals": paused.pending_approvals[1:],
                    "approval_responses": approval_responses,
                }
            )
            return TurnStatus.PAUSED

        if self._cancelled:
            logger.info("Resume cancelled by user")
            return TurnStatus.CANCELLED

        history: list[ConversationItem] = list(paused.current_messages)
        assistant_message = paused.assistant_message
        if assistant_message.has_content() or assistant_message.has_tool_calls():
            history.append(assistant_message.for_api())
        history.extend(response.for_api() for response in paused.accumulated_responses)
        history.extend(paused.approval_request_items)
        history.extend(approval_responses)
        return await self._run_conversation(history)
