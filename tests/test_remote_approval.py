from fakes import FakeToolExecutor, ScriptedChatClient, make_tool_call, text_reply, tool_reply
from parley.approval import ApprovalChoice, ApprovalStatus, InMemoryApprovalPolicy
from parley.llms.events import ApprovalRequested, StreamComplete, StreamStart
from parley.messages import ApprovalRequest, ApprovalResponse, Message
from parley.orchestrator import ChatOrchestrator
from parley.state import TurnStatus

FIRST_REQUEST = ApprovalRequest(
    id="mcpr_1", name="ask_question", server_label="deepwiki", arguments='{"repo": "a/b"}'
)
SECOND_REQUEST = ApprovalRequest(id="mcpr_2", name="read_wiki", server_label="deepwiki", arguments="{}")


def approval_reply(*requests: ApprovalRequest, content: str = "") -> list:
    return [
        StreamStart(),
        *(ApprovalRequested(approval_request=request) for request in requests),
        StreamComplete(content=content, approval_requests=list(requests), finish_reason="mcp_approval_required"),
    ]


async def test_remote_requests_are_decided_in_order_then_resumed():
    client = ScriptedChatClient(approval_reply(FIRST_REQUEST, SECOND_REQUEST), text_reply("The answer."))
    executor = FakeToolExecutor()
    orchestrator = ChatOrchestrator(client, executor, InMemoryApprovalPolicy(), "gpt-oss")

    assert await orchestrator.send_message("ask the wiki") == TurnStatus.PAUSED
    assert orchestrator.pending_approval == FIRST_REQUEST
    assert orchestrator.paused_state.is_remote

    assert await orchestrator.handle_tool_approval("once") == TurnStatus.PAUSED
    assert orchestrator.pending_approval == SECOND_REQUEST
    assert len(client.requests) == 1

    assert await orchestrator.handle_tool_approval("deny") == TurnStatus.COMPLETED_NO_TOOLS
    assert client.requests[1] == [
        Message.user("ask the wiki"),
        FIRST_REQUEST,
        SECOND_REQUEST,
        ApprovalResponse(approval_request_id="mcpr_1", approve=True),
        ApprovalResponse(approval_request_id="mcpr_2", approve=False, reason="User denied the tool execution"),
    ]
    assert executor.executed == []
    assert not orchestrator.is_busy


async def test_remote_resume_includes_assistant_content():
    client = ScriptedChatClient(approval_reply(FIRST_REQUEST, content="Let me check."), text_reply("Found it."))
    orchestrator = ChatOrchestrator(client, FakeToolExecutor(), InMemoryApprovalPolicy(), "gpt-oss")

    await orchestrator.send_message("ask")
    await orchestrator.handle_tool_approval("once")

    assert client.requests[1][:2] == [Message.user("ask"), Message.assistant("Let me check.")]


async def test_remote_decision_updates_policy():
    client = ScriptedChatClient(approval_reply(FIRST_REQUEST), text_reply("ok"))
    policy = InMemoryApprovalPolicy()
    orchestrator = ChatOrchestrator(client, FakeToolExecutor(), policy, "gpt-oss")

    await orchestrator.send_message("ask")
    await orchestrator.handle_tool_approval(ApprovalChoice.ALWAYS)

    assert policy.get("ask_question") == ApprovalStatus.ALWAYS


async def test_local_pause_takes_precedence_over_remote_requests():
    local = make_tool_call("call_a", "get_weather", '{"city": "Paris"}')
    client = ScriptedChatClient(
        tool_reply(local, approval_requests=[FIRST_REQUEST]),
        text_reply("Both done."),
    )
    executor = FakeToolExecutor({"get_weather": "sunny"})
    orchestrator = ChatOrchestrator(client, executor, InMemoryApprovalPolicy(), "gpt-oss")

    assert await orchestrator.send_message("go") == TurnStatus.PAUSED
    assert orchestrator.pending_approval == local

    assert await orchestrator.handle_tool_approval("once") == TurnStatus.PAUSED
    assert orchestrator.pending_approval == FIRST_REQUEST
    assert executor.executed == [local]

    assert await orchestrator.handle_tool_approval("once") == TurnStatus.COMPLETED_NO_TOOLS
    assert client.requests[1] == [
        Message.user("go"),
        Message.assistant(tool_calls=[local]),
        Message.tool("call_a", "sunny"),
        FIRST_REQUEST,
        ApprovalResponse(approval_request_id="mcpr_1", approve=True),
    ]
