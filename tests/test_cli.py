import asyncio

import pytest
from click.testing import CliRunner

from parley.approval import ApprovalChoice, JsonFileApprovalPolicy
from parley.cli import TranscriptPrinter, cli
from parley.config import Config
from parley.dbutils import open_db_session
from parley.history import ChatHistoryStore
from parley.messages import Message, ToolCall, ToolCallFunction


@pytest.fixture
def cli_env(config: Config) -> dict[str, str | None]:
    return {
        "PARLEY_API_KEY": None,
        "PARLEY_SQLITE_FILE_PATH": config.sqlite_file_path,
        "PARLEY_MCP_CONFIG_PATH": config.mcp_config_path,
        "PARLEY_APPROVALS_PATH": config.approvals_path,
        "PARLEY_SETTINGS_PATH": config.settings_path,
    }


async def seed_chat(config: Config) -> str:
    async with open_db_session(config) as session:
        store = ChatHistoryStore(session)
        chat_id = await store.create_chat(model="llama-3.3-70b-versatile")
        await store.save_chat(chat_id, [Message.user("hi"), Message.assistant("Hello!")])
        await store.update_title(chat_id, "Greeting")
        return chat_id


def test_history_list_empty(cli_env):
    result = CliRunner().invoke(cli, ["history", "list"], env=cli_env)

    assert result.exit_code == 0
    assert "No chats yet." in result.output


def test_history_show_and_delete(config, cli_env):
    chat_id = asyncio.run(seed_chat(config))
    runner = CliRunner()

    result = runner.invoke(cli, ["history", "list"], env=cli_env)
    assert chat_id in result.output
    assert "Greeting" in result.output

    result = runner.invoke(cli, ["history", "show", chat_id], env=cli_env)
    assert result.exit_code == 0
    assert "Greeting (llama-3.3-70b-versatile)" in result.output
    assert "user: hi" in result.output
    assert "assistant: Hello!" in result.output

    result = runner.invoke(cli, ["history", "delete", chat_id, "--yes"], env=cli_env)
    assert result.exit_code == 0

    result = runner.invoke(cli, ["history", "show", chat_id], env=cli_env)
    assert result.exit_code != 0


def test_approvals_list_and_reset(config, cli_env):
    policy = JsonFileApprovalPolicy(config.approvals_path)
    policy.set("get_weather", ApprovalChoice.ALWAYS)
    runner = CliRunner()

    result = runner.invoke(cli, ["approvals", "list"], env=cli_env)
    assert "get_weather: always" in result.output

    result = runner.invoke(cli, ["approvals", "reset"], env=cli_env)
    assert result.exit_code == 0

    result = runner.invoke(cli, ["approvals", "list"], env=cli_env)
    assert "No remembered approvals." in result.output


def test_models_without_api_key_lists_known_models(cli_env):
    result = CliRunner().invoke(cli, ["models"], env=cli_env)

    assert result.exit_code == 0
    assert "meta-llama/llama-4-scout-17b-16e-instruct  context=131072 vision" in result.output
    assert "llama-3.1-8b-instant  context=131072\n" in result.output


def test_transcript_printer_streams_deltas(capsys):
    printer = TranscriptPrinter(shown=1)
    user = Message.user("weather?")
    call = ToolCall(id="call_1", function=ToolCallFunction(name="get_weather", arguments='{"city": "Paris"}'))

    printer([user])
    printer([user, Message(role="assistant", is_streaming=True)])
    printer([user, Message(role="assistant", content="Hel", is_streaming=True)])
    printer([user, Message(role="assistant", content="Hello", is_streaming=True)])
    printer([user, Message.assistant("Hello", tool_calls=[call])])
    printer([user, Message.assistant("Hello", tool_calls=[call]), Message.tool("call_1", "sunny")])

    assert capsys.readouterr().out == 'Hello\n  -> get_weather({"city": "Paris"})\n  <- sunny\n'
