import json
from pathlib import Path

import pytest
from fakes import make_tool_call

from parley.config import Config
from parley.exceptions import ToolNotFoundError
from parley.mcp.manager import MCPManager, init_mcp_manager
from parley.tools import MCPToolExecutor, ToolResult


async def test_manager_skips_disabled_servers(config: Config):
    async with init_mcp_manager(config) as mcp_manager:
        assert mcp_manager.initialized
        assert list(mcp_manager.clients) == ["mock"]
        assert mcp_manager.disabled_clients == ["disabled-mock"]
        assert mcp_manager.failed_clients == {}
        assert mcp_manager.find_server("echo_text") == "mock"
        with pytest.raises(ToolNotFoundError):
            mcp_manager.find_server("delete_everything")


def test_missing_config_means_no_servers(tmp_path: Path):
    mcp_manager = MCPManager(tmp_path / "missing.json")

    assert mcp_manager.clients == {}


async def test_mcp_tool_executor(config: Config):
    async with init_mcp_manager(config) as mcp_manager:
        executor = MCPToolExecutor(mcp_manager)

        tools = {tool.name: tool for tool in executor.list_tools()}
        assert sorted(tools) == ["echo_text", "get_weather", "raise_error"]
        assert tools["get_weather"].server_id == "mock"
        assert tools["get_weather"].input_schema["required"] == ["city"]

        result = await executor.execute(make_tool_call("call_1", "echo_text", '{"text": "hello"}'))
        assert result == ToolResult(result="hello")

        result = await executor.execute(make_tool_call("call_2", "get_weather", '{"city": "Paris"}'))
        assert result.error is None
        assert json.loads(result.result)["city"] == "Paris"

        result = await executor.execute(make_tool_call("call_3", "raise_error", '{"message": "boom"}'))
        assert result.result is None
        assert "boom" in result.error

        result = await executor.execute(make_tool_call("call_4", "echo_text", "not json"))
        assert result.error.startswith("Invalid arguments for tool 'echo_text'")

        result = await executor.execute(make_tool_call("call_5", "delete_everything", "{}"))
        assert result == ToolResult(error="Tool 'delete_everything' is not provided by any connected MCP server")
