"""Local tool execution."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from mcp.types import CallToolResult, TextContent
from pydantic import BaseModel, Field

from parley.exceptions import ToolNotFoundError
from parley.log import logger
from parley.mcp.manager import MCPManager
from parley.messages import Message, ToolCall


class ToolSpec(BaseModel):
    """A tool the model may call."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    server_id: str | None = None


class ToolResult(BaseModel):
    result: str | None = None
    error: str | None = None

    def to_message(self, tool_call: ToolCall) -> Message:
        if self.error is not None:
            return Message.tool_error(tool_call.id, self.error)
        return Message.tool(tool_call.id, self.result or "")


class ToolExecutor(ABC):
    @abstractmethod
    def list_tools(self) -> list[ToolSpec]:
        pass

    @abstractmethod
    async def execute(self, tool_call: ToolCall) -> ToolResult:
        pass


def _call_tool_result_to_text(call_tool_result: CallToolResult) -> str:
    texts = []
    for content in call_tool_result.content:
        if isinstance(content, TextContent):
            texts.append(content.text)
        else:
            texts.append(content.model_dump_json(exclude_none=True))
    return "\n".join(texts)


class MCPToolExecutor(ToolExecutor):
    def __init__(self, mcp_manager: MCPManager) -> None:
        self.mcp_manager = mcp_manager

    def list_tools(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema,
                server_id=server_name,
            )
            for server_name, tools in self.mcp_manager.tools.items()
            for tool in tools
        ]

    async def execute(self, tool_call: ToolCall) -> ToolResult:
        try:
            arguments = tool_call.parsed_arguments()
        except ValueError as e:
            return ToolResult(error=f"Invalid arguments for tool '{tool_call.name}': {e}")

        try:
            server_name = self.mcp_manager.find_server(tool_call.name)
        except ToolNotFoundError as e:
            return ToolResult(error=str(e))

        call_tool_result = await self.mcp_manager.call_tool(server_name, tool_call.name, arguments)
        text = _call_tool_result_to_text(call_tool_result)
        if call_tool_result.isError:
            logger.warning(f"Tool '{tool_call.name}' returned an error: {text}")
            return ToolResult(error=text)
        return ToolResult(result=text)


async def run_tool_call(executor: ToolExecutor, tool_call: ToolCall) -> Message:
    """Execute a tool call and wrap the outcome into a tool message."""
    try:
        return (await executor.execute(tool_call)).to_message(tool_call)
    except Exception as e:
        logger.exception(f"Error executing tool '{tool_call.name}': {e}")
        return Message.tool(
            tool_call.id,
            json.dumps({"error": f"Error executing tool '{tool_call.name}': {e}"}),
        )
