from contextlib import AsyncExitStack
from typing import Any, Optional, Union

from mcp import ClientSession, StdioServerParameters, Tool
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.types import CallToolResult
from pydantic import BaseModel


class SSEServerParameters(BaseModel):
    url: str
    headers: dict | None = None
    timeout: float = 5
    sse_read_timeout: float = 60 * 5


ServerParams = Union[SSEServerParameters, StdioServerParameters]


class MCPClient:
    server_params: ServerParams

    def __init__(self, server_params: ServerParams):
        # Initialize session and client objects
        self.session: Optional[ClientSession] = None
        self.exit_stack = AsyncExitStack()

        self.server_params: ServerParams = server_params

    async def initialize(self) -> None:
        """Connect to an MCP server"""

        if isinstance(self.server_params, StdioServerParameters):
            transport = await self.exit_stack.enter_async_context(stdio_client(self.server_params))
        elif isinstance(self.server_params, SSEServerParameters):
            transport = await self.exit_stack.enter_async_context(
                sse_client(
                    self.server_params.url,
                    headers=self.server_params.headers,
                    timeout=self.server_params.timeout,
                    sse_read_timeout=self.server_params.sse_read_timeout,
                )
            )
        else:
            raise TypeError(f"Unsupported server parameters type: {type(self.server_params)}")
        read, write = transport
        self.session = await self.exit_stack.enter_async_context(ClientSession(read, write))

        await self.session.initialize()

    async def get_tools(self) -> list[Tool]:
        response = await self.session.list_tools()
        return response.tools

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> CallToolResult:
        return await self.session.call_tool(tool_name, arguments)

    async def cleanup(self):
        """Clean up resources"""
        await self.exit_stack.aclose()
