from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from os import PathLike
from pathlib import Path
from typing import Any

from mcp import Tool
from mcp.types import CallToolResult
from pydantic import BaseModel, Field

from parley.config import Config
from parley.exceptions import ToolNotFoundError
from parley.log import logger
from parley.mcp.client import MCPClient, ServerParams


@asynccontextmanager
async def init_mcp_manager(config: Config) -> AsyncIterator[MCPManager]:
    mcp_manager = MCPManager(config.mcp_config_path)
    await mcp_manager.initialize()
    try:
        yield mcp_manager
    finally:
        await mcp_manager.cleanup()
        logger.info("MCP manager disposed")


ServerName = str


class MCPConfig(BaseModel):
    mcp_servers: dict[ServerName, ServerParams] = Field({}, alias="mcpServers")


class MCPManager:
    clients: dict[ServerName, MCPClient]
    tools: dict[ServerName, list[Tool]]
    disabled_clients: list[ServerName]
    failed_clients: dict[ServerName, tuple[ServerParams, Exception]]
    initialized: bool

    def __init__(self, config_path: PathLike | str) -> None:
        logger.info(f"Loading MCP config from {config_path}")
        config_path = Path(config_path)

        mcp_configs = json.loads(config_path.read_text()) if config_path.exists() else {"mcpServers": {}}
        servers = mcp_configs.get("mcpServers", {})
        self.disabled_clients = [
            server_name for server_name, server_params in servers.items() if not server_params.get("enabled", True)
        ]
        for server_name in self.disabled_clients:
            del servers[server_name]

        self.mcp_config = MCPConfig.model_validate({"mcpServers": servers})
        self.clients = {
            server_name: MCPClient(server_params) for server_name, server_params in self.mcp_config.mcp_servers.items()
        }
        self.tools = {}
        self.failed_clients = {}
        self.initialized = False

    async def initialize(self) -> None:
        for server_name, client in self.clients.items():
            try:
                await client.initialize()
                self.tools[server_name] = await client.get_tools()
                logger.info(f"Connected to {server_name} with {len(self.tools[server_name])} tools")
            except Exception as e:
                logger.exception(f"Error connecting to {server_name}: {e}")
                self.failed_clients[server_name] = (client.server_params, e)

        if self.failed_clients:
            logger.error(f"{len(self.failed_clients)} MCP clients failed to connect")
            self.clients = {
                server_name: client
                for server_name, client in self.clients.items()
                if server_name not in self.failed_clients
            }
        self.initialized = True

    def find_server(self, tool_name: str) -> ServerName:
        for server_name, tools in self.tools.items():
            if any(tool.name == tool_name for tool in tools):
                return server_name
        raise ToolNotFoundError(tool_name)

    async def call_tool(self, server_name: ServerName, tool_name: str, arguments: dict[str, Any]) -> CallToolResult:
        logger.info(f"Calling {server_name}/{tool_name}")
        return await self.clients[server_name].call_tool(tool_name, arguments)

    async def cleanup(self) -> None:
        for client in self.clients.values():
            await client.cleanup()
