from __future__ import annotations

from os import PathLike
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from parley.log import logger


class RemoteMCPServer(BaseModel):
    """MCP server the API provider calls on our behalf."""

    server_label: str
    server_url: str | None = None
    connector_id: str | None = None
    authorization: str | None = None
    headers: dict[str, str] | None = None
    require_approval: Literal["always", "never"] = "always"

    def to_tool(self) -> dict[str, Any]:
        return {"type": "mcp", **self.model_dump(exclude_none=True)}


class ChatSettings(BaseModel):
    model: str | None = None
    temperature: float = 0.7
    top_p: float = 0.95
    custom_system_prompt: str = ""
    reasoning_effort: str | None = None
    use_responses_api: bool = False
    remote_mcp_servers: list[RemoteMCPServer] = Field(default_factory=list)


class SettingsStore:
    def __init__(self, path: PathLike | str) -> None:
        self.path = Path(path)

    def load(self) -> ChatSettings:
        if not self.path.exists():
            return ChatSettings()
        return ChatSettings.model_validate_json(self.path.read_text())

    def save(self, settings: ChatSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(settings.model_dump_json(indent=2))
        logger.info(f"Saved settings to {self.path}")
