from __future__ import annotations

import json
import os
import sys

os.environ["LOGURU_LEVEL"] = "DEBUG"

from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from parley.approval import InMemoryApprovalPolicy
from parley.config import Config
from parley.dbutils import init_engine

_HERE = Path(__file__).parent


@pytest.fixture
def temp_mcp_config(tmp_path: Path) -> Path:
    """Create a temporary MCP config file."""
    config_path = tmp_path / "mcp.json"
    config = {
        "mcpServers": {
            "mock": {
                "command": sys.executable,
                "args": [(_HERE / "mock" / "mcp_server.py").absolute().as_posix()],
                "enabled": True,
            },
            "disabled-mock": {
                "command": sys.executable,
                "args": [(_HERE / "mock" / "mcp_server.py").absolute().as_posix()],
                "enabled": False,
            },
        }
    }
    config_path.write_text(json.dumps(config))
    return config_path


@pytest.fixture
def config(tmp_path: Path, temp_mcp_config: Path) -> Config:
    return Config(
        api_key="test-key",
        sqlite_file_path=(tmp_path / "parley.sqlite").as_posix(),
        mcp_config_path=temp_mcp_config.as_posix(),
        approvals_path=(tmp_path / "approvals.json").as_posix(),
        settings_path=(tmp_path / "settings.json").as_posix(),
    )


@pytest.fixture
def policy() -> InMemoryApprovalPolicy:
    return InMemoryApprovalPolicy()


@pytest.fixture
async def db_session(config: Config):
    async with init_engine(config) as engine:
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        async with session_factory() as session:
            yield session
