from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_DATA_DIR = Path.home() / ".parley"


def get_config() -> Config:
    return Config()


class Config(BaseSettings):
    api_key: str | None = None
    base_url: str = "https://api.groq.com/openai/v1"
    provider: str = "groq"
    default_model: str = "llama-3.3-70b-versatile"
    request_timeout: float = 60 * 5

    sqlite_file_path: str = (_DATA_DIR / "parley.sqlite").expanduser().resolve().absolute().as_posix()
    mcp_config_path: str = (_DATA_DIR / "mcp.json").expanduser().resolve().absolute().as_posix()
    approvals_path: str = (_DATA_DIR / "approvals.json").expanduser().resolve().absolute().as_posix()
    settings_path: str = (_DATA_DIR / "settings.json").expanduser().resolve().absolute().as_posix()

    max_empty_retries: int = 3

    model_config = SettingsConfigDict(env_prefix="parley_", case_sensitive=False, frozen=True)

    def get_db_url(self, async_mode: bool = True) -> str:
        if not self.sqlite_file_path:
            raise ValueError("SQLite file path is not configured")
        sqlite_file_path = Path(self.sqlite_file_path).expanduser().resolve().absolute().as_posix()
        if async_mode:
            return f"sqlite+aiosqlite:///{sqlite_file_path}"
        else:
            return f"sqlite+pysqlite:///{sqlite_file_path}"

    def require_api_key(self) -> str:
        if not self.api_key or self.api_key == "<replace me>":
            raise ValueError("API key not configured. Set PARLEY_API_KEY or add it to your environment.")
        return self.api_key
