import os
import sys
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from milhouse.constants import DEFAULT_HOST, DEFAULT_PORT, SESSIONS_FILE

MILHOUSE_DIR = Path.home() / ".milhouse"


def _default_state_dir() -> Path:
    return MILHOUSE_DIR


def _default_engine_command() -> list[str]:
    return [sys.executable, "-m", "milhouse.engine"]


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MILHOUSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        populate_by_name=True,
    )

    # Where sessions.json and the per-workdir state directories live
    state_dir: Path = Field(default_factory=_default_state_dir)
    # Relative workdirs given to /api/start resolve against this
    default_workdir: Path = Field(default_factory=Path.cwd)

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    # Codex CLI - api key read from the standard env var, no prefix
    codex_command: str = "codex"
    codex_model: str | None = None
    codex_api_key: str | None = Field(default=None, alias="CODEX_API_KEY")

    # Directory holding plan.md / build.md overrides for the built-in templates
    prompts_dir: Path | None = None

    # argv prefix used to launch the loop engine; engine flags are appended
    engine_command: list[str] = Field(default_factory=_default_engine_command)

    log_level: str = "INFO"

    @field_validator("state_dir", "default_workdir", mode="before")
    @classmethod
    def _absolute_dir(cls, v):
        if isinstance(v, str):
            v = v.strip()
        return Path(os.path.abspath(Path(v).expanduser()))

    @field_validator("codex_model", "codex_api_key", "prompts_dir", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("engine_command")
    @classmethod
    def _validate_engine_command(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("engine_command must not be empty")
        return v

    @field_validator("port")
    @classmethod
    def _validate_port(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError(f"port must be 0-65535, got {v}")
        return v

    @property
    def sessions_path(self) -> Path:
        return self.state_dir / SESSIONS_FILE
