"""Configuration management for Helmsman."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONFIG_PATH = Path("~/.helmsman/config.yaml").expanduser()
DEFAULT_DB_PATH = Path("~/.helmsman/sessions.db").expanduser()
LOCAL_CONFIG_FILENAME = "helmsman.yaml"

DEFAULT_SYSTEM_PROMPT = """You are a helpful AI assistant with access to tools.

Guidelines:
- Use tools when they help you answer accurately (calculations, files, shell commands, lookups).
- Call one tool at a time unless the calls are independent.
- Read tool results carefully before answering; if a tool fails, explain or try another approach.
- When you have enough information, answer the user directly and concisely.

If your interface does not support native tool calls, request a tool by replying with only a JSON object:
{"name": "tool_name", "arguments": {"param": "value"}}"""


class ModelConfig(BaseModel):
    """Which backend to talk to and how."""

    provider: str = "ollama"
    model: str = "llama3.1"
    api_key: str = ""
    base_url: str = ""
    timeout: float = 300.0


class AgentConfig(BaseModel):
    """Limits and sampling knobs for the tool loop."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_iterations: int = Field(default=1000, ge=1)
    max_tool_calls: int = Field(default=1000, ge=0)
    temperature: float = 0.7
    top_p: float = 0.0
    max_tokens: int = 2048
    extra_body: dict[str, Any] = Field(default_factory=dict)
    tools: list[str] = Field(default_factory=list)
    memory_size: int = Field(default=100, ge=1)
    enable_channel_markup_parser: bool = False
    tool_timeout: float = 300.0


class ShellToolConfig(BaseModel):
    timeout: int = 30
    max_timeout: int = 300
    allowed_commands: list[str] = [
        "ls", "cat", "grep", "find", "echo", "pwd", "date", "wc", "sort",
        "head", "tail", "awk", "sed", "cut", "diff", "file", "which", "env",
        "printenv",
    ]
    yolo: bool = False


class WikipediaToolConfig(BaseModel):
    """Wikipedia tool configuration."""

    base_url: str = "https://en.wikipedia.org/w/api.php"
    max_results: int = 5
    timeout: int = 20


class GoogleSearchToolConfig(BaseModel):
    """Google Custom Search tool configuration."""

    api_key: str = ""
    cx: str = ""
    base_url: str = "https://www.googleapis.com/customsearch/v1"
    max_results: int = 10
    timeout: int = 20


class ToolsConfig(BaseModel):
    """Per-tool settings."""

    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)
    wikipedia: WikipediaToolConfig = Field(default_factory=WikipediaToolConfig)
    google_search: GoogleSearchToolConfig = Field(default_factory=GoogleSearchToolConfig)


class SessionConfig(BaseModel):
    path: str = str(DEFAULT_DB_PATH)
    auto_save: bool = True


class LoggingConfig(BaseModel):
    """Structured log output."""

    level: str = "WARNING"
    format: Literal["console", "json"] = "console"


class Config(BaseSettings):
    """Top-level settings; ``HELMSMAN_`` env vars use ``__`` for nesting."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="HELMSMAN_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs and lose to the environment.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """``./helmsman.yaml`` when present, else the per-user file."""
        candidate = Path.cwd() / LOCAL_CONFIG_FILENAME
        return candidate if candidate.exists() else DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Build a config from ``path``; an absent file yields the defaults."""
        source = Path(path).expanduser() if path else cls.resolve_default_config_path()
        if not source.exists():
            return cls()
        return cls(**(yaml.safe_load(source.read_text()) or {}))

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Write the current values out as YAML."""
        target = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            yaml.safe_dump(self.model_dump(exclude_none=True), default_flow_style=False, sort_keys=False)
        )


_active: Config | None = None


def get_config() -> Config:
    """Process-wide config, loaded lazily on first access."""
    global _active
    if _active is None:
        _active = Config.load()
    return _active


def set_config(config: Config) -> None:
    global _active
    _active = config
