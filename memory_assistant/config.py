"""Configuration management for Memory Assistant."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.memory-assistant/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI Memory Assistant - a helpful, conversational AI that remembers "
    "user interactions and provides personalized responses.\n\n"
    "Answer general questions directly without tools. Only use a tool when the user "
    "explicitly asks for the service it provides. After using any tool, always follow "
    "up with a brief, natural summary of the result and offer next steps. If a tool "
    "result reports an error or a refusal, explain it plainly to the user."
)


class ModelConfig(BaseModel):
    """Model configuration."""

    provider: str = "ollama"
    model: str = "llama3.3:70b"
    temperature: float = 0.7
    max_tokens: int = 4096
    api_key: str = ""
    base_url: str = ""
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


class ToolsConfig(BaseModel):
    """Tools configuration."""

    # Names listed here always wait for a human decision, whatever the
    # descriptor says.
    require_confirmation: list[str] = Field(default_factory=list)
    timeout_seconds: float = 30.0
    # "package.module:callable" returning the tool descriptors to serve
    factory: str = ""


class AgentConfig(BaseModel):
    """Chat handler configuration."""

    max_steps: int = 8


class WebConfig(BaseModel):
    """HTTP transport configuration."""

    host: str = "127.0.0.1"
    port: int = 8787


class QueueConfig(BaseModel):
    """Per-conversation queue behavior."""

    warn_after_ms: int = 2_000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Memory Assistant."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="MEMORY_ASSISTANT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML.

        Values set in the file win; fields it leaves unset are filled by
        pydantic-settings from ``MEMORY_ASSISTANT_*`` env vars and ``.env``.
        """
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
