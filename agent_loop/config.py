"""Configuration management for the agent loop."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_loop.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.agent-loop/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_MODEL = "qwen-plus"

# Fallback variables for the model endpoint.
DASHSCOPE_API_KEY_ENV = "DASHSCOPE_API_KEY"
DASHSCOPE_BASE_URL_ENV = "DASHSCOPE_BASE_URL"
DASHSCOPE_MODEL_ENV = "DASHSCOPE_MODEL"

DEFAULT_BLOCKED_PATTERNS = [
    "rm -rf /",
    "sudo",
    "shutdown",
    "reboot",
    "> /dev/",
]


class ModelConfig(BaseModel):
    """Model endpoint configuration."""

    provider: str = "openai"
    model: str = DEFAULT_MODEL
    api_key: str = ""
    base_url: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    timeout: float = 120.0


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 120
    blocked: list[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_PATTERNS))
    max_output_chars: int = 50000
    truncation_marker: str = ""
    executable: str = ""


class ToolsConfig(BaseModel):
    """Tools configuration."""

    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)


class AgentConfig(BaseModel):
    """Turn loop configuration."""

    system_prompt: str = "system_prompt.md"
    prompts_dir: str = ""
    max_turns: int | None = Field(default=None, ge=1)
    working_dir: str = ""


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for the agent loop."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="AGENT_LOOP_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
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
        """Let environment variables override values loaded from YAML."""
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML, then apply endpoint fallbacks."""
        config = cls.from_yaml(path)
        config.apply_dashscope_fallbacks()
        return config

    def apply_dashscope_fallbacks(self) -> None:
        """Fill empty model fields from the DASHSCOPE_* variables."""
        if not self.model.api_key:
            self.model.api_key = os.environ.get(DASHSCOPE_API_KEY_ENV, "")
        if not self.model.base_url:
            self.model.base_url = os.environ.get(DASHSCOPE_BASE_URL_ENV, "")
        if self.model.model == DEFAULT_MODEL:
            self.model.model = os.environ.get(DASHSCOPE_MODEL_ENV, "") or DEFAULT_MODEL

    def require_model_credentials(self) -> None:
        """Raise ConfigurationError when the endpoint cannot be reached."""
        if not self.model.api_key:
            raise ConfigurationError(f"{DASHSCOPE_API_KEY_ENV} is not set")
        if not self.model.base_url:
            raise ConfigurationError(f"{DASHSCOPE_BASE_URL_ENV} is not set")

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_working_dir(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve the shell working directory, anchoring relative paths to runtime base/cwd."""
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        if not self.agent.working_dir:
            return anchor
        raw = Path(self.agent.working_dir).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        return (anchor / raw).resolve()


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
