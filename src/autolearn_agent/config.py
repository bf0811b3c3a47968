"""
Configuration schema using Pydantic.

Secrets are loaded exclusively from environment variables.
Everything else comes from an optional YAML file, with a small set of
environment variable overrides applied on top.
"""

import os
from pathlib import Path
from typing import Optional, List, Dict, Any

import yaml
from pydantic import BaseModel, Field, model_validator

from autolearn_agent.resilience import RetryPolicy


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required values."""

    def __init__(self, message: str, field: Optional[str] = None, suggestions: Optional[List[str]] = None):
        self.message = message
        self.field = field
        self.suggestions = suggestions or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [self.message]
        if self.field:
            lines.append(f"  Field: {self.field}")
        if self.suggestions:
            lines.append("  Suggestions:")
            for s in self.suggestions:
                lines.append(f"    - {s}")
        return "\n".join(lines)


class SecretsManager:
    """
    Manages secrets loaded from environment variables only.

    Secrets are never stored in config files.
    """

    REQUIRED_SECRETS = {
        "GEMINI_API_KEY": "Gemini API key for the reasoning oracle",
    }

    @classmethod
    def get_secret(cls, key: str, required: bool = False) -> Optional[str]:
        """
        Get a secret from environment variables.

        Args:
            key: Environment variable name
            required: If True, raise error when missing

        Returns:
            Secret value or None

        Raises:
            ConfigurationError: If required secret is missing
        """
        value = os.environ.get(key)

        if required and not value:
            suggestions = []

            env_file = Path.cwd() / ".env"
            if not env_file.exists():
                suggestions.append(f"Create a .env file with: {key}=your-key-here")
            else:
                suggestions.append(f"Add {key}=your-key-here to your .env file")

            if key == "GEMINI_API_KEY":
                suggestions.append("Get your API key from: https://aistudio.google.com/apikey")

            suggestions.append(f"Or export the environment variable: export {key}=your-key-here")

            raise ConfigurationError(
                f"Required secret '{key}' is not set",
                field=key,
                suggestions=suggestions,
            )

        return value

    @classmethod
    def get_status(cls, keys: Optional[List[str]] = None) -> Dict[str, str]:
        """Get status of secrets (masked)."""
        status = {}
        for key in keys or list(cls.REQUIRED_SECRETS):
            value = os.environ.get(key)
            if value:
                status[key] = f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "****"
            else:
                status[key] = "NOT SET (required)"
        return status


class OracleConfig(BaseModel):
    """Reasoning oracle (Gemini) configuration."""

    model: str = Field(default="gemini-2.5-flash", description="Gemini model ID for all four oracle calls")
    api_key_env: str = Field(default="GEMINI_API_KEY", description="Environment variable for API key")
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=8192, ge=256, le=65536)


class RetryConfig(BaseModel):
    """Backoff policy for rate-limited oracle calls."""

    max_attempts: int = Field(default=5, ge=1, le=10)
    initial_delay_seconds: float = Field(default=2.0, ge=0.0, le=60.0)
    multiplier: float = Field(default=2.0, ge=1.0, le=5.0)

    def to_policy(self) -> RetryPolicy:
        """Build the runtime retry policy."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay_seconds,
            multiplier=self.multiplier,
        )


class MissionConfig(BaseModel):
    """Orchestration loop behavior."""

    retry_limit: int = Field(default=2, ge=0, le=10, description="Fix cycles allowed per step")
    step_delay_seconds: float = Field(default=1.0, ge=0.0, le=30.0, description="Pause between loop iterations")
    register_plan_artifact: bool = Field(default=True, description="Add the plan to the artifact registry")


class StorageConfig(BaseModel):
    """Checkpoint storage configuration."""

    base_path: str = Field(default="~/.autolearn")
    checkpoint_file: str = Field(default="mission.json", pattern=r"^[\w.\-]+$")


class LoggingConfig(BaseModel):
    """Process logging configuration."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    file: Optional[str] = Field(default=None, description="Optional JSON log file")


class AgentConfig(BaseModel):
    """Root configuration for the AutoLearn agent."""

    oracle: OracleConfig = Field(default_factory=OracleConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    mission: MissionConfig = Field(default_factory=MissionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def storage_path(self) -> Path:
        """Get resolved storage path."""
        return Path(self.storage.base_path).expanduser()

    @property
    def checkpoint_path(self) -> Path:
        """Get the mission checkpoint file path."""
        return self.storage_path / self.storage.checkpoint_file

    @property
    def log_file_path(self) -> Optional[Path]:
        """Get resolved log file path, if file logging is enabled."""
        if not self.logging.file:
            return None
        return Path(self.logging.file).expanduser()

    @model_validator(mode="after")
    def validate_consistency(self) -> "AgentConfig":
        """Validate cross-field consistency."""
        if not self.oracle.api_key_env.strip():
            raise ValueError("oracle.api_key_env must name an environment variable")
        return self

    def validate_for_run(self) -> List[str]:
        """
        Validate configuration is ready for a run.

        Returns list of warning messages (empty if all good).
        """
        warnings = []

        if not os.environ.get(self.oracle.api_key_env):
            warnings.append(f"Required secret not set: {self.oracle.api_key_env}")

        storage = self.storage_path
        try:
            storage.mkdir(parents=True, exist_ok=True)
            test_file = storage / ".write_test"
            test_file.touch()
            test_file.unlink()
        except OSError as e:
            warnings.append(f"Storage path not writable: {storage} ({e})")

        return warnings


def get_default_config_path() -> Path:
    """Get default config file path."""
    return Path.home() / ".autolearn" / "config.yaml"


def load_config(config_path: Optional[str] = None) -> AgentConfig:
    """
    Load configuration from YAML file.

    Falls back to defaults if file doesn't exist.
    Environment variables can override config file values.

    Args:
        config_path: Path to config file (optional)

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: If config file is missing or invalid
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(
                f"Config file not found: {path}",
                suggestions=[
                    f"Create the config file at {path}",
                    "Use 'autolearn config --init' to write a default config",
                    "Or run without --config to use defaults",
                ],
            )
    else:
        path = get_default_config_path()

    data: Dict[str, Any] = {}

    if path.exists():
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            raise ConfigurationError(
                f"Invalid YAML in config file: {path}",
                suggestions=[
                    f"Check syntax at line {mark.line + 1 if mark else 'unknown'}",
                    "Use a YAML validator to check your config",
                ],
            )
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file must contain a mapping: {path}",
                suggestions=["Top-level keys are oracle, retry, mission, storage, logging"],
            )

    env_overrides = _get_env_overrides()
    data = _deep_merge(data, env_overrides)

    try:
        config = AgentConfig(**data)
    except Exception as e:
        raise ConfigurationError(
            f"Invalid configuration: {e}",
            suggestions=[
                "Check field names and values in your config",
                "Run 'autolearn config' to see the resolved values",
            ],
        )

    return config


def _get_env_overrides() -> Dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: Dict[str, Any] = {}

    env_mappings = {
        "AUTOLEARN_MODEL": ("oracle", "model"),
        "AUTOLEARN_RETRY_LIMIT": ("mission", "retry_limit"),
        "AUTOLEARN_STEP_DELAY": ("mission", "step_delay_seconds"),
        "AUTOLEARN_STORAGE_PATH": ("storage", "base_path"),
        "AUTOLEARN_LOG_LEVEL": ("logging", "level"),
    }

    for env_key, (section, field) in env_mappings.items():
        value: Any = os.environ.get(env_key)
        if value:
            if section not in overrides:
                overrides[section] = {}
            if value.isdigit():
                value = int(value)
            overrides[section][field] = value

    return overrides


def _deep_merge(base: Dict, overlay: Dict) -> Dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def save_config(config: AgentConfig, config_path: Optional[str] = None) -> Path:
    """Save configuration to YAML file."""
    path = Path(config_path) if config_path else get_default_config_path()

    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        yaml.dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)

    return path
