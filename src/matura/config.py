"""
AppConfig: Immutable application configuration.

This module contains ONLY static configuration that doesn't change during a session.
All runtime state belongs in SessionState (see state.py).

Design principles:
- Frozen dataclasses prevent accidental mutation
- Configuration loaded once at startup
- Environment variables can override config file values
- No global mutable state
"""

import os
import json
from dataclasses import dataclass, field

from matura.logging_utils import get_logger
from matura.patterns import MATCH_THRESHOLD
from matura.state import Phase

logger = get_logger(__name__)


@dataclass(frozen=True)
class PathConfig:
    """Immutable path configuration."""
    root_dir: str
    apps_dir: str
    log_dir: str
    inputs_dir: str

    @classmethod
    def from_defaults(cls, root_dir: str | None = None) -> "PathConfig":
        """Create PathConfig with default paths based on root directory."""
        if root_dir is None:
            root_dir = os.getcwd()

        return cls(
            root_dir=root_dir,
            apps_dir=os.path.join(root_dir, "generated_apps"),
            log_dir=os.path.join(root_dir, "logs"),
            inputs_dir=os.path.join(root_dir, "inputs"),
        )


@dataclass(frozen=True)
class LLMConfig:
    """Immutable completion model configuration."""
    base_url: str
    model: str = "gpt-4"
    temperature: float = 0.7
    max_tokens: int = 1000
    code_max_tokens: int = 2000
    max_retries: int = 3
    retry_base_delay: float = 1.0

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Create LLMConfig from environment variables."""
        return cls(
            base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            model=os.environ.get("MATURA_MODEL", "gpt-4"),
            temperature=float(os.environ.get("MATURA_TEMPERATURE", "0.7")),
            max_tokens=int(os.environ.get("MATURA_MAX_TOKENS", "1000")),
            code_max_tokens=int(os.environ.get("MATURA_CODE_MAX_TOKENS", "2000")),
        )

    def max_tokens_for(self, phase: Phase) -> int:
        """Code generation gets the larger completion budget."""
        if phase is Phase.CODE_PLAYGROUND:
            return self.code_max_tokens
        return self.max_tokens


@dataclass(frozen=True)
class TimeoutConfig:
    """Per-request timeouts in milliseconds."""
    chat_ms: int = 60_000
    structured_ms: int = 45_000
    code_ms: int = 120_000

    def for_phase(self, phase: Phase, structured: bool) -> int:
        if phase is Phase.CODE_PLAYGROUND:
            return self.code_ms
        if structured:
            return self.structured_ms
        return self.chat_ms


@dataclass(frozen=True)
class AppConfig:
    """
    Complete immutable application configuration.

    This is the single source of truth for all static configuration.
    Create once at startup and pass to the Orchestrator.
    """
    paths: PathConfig
    llm: LLMConfig
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)

    # Structure quality gate (0-100) for readyForGeneration
    quality_ready_threshold: int = 60

    # Minimum PatternMatch score for a specialized schema; may only be raised
    match_threshold: float = MATCH_THRESHOLD

    # Save generated apps when CodePlayground completes
    persist_apps: bool = True

    def __post_init__(self):
        if self.match_threshold < MATCH_THRESHOLD:
            raise ValueError(
                f"match_threshold {self.match_threshold} is below the minimum {MATCH_THRESHOLD}"
            )

    @classmethod
    def from_env(cls, root_dir: str | None = None) -> "AppConfig":
        """
        Defaults plus LLM settings from the environment.

        Unlike load_config(), reads no file and exports nothing to os.environ.
        """
        return cls(paths=PathConfig.from_defaults(root_dir), llm=LLMConfig.from_env())


def load_config(config_path: str | None = None, root_dir: str | None = None) -> AppConfig:
    """
    Load configuration from JSON file and environment variables.

    Priority: Environment variables > Config file > Defaults

    Args:
        config_path: Path to JSON config file. If None, uses default location.
        root_dir: Base directory for generated apps and logs.

    Returns:
        Immutable AppConfig instance.

    Raises:
        ValueError: If the file lowers match_threshold below 0.70.
    """
    paths = PathConfig.from_defaults(root_dir)

    if config_path is None:
        config_path = os.path.join(paths.inputs_dir, "matura_config.json")

    # Load from JSON if exists
    config_data = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load config from {config_path}: {e}")

    # Set environment variables from config (env vars take priority)
    _set_env_if_not_exists("OPENAI_API_KEY", config_data.get("OPENAI_API_KEY", ""))
    _set_env_if_not_exists("OPENAI_BASE_URL", config_data.get("OPENAI_BASE_URL", ""))
    _set_env_if_not_exists("MATURA_MODEL", config_data.get("MATURA_MODEL", ""))

    if "apps_dir" in config_data:
        paths = PathConfig(
            root_dir=paths.root_dir,
            apps_dir=config_data["apps_dir"],
            log_dir=paths.log_dir,
            inputs_dir=paths.inputs_dir,
        )

    timeouts = TimeoutConfig(
        chat_ms=config_data.get("chat_timeout_ms", 60_000),
        structured_ms=config_data.get("structured_timeout_ms", 45_000),
        code_ms=config_data.get("code_timeout_ms", 120_000),
    )

    return AppConfig(
        paths=paths,
        llm=LLMConfig.from_env(),
        timeouts=timeouts,
        quality_ready_threshold=config_data.get("quality_ready_threshold", 60),
        match_threshold=config_data.get("match_threshold", MATCH_THRESHOLD),
        persist_apps=config_data.get("persist_apps", True),
    )


def _set_env_if_not_exists(key: str, value: str) -> None:
    """Set environment variable only if not already set and value is non-empty."""
    if key not in os.environ or not os.environ[key]:
        if value:
            os.environ[key] = value


def ensure_directories(config: AppConfig) -> None:
    """Ensure all required directories exist."""
    for directory in [config.paths.apps_dir, config.paths.log_dir]:
        if not os.path.exists(directory):
            os.makedirs(directory)
            logger.info(f"Created directory: {directory}")
