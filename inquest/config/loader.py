"""Configuration loader with Pydantic validation and env var expansion."""

import logging
import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "dev"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "profiles.yaml"


def _drop_unexpanded(value):
    """A ${VAR} left behind by expansion means the variable is unset."""
    if isinstance(value, str) and value.startswith("${"):
        return None
    return value


class OracleConfig(BaseModel):
    """Configuration for the decision oracle backend."""

    backend: Literal["openrouter", "anthropic", "mock"] = "openrouter"
    model: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = 0.3
    max_tokens: int = 8192
    seed: int = 42

    @field_validator("api_key", "base_url", mode="before")
    @classmethod
    def _unexpanded_is_unset(cls, value):
        return _drop_unexpanded(value)


class EngineConfig(BaseModel):
    """Configuration for the orchestration loop."""

    max_steps: int = 15
    low_confidence_stop: int = 50  # Stop when an action fails below this confidence
    loop_window: int = 3
    loop_threshold: int = 2
    loop_confidence: int = 30  # Confidence reported when a loop cuts the run short
    result_char_cap: int = 50_000
    run_solution_tests: bool = False


class VerificationConfig(BaseModel):
    """Configuration for answer verification."""

    enabled: bool = True
    verified_threshold: int = 80
    can_answer_threshold: int = 70
    max_claims: int = 10
    max_reinvestigations: int = 1


class PatternStoreConfig(BaseModel):
    """Configuration for the learned pattern store."""

    enabled: bool = True
    directory: str | None = None  # Defaults to <logs>/patterns
    match_threshold: float = 0.6
    merge_threshold: float = 0.8


class SessionLogConfig(BaseModel):
    """Configuration for session snapshots and reports."""

    enabled: bool = True
    directory: str | None = None  # Defaults to <logs>/agent-sessions


class ToolServerConfig(BaseModel):
    """Configuration for the HTTP tool backend."""

    url: str | None = None
    timeout: float = 30.0

    @field_validator("url", mode="before")
    @classmethod
    def _unexpanded_is_unset(cls, value):
        return _drop_unexpanded(value)


class ProfileConfig(BaseModel):
    """Configuration profile containing all engine configs."""

    oracle: OracleConfig
    engine: EngineConfig = EngineConfig()
    verification: VerificationConfig = VerificationConfig()
    patterns: PatternStoreConfig = PatternStoreConfig()
    sessions: SessionLogConfig = SessionLogConfig()
    tool_server: ToolServerConfig = ToolServerConfig()


class ConfigFile(BaseModel):
    """Root configuration file structure."""

    profiles: dict[str, ProfileConfig]


_ENV_REF = re.compile(r"\$\{([^}]+)\}")


def expand_env_vars(value):
    """Replace ${VAR} references with environment values; unset ones stay as-is."""
    if not isinstance(value, str):
        return value
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)


def expand_env_vars_recursive(data):
    """Apply ``expand_env_vars`` to every string in nested dicts and lists."""
    if isinstance(data, dict):
        return {key: expand_env_vars_recursive(item) for key, item in data.items()}
    if isinstance(data, list):
        return [expand_env_vars_recursive(item) for item in data]
    return expand_env_vars(data)


def _read_config_file(config_path: Path) -> ConfigFile:
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    return ConfigFile.model_validate(expand_env_vars_recursive(raw))


def list_profiles(config_path: Path | None = None) -> list[str]:
    """Names of the profiles defined in a config file (empty if it's missing)."""
    config_path = config_path or DEFAULT_CONFIG_PATH
    if not config_path.exists():
        return []
    return list(_read_config_file(config_path).profiles)


def load_config_from_yaml(config_path: Path, profile_name: str) -> ProfileConfig:
    """Read one profile from a YAML profiles file.

    Raises:
        FileNotFoundError: If the file is missing
        ValidationError: If the file does not match the config schema
        KeyError: If the profile is not defined
    """
    profiles = _read_config_file(config_path).profiles
    try:
        return profiles[profile_name]
    except KeyError:
        raise KeyError(
            f"Profile '{profile_name}' not found. Available profiles: {', '.join(profiles)}"
        ) from None


def load_config_from_env() -> ProfileConfig:
    """Load configuration from environment variables (fallback mode).

    Returns:
        ProfileConfig constructed from environment variables
    """
    oracle = OracleConfig(
        backend="openrouter",
        model=os.environ.get("OPENROUTER_MODEL", "google/gemini-2.5-flash-lite"),
        api_key=os.environ.get("OPENROUTER_API_KEY"),
        base_url=os.environ.get(
            "OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"
        ),
        seed=int(os.environ.get("INQUEST_SEED", "42")),
    )

    tool_server = ToolServerConfig(url=os.environ.get("TOOL_SERVER_URL"))

    return ProfileConfig(oracle=oracle, tool_server=tool_server)


def load_config(
    profile: str | None = None,
    config_path: Path | None = None,
) -> ProfileConfig:
    """Load configuration from YAML file or environment variables.

    This is the main entry point for loading configuration. It tries to load
    from a YAML config file first, and falls back to environment variables
    if the file doesn't exist or can't be parsed.

    Args:
        profile: Profile name to load. If None, uses MODEL_PROFILE env var
                or "dev" as default.
        config_path: Path to config file. If None, uses the profiles.yaml
                    shipped next to this module.

    Returns:
        ProfileConfig with all engine configurations

    Raises:
        KeyError: If requested profile doesn't exist
    """
    if profile is None:
        profile = os.environ.get("MODEL_PROFILE", DEFAULT_PROFILE)

    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found, using environment variables")
        return load_config_from_env()

    try:
        return load_config_from_yaml(config_path, profile)
    except KeyError:
        raise
    except Exception as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.warning("Falling back to environment variables...")
        return load_config_from_env()
