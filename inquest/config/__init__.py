"""Configuration system for oracle backends and the orchestration engine."""

from .loader import (
    load_config,
    load_config_from_yaml,
    load_config_from_env,
    list_profiles,
    ProfileConfig,
    OracleConfig,
    EngineConfig,
    VerificationConfig,
    PatternStoreConfig,
    SessionLogConfig,
    ToolServerConfig,
)
from .factory import (
    MockLLMProvider,
    create_llm_provider,
    create_oracle,
    create_pattern_store,
    create_engine,
)

__all__ = [
    # Loader
    "load_config",
    "load_config_from_yaml",
    "load_config_from_env",
    "list_profiles",
    "ProfileConfig",
    "OracleConfig",
    "EngineConfig",
    "VerificationConfig",
    "PatternStoreConfig",
    "SessionLogConfig",
    "ToolServerConfig",
    # Factory
    "MockLLMProvider",
    "create_llm_provider",
    "create_oracle",
    "create_pattern_store",
    "create_engine",
]
