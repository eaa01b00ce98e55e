"""Configuration settings for the inquest orchestration engine."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Logging setup
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)

# OpenRouter
# Any OpenRouter model that honours JSON output works as a decision oracle:
# - google/gemini-2.5-flash-lite (fast, cheap)
# - anthropic/claude-3-5-sonnet (balanced)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_DEFAULT_MODEL = os.getenv("OPENROUTER_DEFAULT_MODEL", "google/gemini-2.5-flash-lite")

# Anthropic (direct API)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_DEFAULT_MODEL = os.getenv("ANTHROPIC_DEFAULT_MODEL", "claude-3-haiku-20240307")

# Determinism: forwarded explicitly into every oracle call
INQUEST_SEED = int(os.getenv("INQUEST_SEED", "42"))

# Remote tool server (runtime inspection + file system tools)
TOOL_SERVER_URL = os.getenv("TOOL_SERVER_URL", "http://localhost:3000/api")
TOOL_SERVER_TIMEOUT = float(os.getenv("TOOL_SERVER_TIMEOUT", "60.0"))

# Persistence
LOGS_DIR = Path(os.getenv("INQUEST_LOGS_DIR", "logs"))
SESSION_LOG_DIR = LOGS_DIR / "agent-sessions"
PATTERN_DIR = LOGS_DIR / "patterns"
