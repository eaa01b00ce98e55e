"""LLM provider integrations with protocol-based adapter pattern."""

from .protocols import LLMProvider, Message, MessageRole
from .adapters import AnthropicAdapter, OpenRouterAdapter

__all__ = [
    # Protocols
    "LLMProvider",
    "Message",
    "MessageRole",
    # Adapters
    "OpenRouterAdapter",
    "AnthropicAdapter",
]
