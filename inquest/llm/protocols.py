"""Protocol definitions for the LLM behind the decision oracle."""

from enum import Enum
from typing import Protocol, runtime_checkable
from pydantic import BaseModel


class MessageRole(str, Enum):
    """Role of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """One chat message sent to a provider."""

    role: MessageRole
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    def to_chat(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


def prompt_messages(prompt: str, system_prompt: str | None = None) -> list[Message]:
    """Turn a single prompt (plus optional system prompt) into chat messages."""
    messages = [Message.system(system_prompt)] if system_prompt else []
    messages.append(Message.user(prompt))
    return messages


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for LLM providers.

    The oracle never reads a seed from global state: every call carries the
    seed it should be sampled with.
    """

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        seed: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """
        Answer a single prompt.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt
            temperature: Sampling temperature
            max_tokens: Output budget
            seed: Sampling seed, forwarded when the backend supports it
            json_mode: Ask the backend for a bare JSON object

        Returns:
            Reply text
        """
        ...

    async def complete_messages(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        seed: int | None = None,
    ) -> str:
        """Answer the last message of a conversation."""
        ...
