"""Adapters that put OpenRouter and Anthropic behind the LLMProvider protocol."""

import logging

import anthropic
from openai import AsyncOpenAI

from ..settings import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_DEFAULT_MODEL,
    OPENROUTER_API_KEY,
    OPENROUTER_BASE_URL,
    OPENROUTER_DEFAULT_MODEL,
)
from .protocols import LLMProvider, Message, MessageRole, prompt_messages

logger = logging.getLogger(__name__)

CLIENT_MAX_RETRIES = 10
CLIENT_TIMEOUT = 120.0
ANTHROPIC_MAX_TOKENS = 4096
JSON_ONLY_SUFFIX = "\n\nRespond with a single JSON object and nothing else."


class OpenRouterAdapter(LLMProvider):
    """
    Oracle LLM served through OpenRouter's OpenAI-compatible API.

    Seed and JSON mode are passed straight through to the chat endpoint.

    Usage:
        async with OpenRouterAdapter() as llm:
            reply = await llm.complete("Which widgets are on the page?", seed=42)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ):
        self.api_key = api_key or OPENROUTER_API_KEY
        self.model = model or OPENROUTER_DEFAULT_MODEL
        self.base_url = base_url or OPENROUTER_BASE_URL
        self._client: AsyncOpenAI | None = None

        if not self.api_key:
            raise ValueError("OpenRouter API key required. Set OPENROUTER_API_KEY in .env")

        logger.info(f"OpenRouter oracle model: {self.model}")

    async def __aenter__(self) -> "OpenRouterAdapter":
        self._client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            max_retries=CLIENT_MAX_RETRIES,
            timeout=CLIENT_TIMEOUT,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def _chat(
        self,
        messages: list[Message],
        temperature: float,
        max_tokens: int | None,
        seed: int | None,
        json_mode: bool = False,
    ) -> str:
        options: dict = {}
        if seed is not None:
            options["seed"] = seed
        if json_mode:
            options["response_format"] = {"type": "json_object"}

        logger.debug(f"{self.model}: {len(messages)} messages, temperature={temperature}, seed={seed}")
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[m.to_chat() for m in messages],
            temperature=temperature,
            max_tokens=max_tokens,
            **options,
        )

        reply = response.choices[0].message.content or ""
        logger.info(f"{self.model} replied with {len(reply)} chars")
        logger.debug(f"Usage: {response.usage}")
        return reply

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        seed: int | None = None,
        json_mode: bool = False,
    ) -> str:
        return await self._chat(prompt_messages(prompt, system_prompt), temperature, max_tokens, seed, json_mode)

    async def complete_messages(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        seed: int | None = None,
    ) -> str:
        return await self._chat(messages, temperature, max_tokens, seed)


class AnthropicAdapter(LLMProvider):
    """
    Oracle LLM served by the Anthropic Messages API.

    The Messages API takes no seed, so it is only logged, and JSON mode is
    requested through the prompt.

    Usage:
        async with AnthropicAdapter() as llm:
            reply = await llm.complete("Which widgets are on the page?", seed=42)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ):
        self.api_key = api_key or ANTHROPIC_API_KEY
        self.model = model or ANTHROPIC_DEFAULT_MODEL
        self._client: anthropic.AsyncAnthropic | None = None

        if not self.api_key:
            raise ValueError("Anthropic API key required. Set ANTHROPIC_API_KEY in .env")

        logger.info(f"Anthropic oracle model: {self.model}")

    async def __aenter__(self) -> "AnthropicAdapter":
        self._client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            max_retries=CLIENT_MAX_RETRIES,
            timeout=CLIENT_TIMEOUT,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def _chat(
        self,
        messages: list[Message],
        temperature: float,
        max_tokens: int | None,
        seed: int | None,
    ) -> str:
        # System messages go in the separate ``system`` field
        system = "\n\n".join(m.content for m in messages if m.role == MessageRole.SYSTEM)
        turns = [m.to_chat() for m in messages if m.role != MessageRole.SYSTEM]

        logger.debug(f"{self.model}: {len(turns)} turns, temperature={temperature}, seed={seed} (unused)")
        message = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens or ANTHROPIC_MAX_TOKENS,
            system=system,
            messages=turns,
            temperature=temperature,
        )

        reply = message.content[0].text if message.content else ""
        logger.info(f"{self.model} replied with {len(reply)} chars")
        logger.debug(f"Usage: input={message.usage.input_tokens}, output={message.usage.output_tokens}")
        return reply

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        seed: int | None = None,
        json_mode: bool = False,
    ) -> str:
        if json_mode:
            prompt += JSON_ONLY_SUFFIX
        return await self._chat(prompt_messages(prompt, system_prompt), temperature, max_tokens, seed)

    async def complete_messages(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        max_tokens: int | None = None,
        seed: int | None = None,
    ) -> str:
        return await self._chat(messages, temperature, max_tokens, seed)
