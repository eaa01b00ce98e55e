"""Factory functions to create engine components from configuration."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from ..settings import PATTERN_DIR, SESSION_LOG_DIR

if TYPE_CHECKING:
    from ..llm.protocols import LLMProvider
    from ..orchestration.engine import OrchestrationEngine
    from ..orchestration.oracle import LLMDecisionOracle
    from ..orchestration.pattern_store import PatternStore
    from ..orchestration.tools import ToolRegistry
    from .loader import OracleConfig, PatternStoreConfig, ProfileConfig

MOCK_ANSWER = "[Mock answer] No live oracle is configured for this profile."


class MockLLMProvider:
    """Mock LLM provider for testing.

    Replays scripted responses in order, then answers every decision prompt
    with a finished decision and every claim prompt with an empty claim list.
    """

    def __init__(self, responses: list[str] | None = None):
        self.responses = list(responses or [])
        self.prompts: list[str] = []
        self.seeds: list[int | None] = []

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        seed: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """Return the next scripted response, or a canned one."""
        self.prompts.append(prompt)
        self.seeds.append(seed)
        if self.responses:
            return self.responses.pop(0)
        if "factual claims" in prompt:
            return json.dumps({"claims": []})
        return json.dumps({
            "status": "done",
            "finalAnswer": MOCK_ANSWER,
            "confidence": 50,
            "reasoning": "Mock provider",
            "whatWeKnow": [],
            "whatWeMissing": [],
        })

    async def complete_messages(
        self,
        messages: list,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        seed: int | None = None,
    ) -> str:
        """Return a mock completion for messages."""
        return await self.complete(messages[-1].content if messages else "", seed=seed)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


def create_llm_provider(config: OracleConfig) -> LLMProvider:
    """Create the LLM behind the oracle from configuration.

    Args:
        config: Oracle configuration

    Returns:
        LLMProvider instance (OpenRouterAdapter, AnthropicAdapter, or Mock)

    Raises:
        ValueError: If backend type is not supported
    """
    if config.backend == "openrouter":
        from ..llm import OpenRouterAdapter

        if not config.api_key:
            raise ValueError("OpenRouter backend requires api_key")

        return OpenRouterAdapter(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
        )

    elif config.backend == "anthropic":
        from ..llm import AnthropicAdapter

        if not config.api_key:
            raise ValueError("Anthropic backend requires api_key")

        return AnthropicAdapter(
            api_key=config.api_key,
            model=config.model,
        )

    elif config.backend == "mock":
        return MockLLMProvider()

    else:
        raise ValueError(f"Unsupported oracle backend: {config.backend}")


def create_oracle(
    config: OracleConfig,
    llm_provider: LLMProvider,
    registry: ToolRegistry | None = None,
) -> LLMDecisionOracle:
    """Create the decision oracle.

    Args:
        config: Oracle configuration
        llm_provider: LLM provider instance (should be in async context)
        registry: Registry whose catalog is shown to the oracle

    Returns:
        Configured LLMDecisionOracle
    """
    from ..orchestration.oracle import LLMDecisionOracle

    return LLMDecisionOracle(
        llm_provider=llm_provider,
        tool_catalog=registry.describe() if registry else "",
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


def create_pattern_store(config: PatternStoreConfig, persist: bool = True) -> PatternStore | None:
    """Create the pattern store, or None when patterns are disabled."""
    from ..orchestration.pattern_store import PatternStore

    if not config.enabled:
        return None

    directory = Path(config.directory) if config.directory else PATTERN_DIR
    return PatternStore(
        pattern_dir=directory if persist else None,
        match_threshold=config.match_threshold,
        merge_threshold=config.merge_threshold,
    )


def create_engine(
    config: ProfileConfig,
    llm_provider: LLMProvider,
    registry: ToolRegistry,
) -> OrchestrationEngine:
    """Create a fully wired orchestration engine from a profile.

    Args:
        config: Profile configuration
        llm_provider: LLM provider instance (should be in async context)
        registry: Tools and agents the engine may dispatch to

    Returns:
        Configured OrchestrationEngine
    """
    from ..orchestration.dispatcher import ActionDispatcher
    from ..orchestration.engine import OrchestrationEngine
    from ..orchestration.evidence import EvidenceValidator
    from ..orchestration.loop_guard import LoopGuard

    oracle = create_oracle(config.oracle, llm_provider, registry)
    dispatcher = ActionDispatcher(registry, result_char_cap=config.engine.result_char_cap)
    seed = config.oracle.seed

    validator = EvidenceValidator(
        oracle=oracle,
        seed=seed,
        verified_threshold=config.verification.verified_threshold,
        can_answer_threshold=config.verification.can_answer_threshold,
        max_claims=config.verification.max_claims,
    )
    loop_guard = LoopGuard(
        window=config.engine.loop_window,
        threshold=config.engine.loop_threshold,
        confidence=config.engine.loop_confidence,
    )

    session_log_dir = None
    if config.sessions.enabled:
        session_log_dir = Path(config.sessions.directory) if config.sessions.directory else SESSION_LOG_DIR

    return OrchestrationEngine(
        oracle=oracle,
        dispatcher=dispatcher,
        pattern_store=create_pattern_store(config.patterns),
        validator=validator,
        loop_guard=loop_guard,
        seed=seed,
        max_steps=config.engine.max_steps,
        low_confidence_stop=config.engine.low_confidence_stop,
        max_reinvestigations=config.verification.max_reinvestigations,
        verify_answers=config.verification.enabled,
        run_solution_tests=config.engine.run_solution_tests,
        session_log_dir=session_log_dir,
    )
