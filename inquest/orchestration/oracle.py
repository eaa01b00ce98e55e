"""
Decision Oracle: the external reasoning step of the orchestration loop.

Given the query, what has been tried so far, the recent conversation and a
learned pattern hint, the oracle proposes the next action or a final answer.
The engine only depends on the ``DecisionOracle`` protocol; ``LLMDecisionOracle``
is the LLM-backed implementation and ``fallback_decision`` is the
deterministic policy used whenever the oracle fails.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import ValidationError

from .errors import MalformedDecisionError, OracleError
from .models import (
    Action,
    ActionKind,
    ConversationTurn,
    Decision,
    DecisionStatus,
    NextAction,
    QueryPattern,
)

if TYPE_CHECKING:
    from ..llm.protocols import LLMProvider

logger = logging.getLogger(__name__)

HISTORY_RESULT_CHARS = 30_000
HISTORY_TRUNCATION_MARKER = "\n... (truncated for brevity, but full data is available)"
CONVERSATION_WINDOW = 4
CONVERSATION_CHARS = 1_500
ORACLE_TEMPERATURE = 0.3
ORACLE_MAX_TOKENS = 8192

FALLBACK_GIVE_UP_AFTER = 3
FALLBACK_PARTIAL_ANSWER = (
    "I was unable to complete the analysis due to an error in the orchestration process. "
    "Please try rephrasing your question."
)

_ERROR_QUERY = re.compile(r"\b(?:errors?|console|logs?)\b", re.IGNORECASE)
_DATA_QUERY = re.compile(r"show|display|list|how many|current|what.*data", re.IGNORECASE)


@dataclass
class OracleRequest:
    """Everything the oracle sees for one decision."""

    query: str
    history: list[Action] = field(default_factory=list)
    conversation: list[ConversationTurn] = field(default_factory=list)
    pattern: QueryPattern | None = None
    evidence_gaps: list[str] = field(default_factory=list)
    repeated_last_action: int = 0


@runtime_checkable
class DecisionOracle(Protocol):
    """Protocol for anything that can steer the orchestration loop."""

    async def decide(self, request: OracleRequest, seed: int) -> Decision:
        """
        Propose the next step.

        Args:
            request: Query, history and hints
            seed: Sampling seed for this call

        Returns:
            Decision (confidence already clamped)

        Raises:
            OracleError: If no usable decision could be produced
        """
        ...

    async def extract_claims(self, query: str, answer: str, seed: int) -> list[str]:
        """
        Split an answer into atomic, checkable claims.

        Raises:
            OracleError: If claims could not be extracted
        """
        ...


def fallback_decision(query: str, history: list[Action]) -> Decision:
    """
    Deterministic decision used when the oracle is unavailable.

    Error-style queries are checked before data-style ones, so a question
    about errors always starts at the console.
    """
    logger.info("Using fallback decision logic")

    if not history:
        if _ERROR_QUERY.search(query):
            return Decision(
                status=DecisionStatus.CONTINUE,
                next_action=NextAction(
                    kind=ActionKind.TOOL,
                    name="get_ui_layer_data",
                    params={"dataType": "console"},
                    reasoning="Query about errors, checking console",
                ),
                what_we_missing=["Console logs and errors"],
                confidence=80,
                reasoning="Fallback: Error-related query, checking console",
                pattern="Direct Runtime Inspection",
            )

        if _DATA_QUERY.search(query):
            return Decision(
                status=DecisionStatus.CONTINUE,
                next_action=NextAction(
                    kind=ActionKind.TOOL,
                    name="get_ui_layer_data",
                    params={"dataType": "components"},
                    reasoning="Starting with component tree to understand UI structure",
                ),
                what_we_missing=["UI structure and data bindings"],
                confidence=70,
                reasoning="Fallback: Query appears to be about displayed data, starting with components",
                pattern="Runtime Data Investigation",
            )

    if len(history) >= FALLBACK_GIVE_UP_AFTER:
        return Decision(
            status=DecisionStatus.DONE,
            final_answer=FALLBACK_PARTIAL_ANSWER,
            what_we_know=[f"{a.name}: {(a.result or 'no result')[:100]}" for a in history],
            confidence=30,
            reasoning="Fallback: Multiple steps completed but orchestrator failed, stopping",
        )

    return Decision(
        status=DecisionStatus.CONTINUE,
        next_action=NextAction(
            kind=ActionKind.TOOL,
            name="get_ui_layer_data",
            params={"dataType": "info"},
            reasoning="Getting application info and variables",
        ),
        what_we_know=[a.name for a in history],
        what_we_missing=["Application state and variables"],
        confidence=50,
        reasoning="Fallback: Trying to gather more context",
        pattern="Runtime Data Investigation",
    )


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Pull the first JSON object out of an LLM reply.

    Raises:
        ValueError: If no object can be parsed
    """
    json_start = text.find("{")
    json_end = text.rfind("}") + 1

    if json_start == -1 or json_end <= json_start:
        raise ValueError("No JSON object found in response")

    try:
        data = json.loads(text[json_start:json_end])
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


SYSTEM_PROMPT = """You are an intelligent orchestrator for a running-application analysis system.

After every action you review what has been learned and decide the single next step:
call a tool, delegate to an agent, or answer. Always reply with one JSON object."""


class LLMDecisionOracle:
    """
    Decision oracle backed by an LLMProvider.

    Usage:
        async with OpenRouterAdapter() as llm:
            oracle = LLMDecisionOracle(llm, tool_catalog=registry.describe())
            decision = await oracle.decide(OracleRequest(query="..."), seed=42)
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        tool_catalog: str = "",
        temperature: float = ORACLE_TEMPERATURE,
        max_tokens: int = ORACLE_MAX_TOKENS,
        history_result_chars: int = HISTORY_RESULT_CHARS,
        conversation_window: int = CONVERSATION_WINDOW,
        conversation_chars: int = CONVERSATION_CHARS,
    ):
        """
        Initialize the oracle.

        Args:
            llm_provider: LLM used for decisions and claim extraction
            tool_catalog: Markdown description of registered tools/agents
            temperature: Sampling temperature
            max_tokens: Output budget; final answers can be long
            history_result_chars: Per-action cap on result text in the prompt
            conversation_window: Number of recent conversation turns shown
            conversation_chars: Per-turn cap on conversation text
        """
        self.llm = llm_provider
        self.tool_catalog = tool_catalog
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.history_result_chars = history_result_chars
        self.conversation_window = conversation_window
        self.conversation_chars = conversation_chars

    async def decide(self, request: OracleRequest, seed: int) -> Decision:
        prompt = self.build_prompt(request)
        logger.info(f"Deciding step {len(request.history) + 1} for query: {request.query[:100]}")

        try:
            response = await self.llm.complete(
                prompt=prompt,
                system_prompt=SYSTEM_PROMPT,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                seed=seed,
                json_mode=True,
            )
        except Exception as e:
            raise OracleError(f"Oracle call failed: {e}") from e

        decision = self.parse_decision(response)
        logger.info(
            f"Decision: status={decision.status.value}, "
            f"next={decision.next_action.name if decision.next_action else None}, "
            f"confidence={decision.confidence}, pattern={decision.pattern}"
        )
        return decision

    async def extract_claims(self, query: str, answer: str, seed: int) -> list[str]:
        prompt = f"""Extract the factual claims made in this answer.

## Question
"{query}"

## Answer
{answer}

A claim is one specific, checkable statement (a count, a name, a value, a file,
a function, a behaviour). Skip advice and questions.

Return ONLY a JSON object: {{"claims": ["...", "..."]}}"""

        try:
            response = await self.llm.complete(
                prompt=prompt,
                temperature=0.0,
                max_tokens=2048,
                seed=seed,
                json_mode=True,
            )
            data = extract_json_object(response)
        except Exception as e:
            raise OracleError(f"Claim extraction failed: {e}") from e

        claims = data.get("claims")
        if not isinstance(claims, list):
            raise OracleError("Claim extraction returned no claims list")
        return [str(c).strip() for c in claims if str(c).strip()]

    def parse_decision(self, response: str) -> Decision:
        """
        Parse and validate an oracle reply.

        Raises:
            MalformedDecisionError: If the reply is not a valid decision
        """
        try:
            data = extract_json_object(response)
            return Decision.model_validate(data)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Could not parse decision: {e}")
            raise MalformedDecisionError(str(e)) from e

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------

    def _format_history(self, request: OracleRequest) -> str:
        if not request.history:
            return "\n## EXECUTION HISTORY: This is the first step.\n"

        entries = []
        for action in request.history:
            if action.error:
                result_text = f"ERROR: {action.error}"
            elif action.result:
                result_text = action.result
                if len(result_text) > self.history_result_chars:
                    result_text = result_text[: self.history_result_chars] + HISTORY_TRUNCATION_MARKER
            else:
                result_text = "No result"

            params = f"Params: {json.dumps(action.params, default=str)}\n" if action.params else ""
            entries.append(
                f"**Step {action.step}: {action.kind.value} - {action.name}**\n"
                f"{params}"
                f"Reasoning: {action.reasoning}\n"
                f"Result: {result_text}\n"
            )

        text = "\n## EXECUTION HISTORY (What we've done so far):\n\n" + "\n".join(entries) + "\n"

        if request.repeated_last_action:
            last = request.history[-1]
            text += (
                f'\nWARNING: Tool "{last.name}" with same params has been called '
                f"{request.repeated_last_action} times recently. Consider a different approach "
                f"or synthesize answer with available data.\n"
            )
        return text

    def _format_conversation(self, conversation: list[ConversationTurn]) -> str:
        if not conversation:
            return ""

        turns = []
        for turn in conversation[-self.conversation_window:]:
            text = turn.text
            if len(text) > self.conversation_chars:
                text = text[: self.conversation_chars] + "...(truncated)"
            turns.append(f"{turn.role}: {text}")
        return "\n## CONVERSATION HISTORY (Recent conversation for context):\n" + "\n\n".join(turns) + "\n"

    @staticmethod
    def _format_pattern(pattern: QueryPattern | None) -> str:
        if pattern is None:
            return ""

        return f"""
## MATCHING PATTERN FOUND

A similar successful query pattern was found:
- **Query Type**: {pattern.query_type.value}
- **Intent**: {pattern.intent.value}
- **Successful Steps**: {' -> '.join(pattern.successful_steps)}
- **Tools Used**: {', '.join(pattern.tool_sequence)}
- **Average Confidence**: {pattern.average_confidence}%
- **Success Rate**: {pattern.success_count}/{pattern.usage_count} ({round(pattern.success_rate * 100)}%)

**Consider following this proven pattern** but adapt as needed for the specific query.
"""

    @staticmethod
    def _format_gaps(gaps: list[str]) -> str:
        if not gaps:
            return ""
        lines = "\n".join(f"- {gap}" for gap in gaps)
        return (
            "\n## VERIFICATION GAPS\n\nA previous answer could not be backed by the collected "
            f"evidence. Collect what is missing before answering again:\n{lines}\n"
        )

    def build_prompt(self, request: OracleRequest) -> str:
        """Assemble the decision prompt."""
        return f"""Analyze what information has been collected so far and decide the next action to take.

---

## USER QUERY

"{request.query}"
{self._format_conversation(request.conversation)}{self._format_pattern(request.pattern)}{self._format_history(request)}{self._format_gaps(request.evidence_gaps)}
---

## AVAILABLE TOOLS AND AGENTS

{self.tool_catalog or "(none registered)"}

---

## DECISION FRAMEWORK

1. Is the conversation history about the same topic? Use it only if so.
2. What have we learned from the execution history?
3. Can we answer the query now? If yes, status "done" with a complete finalAnswer.
4. What is still missing, and which tool or agent gets it?
5. How confident are we (0-100)? If stuck repeating a call, answer from the data we have.

## RULES

- "How do I..." questions want instructions, not modifications.
- Only edit or write files when the user explicitly asks to apply a change.
- Read the data already collected before fetching more.
- Never repeat the same tool call with the same params.

---

Return ONLY a valid JSON object, no markdown:

{{
  "status": "continue" | "done" | "need_clarification",
  "nextAction": {{ "type": "tool" | "agent" | "synthesis", "name": "...", "params": {{...}}, "reasoning": "..." }},
  "finalAnswer": "..." (when status is "done"),
  "clarificationNeeded": "..." (when status is "need_clarification"),
  "whatWeKnow": ["..."],
  "whatWeMissing": ["..."],
  "confidence": 0-100,
  "reasoning": "...",
  "pattern": "..."
}}"""
