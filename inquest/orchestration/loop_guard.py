"""Repetition guard for the orchestration loop."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .models import Action

logger = logging.getLogger(__name__)

# Heuristic thresholds, tunable per profile
LOOP_WINDOW = 3
LOOP_THRESHOLD = 2
LOOP_CONFIDENCE = 30


class LoopGuard:
    """
    Refuses a proposed action that repeats recent history.

    A proposal is a repeat when at least ``threshold`` of the last ``window``
    executed actions share its name and canonical params. Param comparison
    is order-insensitive on keys.
    """

    def __init__(
        self,
        window: int = LOOP_WINDOW,
        threshold: int = LOOP_THRESHOLD,
        confidence: int = LOOP_CONFIDENCE,
    ):
        self.window = window
        self.threshold = threshold
        self.confidence = confidence

    def repeat_count(self, history: Sequence[Action], proposed: Action) -> int:
        """How many of the recent actions match the proposal."""
        recent = history[-self.window:] if self.window > 0 else []
        signature = proposed.signature
        return sum(1 for action in recent if action.signature == signature)

    def is_loop(self, history: Sequence[Action], proposed: Action) -> bool:
        count = self.repeat_count(history, proposed)
        if count >= self.threshold:
            logger.warning(
                f"Loop detected: {proposed.name} with same params called {count} times "
                f"in the last {self.window} steps"
            )
            return True
        return False

    def last_action_repeated(self, history: Sequence[Action]) -> int:
        """Times the most recent action appears in the window, 0 if no repeat.

        Used to warn the oracle before the guard has to step in.
        """
        if len(history) < 2:
            return 0
        count = self.repeat_count(history, history[-1])
        return count if count >= self.threshold else 0

    def fallback_answer(self, history: Sequence[Action], proposed: Action) -> str:
        """Answer returned when the loop is aborted."""
        tools_used = ", ".join(dict.fromkeys(action.name for action in history))
        return (
            f"I encountered an issue while investigating your request. After {len(history)} steps, "
            f"I attempted to use the same tool ({proposed.name}) multiple times without making progress.\n\n"
            f"Tools used: {tools_used}\n\n"
            f"Please try rephrasing your question or breaking it into smaller steps."
        )
