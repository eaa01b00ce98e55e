"""File-backed store of learned query patterns."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import ActionKind, QueryIntent, QueryPattern, QueryType, SessionLog
from .persistence import new_id, write_json_atomic

logger = logging.getLogger(__name__)

# Heuristic similarity thresholds, tunable per profile
MATCH_THRESHOLD = 0.6
MERGE_THRESHOLD = 0.8

SUCCESSFUL_PATTERNS_FILE = "successful-patterns.json"
FAILED_PATTERNS_FILE = "failed-patterns.json"

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "should",
    "could", "may", "might", "can", "to", "in", "on", "at", "for", "with",
    "how", "what", "where", "when", "why", "which", "this", "that", "these",
    "those", "i", "you", "he", "she", "it", "we", "they",
})

# Checked in order; first match wins
QUERY_TYPE_RULES: list[tuple[QueryType, re.Pattern]] = [
    (QueryType.NAVIGATION, re.compile(r"navigate|go to|open|route")),
    (QueryType.DATA, re.compile(r"how many|count|list|show|display|data")),
    (QueryType.STYLE, re.compile(r"style|color|size|font|appearance")),
    (QueryType.ERROR, re.compile(r"error|issue|problem|bug|fix")),
    (QueryType.CODE, re.compile(r"function|method|handler|code")),
]

INTENT_RULES: list[tuple[QueryIntent, re.Pattern]] = [
    (QueryIntent.HOW, re.compile(r"how|what.*do|how.*work")),
    (QueryIntent.WHAT, re.compile(r"what is|what are|define")),
    (QueryIntent.WHERE, re.compile(r"where|which file|location")),
    (QueryIntent.WHY, re.compile(r"why|reason|purpose")),
]

# Domains reported by an upstream query analysis
_DOMAIN_TYPES: dict[str, QueryType] = {
    "fragment": QueryType.NAVIGATION,
    "variable": QueryType.DATA,
    "style": QueryType.STYLE,
}


def extract_keywords(query: str) -> set[str]:
    """Lowercased alphanumeric words longer than 2 chars, minus stop words."""
    words = (re.sub(r"[^a-z0-9]", "", word) for word in query.lower().split())
    return {w for w in words if len(w) > 2 and w not in STOP_WORDS}


def determine_query_type(query: str, analysis: dict[str, Any] | None = None) -> QueryType:
    if analysis and analysis.get("domain"):
        domain = analysis["domain"]
        if isinstance(domain, list):
            domain = domain[0] if domain else None
        if domain in _DOMAIN_TYPES:
            return _DOMAIN_TYPES[domain]

    lowered = query.lower()
    for query_type, rule in QUERY_TYPE_RULES:
        if rule.search(lowered):
            return query_type
    return QueryType.GENERAL


def determine_intent(query: str, analysis: dict[str, Any] | None = None) -> QueryIntent:
    if analysis and analysis.get("intent"):
        try:
            return QueryIntent(analysis["intent"])
        except ValueError:
            pass

    lowered = query.lower()
    for intent, rule in INTENT_RULES:
        if rule.search(lowered):
            return intent
    return QueryIntent.GENERAL


def keyword_overlap(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / max(len(a), len(b))


def match_score(a: QueryPattern, b: QueryPattern) -> float:
    """0.3 for same query type, 0.2 for same intent, 0.5 scaled by keyword overlap."""
    score = 0.0
    if a.query_type == b.query_type:
        score += 0.3
    if a.intent == b.intent:
        score += 0.2
    score += keyword_overlap(a.keywords, b.keywords) * 0.5
    return score


def query_signature(query: str, analysis: dict[str, Any] | None = None) -> QueryPattern:
    """A throwaway pattern describing a query, for matching only."""
    return QueryPattern(
        id="",
        query_type=determine_query_type(query, analysis),
        intent=determine_intent(query, analysis),
        keywords=extract_keywords(query),
        example_query=query,
    )


def extract_pattern(session_log: SessionLog) -> QueryPattern:
    """Derive a pattern (without id or counters) from a finalized session."""
    steps = session_log.execution_steps
    pattern = query_signature(session_log.user_query, session_log.query_analysis)
    pattern.successful_steps = [step.name for step in steps if not step.error]
    pattern.tool_sequence = [step.name for step in steps if step.kind == ActionKind.TOOL]
    pattern.evidence_types = {e.kind for step in steps for e in step.evidence_found}
    pattern.average_confidence = session_log.overall_confidence
    return pattern


class PatternStore:
    """
    Two named collections of learned patterns: successful and failed.

    Both are loaded once at construction and rewritten in full after every
    mutation. A missing or corrupt file loads as an empty collection.
    """

    def __init__(
        self,
        pattern_dir: Path | None = None,
        match_threshold: float = MATCH_THRESHOLD,
        merge_threshold: float = MERGE_THRESHOLD,
    ):
        """
        Initialize the pattern store.

        Args:
            pattern_dir: Directory holding the two JSON files. None keeps patterns in memory.
            match_threshold: Minimum score for a pattern to be suggested
            merge_threshold: Minimum score for a new pattern to merge into an existing one
        """
        self.pattern_dir = pattern_dir
        self.match_threshold = match_threshold
        self.merge_threshold = merge_threshold
        self.successful: list[QueryPattern] = []
        self.failed: list[QueryPattern] = []

        if pattern_dir:
            self.successful = self._load(pattern_dir / SUCCESSFUL_PATTERNS_FILE)
            self.failed = self._load(pattern_dir / FAILED_PATTERNS_FILE)

        logger.info(
            f"Pattern store initialized with {len(self.successful)} successful "
            f"and {len(self.failed)} failed patterns"
        )

    def find_similar(self, pattern: QueryPattern, patterns: list[QueryPattern]) -> QueryPattern | None:
        """First pattern in ``patterns`` at or above the merge threshold."""
        for existing in patterns:
            if match_score(pattern, existing) >= self.merge_threshold:
                return existing
        return None

    def store_successful_pattern(self, session_log: SessionLog) -> QueryPattern:
        """
        Record a session that went well.

        Returns:
            The merged or newly inserted pattern
        """
        pattern = extract_pattern(session_log)
        existing = self.find_similar(pattern, self.successful)

        if existing:
            existing.usage_count += 1
            existing.success_count += 1
            existing.last_used = datetime.now()
            existing.average_confidence = round(
                (existing.average_confidence * (existing.usage_count - 1) + session_log.overall_confidence)
                / existing.usage_count
            )
            logger.info(f"Updated existing pattern {existing.id}")
            stored = existing
        else:
            pattern.id = new_id("pattern")
            pattern.usage_count = 1
            pattern.success_count = 1
            pattern.failure_count = 0
            self.successful.append(pattern)
            logger.info(f"Stored new successful pattern {pattern.id}")
            stored = pattern

        self._persist()
        return stored

    def store_failure_pattern(self, session_log: SessionLog) -> QueryPattern:
        """Record a session that went badly."""
        pattern = extract_pattern(session_log)
        existing = self.find_similar(pattern, self.failed)

        if existing:
            existing.usage_count += 1
            existing.failure_count += 1
            existing.last_used = datetime.now()
            existing.average_confidence = round(
                (existing.average_confidence * (existing.usage_count - 1) + session_log.overall_confidence)
                / existing.usage_count
            )
            logger.info(f"Updated existing failure pattern {existing.id}")
            stored = existing
        else:
            pattern.id = new_id("failure")
            pattern.usage_count = 1
            pattern.success_count = 0
            pattern.failure_count = 1
            self.failed.append(pattern)
            logger.info(f"Stored new failure pattern {pattern.id}")
            stored = pattern

        self._persist()
        return stored

    def find_matching_pattern(
        self,
        query: str,
        analysis: dict[str, Any] | None = None,
    ) -> QueryPattern | None:
        """
        Best successful pattern for a query, if it clears the match threshold.

        A match is dropped when a similar failure pattern has failed more
        often than it succeeded.
        """
        probe = query_signature(query, analysis)

        best: QueryPattern | None = None
        best_score = 0.0
        for pattern in self.successful:
            score = match_score(probe, pattern)
            if score > best_score and score >= self.match_threshold:
                best, best_score = pattern, score

        if best is None:
            logger.debug("No matching pattern found")
            return None

        failure = self.find_similar(best, self.failed)
        if failure and failure.failure_count > failure.success_count:
            logger.info(f"Pattern {best.id} resembles failure {failure.id}, skipping")
            return None

        logger.info(f"Found matching pattern {best.id} with score {best_score:.2f}")
        return best

    def update_pattern_success(self, pattern_id: str, success: bool) -> bool:
        """
        Count one more use of a successful pattern.

        Returns:
            True if the pattern exists
        """
        for pattern in self.successful:
            if pattern.id == pattern_id:
                pattern.usage_count += 1
                if success:
                    pattern.success_count += 1
                else:
                    pattern.failure_count += 1
                pattern.last_used = datetime.now()
                self._persist()
                logger.info(f"Updated pattern {pattern_id}: success={success}")
                return True
        return False

    def get_stats(self) -> dict:
        """Get overall statistics."""
        return {
            "successful_patterns": len(self.successful),
            "failed_patterns": len(self.failed),
            "total_uses": sum(p.usage_count for p in self.successful),
            "average_confidence": (
                round(sum(p.average_confidence for p in self.successful) / len(self.successful))
                if self.successful
                else 0
            ),
        }

    def _persist(self) -> None:
        """Rewrite both collections. Failures are logged, not raised."""
        if not self.pattern_dir:
            return

        try:
            for filename, patterns in (
                (SUCCESSFUL_PATTERNS_FILE, self.successful),
                (FAILED_PATTERNS_FILE, self.failed),
            ):
                write_json_atomic(
                    self.pattern_dir / filename,
                    [p.model_dump(mode="json", by_alias=True) for p in patterns],
                )
            logger.debug(f"Persisted patterns to {self.pattern_dir}")

        except OSError as e:
            logger.error(f"Failed to persist patterns: {e}")

    @staticmethod
    def _load(path: Path) -> list[QueryPattern]:
        if not path.exists():
            return []

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return [QueryPattern.model_validate(item) for item in data]

        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error(f"Failed to load patterns from {path}: {e}")
            return []
