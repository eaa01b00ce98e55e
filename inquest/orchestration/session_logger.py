"""
Session Logger: append-only trace of one session plus its quality grade.

Every mutation rewrites a JSON snapshot of the session so a crash never
loses more than the step in flight. ``finalize`` grades the session and
renders a Markdown report next to the snapshot.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .errors import SessionFinalizedError
from .models import (
    ActionKind,
    ExecutionStep,
    IssueDetection,
    Quality,
    SessionLog,
    Severity,
    TestResult,
    VerificationResult,
    clamp_confidence,
    json_safe,
)
from .persistence import new_id, write_text_atomic

logger = logging.getLogger(__name__)

# Grading thresholds
HIGH_QUALITY_CONFIDENCE = 85
MEDIUM_QUALITY_CONFIDENCE = 70
VERIFICATION_FLOOR = 70
VERY_LOW_STEP_CONFIDENCE = 50
LOW_STEP_CONFIDENCE = 70
MAX_MISSING_EVIDENCE = 3

RECOMMEND_MORE_EVIDENCE = (
    "Gather more evidence before generating answer. Use additional tools to verify information."
)
RECOMMEND_TARGETED_TOOLS = (
    "Identify specific evidence gaps and use targeted tools to collect missing information."
)
RECOMMEND_AVOID_REPEATS = (
    "Avoid repeating the same tool calls. Try a different approach or synthesize answer from existing data."
)


def new_session_id() -> str:
    return new_id("session")


def assess_quality(log: SessionLog) -> Quality:
    """
    Grade a session. Pure function of confidence, issues, verification and tests.

    Precedence:
        1. failed verification below 70% confidence -> LOW
        2. any failed test -> LOW
        3. HIGH if confidence >= 85, no high issues and at most one medium
        4. MEDIUM if confidence >= 70, no high issues and at most 3 issues
        5. LOW
    """
    verification = log.verification_result
    if verification and not verification.verified and verification.confidence < VERIFICATION_FLOOR:
        return Quality.LOW

    if any(not test.success for test in log.test_results):
        return Quality.LOW

    high = sum(1 for i in log.issues_detected if i.severity == Severity.HIGH)
    medium = sum(1 for i in log.issues_detected if i.severity == Severity.MEDIUM)
    confidence = log.overall_confidence

    if confidence >= HIGH_QUALITY_CONFIDENCE and high == 0 and medium <= 1:
        return Quality.HIGH
    if confidence >= MEDIUM_QUALITY_CONFIDENCE and high == 0 and len(log.issues_detected) <= 3:
        return Quality.MEDIUM
    return Quality.LOW


def load_session_log(path: Path) -> SessionLog:
    """
    Reload a session snapshot.

    Raises:
        FileNotFoundError: If the snapshot doesn't exist
        ValidationError: If the snapshot is not a valid session log
    """
    with open(path, encoding="utf-8") as f:
        return SessionLog.model_validate(json.load(f))


class SessionLogger:
    """
    Records one session.

    Usage:
        session = SessionLogger("How many users are shown?", log_dir=Path("logs/agent-sessions"))
        session.log_step(step)
        session.finalize(answer, confidence=92)
    """

    def __init__(
        self,
        user_query: str,
        log_dir: Path | None = None,
        session_id: str | None = None,
    ):
        """
        Start a session.

        Args:
            user_query: The question being answered
            log_dir: Directory for snapshots and reports. None disables persistence.
            session_id: Optional explicit id (generated otherwise)
        """
        self.log = SessionLog(session_id=session_id or new_session_id(), user_query=user_query)
        self.log_dir = log_dir
        self.finalized = False
        logger.info(f"Session {self.session_id} started: {user_query[:100]}")
        self.save()

    @property
    def session_id(self) -> str:
        return self.log.session_id

    @property
    def json_path(self) -> Path | None:
        return self.log_dir / f"{self.session_id}.json" if self.log_dir else None

    @property
    def markdown_path(self) -> Path | None:
        return self.log_dir / f"{self.session_id}.md" if self.log_dir else None

    def _check_open(self) -> None:
        if self.finalized:
            raise SessionFinalizedError(self.session_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def log_query_analysis(self, analysis: dict[str, Any]) -> None:
        self._check_open()
        self.log.query_analysis = analysis
        self.save()

    def log_step(self, step: ExecutionStep) -> None:
        """Append a step, update metrics and raise any automatic issues."""
        self._check_open()
        log = self.log
        metrics = log.metrics

        log.execution_steps.append(step)
        metrics.total_steps = len(log.execution_steps)
        metrics.total_duration += step.duration

        if step.kind == ActionKind.TOOL and step.name not in metrics.tools_used:
            metrics.tools_used.append(step.name)
        elif step.kind == ActionKind.AGENT and step.name not in metrics.agents_used:
            metrics.agents_used.append(step.name)

        metrics.evidence_collected += len(step.evidence_found)
        metrics.evidence_missing += len(step.evidence_missing)

        if step.confidence < VERY_LOW_STEP_CONFIDENCE:
            self.detect_issue(
                f"Very low confidence in step {step.step}: {step.confidence}%", Severity.HIGH, step.step
            )
        elif step.confidence < LOW_STEP_CONFIDENCE:
            self.detect_issue(
                f"Low confidence in step {step.step}: {step.confidence}%", Severity.MEDIUM, step.step
            )

        if len(step.evidence_missing) > MAX_MISSING_EVIDENCE:
            self.detect_issue(
                f"Many missing evidence items in step {step.step}: {len(step.evidence_missing)} items",
                Severity.MEDIUM,
                step.step,
            )

        if step.error:
            self.detect_issue(f"Error in step {step.step}: {step.error}", Severity.HIGH, step.step)

        self.save()

    def detect_issue(self, issue: str, severity: Severity, step: int | None = None) -> None:
        """Record an issue once; known categories also add a recommendation."""
        self._check_open()
        if any(existing.issue == issue for existing in self.log.issues_detected):
            return

        self.log.issues_detected.append(IssueDetection(issue=issue, severity=severity, step=step))
        logger.info(f"Issue detected ({severity.value}): {issue}")

        lowered = issue.lower()
        if "low confidence" in lowered:
            self.add_recommendation(RECOMMEND_MORE_EVIDENCE)
        if "missing evidence" in lowered:
            self.add_recommendation(RECOMMEND_TARGETED_TOOLS)
        if "loop detected" in lowered:
            self.log.metrics.loops_detected += 1
            self.add_recommendation(RECOMMEND_AVOID_REPEATS)

        self.save()

    def add_recommendation(self, recommendation: str) -> None:
        self._check_open()
        if recommendation not in self.log.recommendations:
            self.log.recommendations.append(recommendation)
            self.save()

    def log_verification(self, result: VerificationResult) -> None:
        self._check_open()
        self.log.verification_result = result

        if not result.verified:
            self.detect_issue(
                f"Answer verification failed with {result.confidence}% confidence",
                Severity.HIGH if result.confidence < 50 else Severity.MEDIUM,
            )
            for gap in result.evidence_gaps:
                self.detect_issue(f"Evidence gap: {gap}", Severity.MEDIUM)

        self.save()

    def log_test_result(self, result: TestResult) -> None:
        self._check_open()
        self.log.test_results.append(result)

        if not result.success:
            test_type = result.test_type.value
            self.detect_issue(f"Test failed for {test_type}: {result.error or 'Unknown error'}", Severity.HIGH)
            self.add_recommendation(f"Revise {test_type} solution based on test failure.")

        self.save()

    def log_pattern_match(self, pattern_id: str) -> None:
        self._check_open()
        self.log.pattern_match = pattern_id
        self.save()

    def finalize(self, answer: str, confidence: int) -> SessionLog:
        """
        Close the session and grade it.

        Returns:
            The finalized, now read-only, session log
        """
        self._check_open()
        self.log.final_answer = answer
        self.log.overall_confidence = clamp_confidence(confidence)
        self.log.quality = assess_quality(self.log)
        self.finalized = True

        logger.info(
            f"Session {self.session_id} finalized: {self.log.quality.value} quality, "
            f"{self.log.overall_confidence}% confidence"
        )

        self.save()
        self.write_report()
        return self.log

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Overwrite the JSON snapshot. Failures are logged, never raised."""
        if not self.json_path:
            return
        try:
            write_text_atomic(self.json_path, self.log.to_json())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save session {self.session_id}: {e}")

    def write_report(self) -> str:
        report = self.render_report()
        if self.markdown_path:
            try:
                write_text_atomic(self.markdown_path, report)
                logger.info(f"Markdown report generated: {self.markdown_path}")
            except (OSError, ValueError) as e:
                logger.error(f"Failed to write report for {self.session_id}: {e}")
        return report

    def render_report(self) -> str:
        return render_report(self.log)


def _render_step(step: ExecutionStep) -> str:
    if step.error:
        status = "FAILED"
    elif step.confidence >= 80:
        status = "OK"
    elif step.confidence >= 60:
        status = "WARN"
    else:
        status = "LOW"

    known = "\n".join(f"- {k}" for k in step.what_we_know) or "- (nothing yet)"
    missing = "\n".join(f"- {m}" for m in step.what_we_missing) or "- (nothing)"
    evidence = "\n".join(
        f"- **{e.kind.value}** from `{e.source}` {'(verified)' if e.verified else '(unverified)'}"
        for e in step.evidence_found
    )

    lines = [
        f"### [{status}] Step {step.step}: {step.name} ({step.kind.value})",
        "",
        f"**Reasoning**: {step.reasoning}",
        f"**Duration**: {step.duration:.2f}s",
        f"**Confidence**: {step.confidence}%",
        "",
        "**What We Know**:",
        known,
        "",
        "**What's Missing**:",
        missing,
        "",
        f"**Evidence Found**: {len(step.evidence_found)} items",
    ]
    if evidence:
        lines.append(evidence)
    lines.append("")
    lines.append(f"**Evidence Missing**: {', '.join(step.evidence_missing) or 'None'}")
    if step.error:
        lines.append(f"**Error**: {step.error}")
    if step.result:
        preview = step.result[:200] + ("..." if len(step.result) > 200 else "")
        lines.append(f"**Result Preview**: {preview}")
    return "\n".join(lines) + "\n"


def render_report(log: SessionLog) -> str:
    """Markdown report for a session log."""
    issues = log.issues_detected
    high = sum(1 for i in issues if i.severity == Severity.HIGH)
    medium = sum(1 for i in issues if i.severity == Severity.MEDIUM)
    low = sum(1 for i in issues if i.severity == Severity.LOW)
    metrics = log.metrics

    parts = [
        f"# Agent Execution Log [{log.quality.value}]",
        "",
        f"**Session ID**: `{log.session_id}`",
        f'**Query**: "{log.user_query}"',
        f"**Timestamp**: {log.timestamp.isoformat()}",
        f"**Quality**: **{log.quality.value}** ({log.overall_confidence}% confidence)",
        "",
        "---",
        "",
    ]

    if log.query_analysis:
        parts += [
            "## Query Analysis",
            "",
            "```json",
            json.dumps(json_safe(log.query_analysis), indent=2),
            "```",
            "",
            "---",
            "",
        ]

    parts += ["## Execution Steps", ""]
    parts += [_render_step(step) for step in log.execution_steps] or ["_No steps executed_", ""]
    parts += ["---", "", "## Final Answer", "", log.final_answer, "", "---", ""]

    verification = log.verification_result
    if verification:
        parts += [
            "## Verification Result",
            "",
            f"**Verified**: {'Yes' if verification.verified else 'No'}",
            f"**Confidence**: {verification.confidence}%",
            f"**Claims**: {len(verification.claims)} total",
            f"- Verified: {verification.claims_verified}",
            f"- Unverified: {verification.claims_unverified}",
        ]
        if verification.evidence_gaps:
            parts += ["", "**Evidence Gaps**:"] + [f"- {g}" for g in verification.evidence_gaps]
        parts += ["", "---", ""]

    if log.test_results:
        parts += ["## Test Results", ""]
        for idx, test in enumerate(log.test_results, 1):
            parts += [
                f"### Test {idx}: {test.test_type.value}",
                f"**Status**: {'PASSED' if test.success else 'FAILED'}",
                f"**Duration**: {test.duration:.2f}s",
            ]
            if test.error:
                parts.append(f"**Error**: {test.error}")
            if test.actual_result is not None:
                parts.append(f"**Result**: {json.dumps(json_safe(test.actual_result), indent=2)}")
            parts.append("")
        parts += ["---", ""]

    parts += [f"## Issues Detected ({len(issues)})", ""]
    if issues:
        for idx, issue in enumerate(issues, 1):
            where = f" (Step {issue.step})" if issue.step else ""
            parts.append(f"{idx}. **[{issue.severity.value.upper()}]** {issue.issue}{where}")
    else:
        parts.append("_No issues detected_")
    parts += ["", "---", "", f"## Recommendations ({len(log.recommendations)})", ""]
    if log.recommendations:
        parts += [f"{idx}. {rec}" for idx, rec in enumerate(log.recommendations, 1)]
    else:
        parts.append("_No recommendations_")

    parts += [
        "",
        "---",
        "",
        "## Metrics",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| **Total Steps** | {metrics.total_steps} |",
        f"| **Total Duration** | {metrics.total_duration:.2f}s |",
        f"| **Tools Used** | {', '.join(metrics.tools_used) or 'None'} |",
        f"| **Agents Used** | {', '.join(metrics.agents_used) or 'None'} |",
        f"| **Evidence Collected** | {metrics.evidence_collected} |",
        f"| **Evidence Missing** | {metrics.evidence_missing} |",
        f"| **Loops Detected** | {metrics.loops_detected} |",
        f"| **Pattern Match** | {log.pattern_match or 'None'} |",
        "",
        "---",
        "",
        "## Summary",
        "",
        f"- **Answer Quality**: **{log.quality.value}**",
        f"- **Overall Confidence**: **{log.overall_confidence}%**",
        f"- **Issues**: {len(issues)} ({high} high, {medium} medium, {low} low)",
        f"- **Evidence Quality**: {metrics.evidence_collected} collected, {metrics.evidence_missing} missing",
    ]
    if verification:
        parts.append(
            f"- **Verification**: {'PASSED' if verification.verified else 'FAILED'} ({verification.confidence}%)"
        )
    if log.test_results:
        passed = sum(1 for t in log.test_results if t.success)
        parts.append(f"- **Tests**: {passed}/{len(log.test_results)} passed")

    return "\n".join(parts) + "\n"
