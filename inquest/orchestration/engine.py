"""
Orchestration engine: the bounded decide -> act -> verify loop.

The engine is an explicit state machine:

    DECIDING  -> ask the oracle (or the fallback policy) what to do next
    EXECUTING -> dispatch the proposed action and log the step
    VERIFYING -> grade the answer against evidence, re-investigate at most once
    DONE      -> an answer exists (or the loop was cut short on purpose)
    FAILED    -> the loop stopped without an answer

Whatever happens, ``run`` finalizes the session log, feeds the pattern store,
and returns an ExecutionResult. It never raises.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..settings import INQUEST_SEED
from .dispatcher import ActionDispatcher
from .errors import OracleError
from .evidence import EvidenceValidator, infer_evidence
from .loop_guard import LoopGuard
from .models import (
    Action,
    Decision,
    DecisionStatus,
    EngineState,
    ExecutionContext,
    ExecutionResult,
    ExecutionStep,
    QueryPattern,
    Quality,
    Severity,
    StepUpdate,
    VerificationResult,
)
from .oracle import DecisionOracle, OracleRequest, fallback_decision
from .pattern_store import PatternStore, determine_intent, determine_query_type, extract_keywords
from .session_logger import SessionLogger
from .solution_tester import SolutionTester

logger = logging.getLogger(__name__)

MAX_STEPS = 15
LOW_CONFIDENCE_STOP = 50
MAX_REINVESTIGATIONS = 1

MAX_STEPS_ANSWER = (
    "I was unable to complete the analysis within the maximum number of steps. "
    "The investigation may be too complex or requires a different approach."
)
DEFAULT_ANSWER = (
    "I was unable to complete the analysis. Please try rephrasing your question or provide more context."
)
ERROR_ANSWER = "I ran into an unexpected error while investigating your request. Please try again."


@dataclass
class _Run:
    """Mutable bookkeeping for one call to ``run``."""

    query: str
    context: ExecutionContext
    session: SessionLogger
    pattern_hint: QueryPattern | None = None
    history: list[Action] = field(default_factory=list)
    step: int = 0
    decision: Decision | None = None
    pending: Action | None = None
    answer: str | None = None
    confidence: int = 0
    pattern: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    evidence_gaps: list[str] = field(default_factory=list)
    reinvestigations: int = 0
    verification: VerificationResult | None = None
    hit_max_steps: bool = False


class OrchestrationEngine:
    """
    Answers a query by looping over oracle decisions and tool calls.

    Usage:
        engine = OrchestrationEngine(oracle, ActionDispatcher(registry), pattern_store=store)
        result = await engine.run("How many users are shown?", ExecutionContext(channel_id="c1"))
    """

    def __init__(
        self,
        oracle: DecisionOracle,
        dispatcher: ActionDispatcher,
        pattern_store: PatternStore | None = None,
        validator: EvidenceValidator | None = None,
        tester: SolutionTester | None = None,
        loop_guard: LoopGuard | None = None,
        seed: int = INQUEST_SEED,
        max_steps: int = MAX_STEPS,
        low_confidence_stop: int = LOW_CONFIDENCE_STOP,
        max_reinvestigations: int = MAX_REINVESTIGATIONS,
        verify_answers: bool = True,
        run_solution_tests: bool = False,
        session_log_dir: Path | None = None,
    ):
        """
        Initialize the engine.

        Args:
            oracle: Decision oracle consulted each cycle
            dispatcher: Executes proposed actions
            pattern_store: Optional store for pattern hints and learning
            validator: Evidence validator (built from the oracle if omitted)
            tester: Optional solution tester
            loop_guard: Repetition guard (defaults to window 3, threshold 2)
            seed: Sampling seed passed into every oracle call
            max_steps: Hard cap on loop cycles
            low_confidence_stop: Stop when an action fails below this confidence
            max_reinvestigations: Extra decision rounds after a failed verification
            verify_answers: Grade final answers against evidence
            run_solution_tests: Probe code in answers against the live app
            session_log_dir: Where session snapshots go; None disables persistence
        """
        self.oracle = oracle
        self.dispatcher = dispatcher
        self.pattern_store = pattern_store
        self.validator = validator or EvidenceValidator(oracle=oracle, seed=seed)
        self.tester = tester or (SolutionTester(dispatcher) if run_solution_tests else None)
        self.loop_guard = loop_guard or LoopGuard()
        self.seed = seed
        self.max_steps = max_steps
        self.low_confidence_stop = low_confidence_stop
        self.max_reinvestigations = max_reinvestigations
        self.verify_answers = verify_answers
        self.run_solution_tests = run_solution_tests
        self.session_log_dir = session_log_dir

    async def run(self, query: str, context: ExecutionContext | None = None) -> ExecutionResult:
        """
        Answer a query.

        Args:
            query: Natural-language question
            context: Session identifiers, conversation and observer

        Returns:
            ExecutionResult with answer, history, confidence and quality
        """
        context = context or ExecutionContext()
        session = SessionLogger(query, log_dir=self.session_log_dir)
        run = _Run(query=query, context=context, session=session)
        logger.info(f"Starting orchestrated execution for query: {query[:100]}")

        try:
            self._prepare(run)
            state = EngineState.DECIDING
            while state not in (EngineState.DONE, EngineState.FAILED):
                logger.debug(f"State {state.value} at step {run.step}")
                if state is EngineState.DECIDING:
                    state = await self._decide(run)
                elif state is EngineState.EXECUTING:
                    state = await self._execute(run)
                else:
                    state = await self._verify(run)
        except Exception as e:
            logger.error(f"Loop iteration error at step {run.step}: {e}")
            run.errors.append({"step": run.step, "error": str(e)})
            if not run.answer:
                run.answer = ERROR_ANSWER

        return self._finalize(run)

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _prepare(self, run: _Run) -> None:
        run.session.log_query_analysis({
            "queryType": determine_query_type(run.query).value,
            "intent": determine_intent(run.query).value,
            "keywords": sorted(extract_keywords(run.query)),
        })

        if self.pattern_store:
            run.pattern_hint = self.pattern_store.find_matching_pattern(run.query)
            if run.pattern_hint:
                run.session.log_pattern_match(run.pattern_hint.id)

    async def _decide(self, run: _Run) -> EngineState:
        if len(run.history) >= self.max_steps:
            logger.info("Max steps reached")
            run.hit_max_steps = True
            return EngineState.DONE

        run.step = len(run.history) + 1
        logger.info(f"========== Step {run.step} ==========")

        request = OracleRequest(
            query=run.query,
            history=list(run.history),
            conversation=list(run.context.conversation_history),
            pattern=run.pattern_hint,
            evidence_gaps=list(run.evidence_gaps),
            repeated_last_action=self.loop_guard.last_action_repeated(run.history),
        )
        try:
            decision = await self.oracle.decide(request, seed=self.seed)
        except OracleError as e:
            logger.warning(f"Oracle failed, using fallback: {e}")
            decision = fallback_decision(run.query, run.history)

        run.decision = decision

        if decision.status == DecisionStatus.DONE:
            run.answer = decision.final_answer or "No answer provided"
            run.confidence = decision.confidence
            run.pattern = decision.pattern
            if self.verify_answers:
                return EngineState.VERIFYING
            return EngineState.DONE

        if decision.status == DecisionStatus.NEED_CLARIFICATION:
            run.answer = f"I need clarification: {decision.clarification_needed}"
            run.confidence = decision.confidence
            return EngineState.DONE

        if decision.status == DecisionStatus.ERROR:
            run.errors.append({"step": run.step, "error": decision.reasoning or "Unknown orchestration error"})
            return EngineState.FAILED

        if decision.next_action is None:
            logger.error("No next action provided by oracle")
            run.errors.append({"step": run.step, "error": "Malformed decision: continue without nextAction"})
            return EngineState.FAILED

        proposed = decision.next_action.to_action(run.step)
        if self.loop_guard.is_loop(run.history, proposed):
            run.answer = self.loop_guard.fallback_answer(run.history, proposed)
            run.confidence = self.loop_guard.confidence
            run.session.detect_issue(
                f"Loop detected: {proposed.name} proposed again with the same params",
                Severity.MEDIUM,
                run.step,
            )
            return EngineState.DONE

        run.pending = proposed
        return EngineState.EXECUTING

    async def _execute(self, run: _Run) -> EngineState:
        proposed = run.pending
        decision = run.decision
        run.pending = None
        logger.info(f"Executing: {proposed.kind.value} - {proposed.name}")
        logger.debug(f"Reasoning: {proposed.reasoning}")

        started = time.monotonic()
        action = await self.dispatcher.dispatch(proposed, run.context)
        duration = time.monotonic() - started

        run.history.append(action)
        if action.error:
            run.errors.append({"step": action.step, "error": action.error})

        run.session.log_step(
            ExecutionStep.from_action(action, decision, duration, infer_evidence(action))
        )
        self._notify(run, StepUpdate(
            type="step",
            data={
                "step": action.step,
                "action": action.name,
                "reasoning": action.reasoning,
                "whatWeKnow": decision.what_we_know,
                "whatWeMissing": decision.what_we_missing,
                "confidence": decision.confidence,
            },
        ))

        if action.error and decision.confidence < self.low_confidence_stop:
            logger.info("Error with low confidence, stopping")
            return EngineState.FAILED
        return EngineState.DECIDING

    async def _verify(self, run: _Run) -> EngineState:
        tagged = [e for step in run.session.log.execution_steps for e in step.evidence_found]
        validation = await self.validator.validate(run.query, run.history, run.answer, evidence=tagged)
        run.verification = validation.to_verification_result()
        run.session.log_verification(run.verification)

        if not validation.can_answer and run.reinvestigations < self.max_reinvestigations:
            run.reinvestigations += 1
            run.evidence_gaps = validation.evidence_gaps + validation.missing_evidence
            logger.info(
                f"Answer not backed by evidence ({validation.confidence}%), "
                f"re-investigating with {len(run.evidence_gaps)} gaps"
            )
            return EngineState.DECIDING

        if self.tester and self.run_solution_tests:
            for result in await self.tester.run_applicable(run.answer, run.context):
                run.session.log_test_result(result)

        return EngineState.DONE

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _finalize(self, run: _Run) -> ExecutionResult:
        if run.hit_max_steps and not run.answer:
            run.answer = MAX_STEPS_ANSWER
        if not run.answer:
            logger.info("No final answer, creating default")
            run.answer = DEFAULT_ANSWER

        try:
            log = run.session.finalize(run.answer, run.confidence)
        except Exception as e:
            logger.error(f"Failed to finalize session {run.session.session_id}: {e}")
            run.errors.append({"step": run.step, "error": f"Session log: {e}"})
            log = run.session.log
        self._learn(run, log.quality)

        logger.info(
            f"Execution complete: {len(run.history)} steps, {log.quality.value} quality, "
            f"{len(run.errors)} errors"
        )
        self._notify(run, StepUpdate(
            type="complete",
            data={
                "answer": run.answer,
                "totalSteps": len(run.history),
                "confidence": log.overall_confidence,
                "pattern": run.pattern,
            },
        ))

        return ExecutionResult(
            answer=run.answer,
            action_history=list(run.history),
            confidence=log.overall_confidence,
            session_id=run.session.session_id,
            quality=log.quality,
            pattern=run.pattern,
            errors=run.errors,
            verification=run.verification,
            test_results=list(log.test_results),
        )

    def _learn(self, run: _Run, quality: Quality) -> None:
        if not self.pattern_store:
            return

        log = run.session.log
        hint = run.pattern_hint
        try:
            if quality in (Quality.HIGH, Quality.MEDIUM):
                stored = self.pattern_store.store_successful_pattern(log)
            else:
                stored = self.pattern_store.store_failure_pattern(log)

            # A session merged into its own hint has already been counted
            if hint and stored.id != hint.id:
                self.pattern_store.update_pattern_success(hint.id, quality != Quality.LOW)
        except Exception as e:
            logger.error(f"Failed to record pattern for session {run.session.session_id}: {e}")

    @staticmethod
    def _notify(run: _Run, update: StepUpdate) -> None:
        callback = run.context.on_step_update
        if callback is None:
            return
        try:
            callback(update)
        except Exception as e:
            logger.warning(f"Step observer raised on {update.type} update: {e}")
