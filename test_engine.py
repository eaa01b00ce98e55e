"""
Orchestration Engine Tests

Drives the engine with a scripted oracle and in-process tools.
"""

import asyncio
import tempfile
from pathlib import Path

from inquest.orchestration import (
    ActionDispatcher,
    Decision,
    ExecutionContext,
    ExecutionResult,
    OracleError,
    OrchestrationEngine,
    PatternStore,
    Quality,
    ToolRegistry,
    load_session_log,
)
from inquest.orchestration.engine import DEFAULT_ANSWER, MAX_STEPS_ANSWER
from inquest.orchestration.oracle import FALLBACK_PARTIAL_ANSWER

USERS_DATA = {
    "componentTree": [
        {"name": "UserList", "type": "list", "items": ["ada", "grace", "linus", "guido", "ken"]},
    ],
    "summary": "5 users displayed in the list",
}


def cont(name, params=None, confidence=85, kind="tool"):
    return Decision.model_validate({
        "status": "continue",
        "nextAction": {"type": kind, "name": name, "params": params or {}, "reasoning": f"Call {name}"},
        "confidence": confidence,
        "reasoning": "Need more data",
        "whatWeKnow": [],
        "whatWeMissing": ["Displayed data"],
    })


def done(answer, confidence=90, pattern="Runtime Data Investigation"):
    return Decision.model_validate({
        "status": "done",
        "finalAnswer": answer,
        "confidence": confidence,
        "reasoning": "Enough evidence",
        "pattern": pattern,
    })


class ScriptedOracle:
    """Replays decisions; repeats the last one when ``repeat_last`` is set."""

    def __init__(self, decisions, repeat_last=False, fail=False):
        self.decisions = list(decisions)
        self.repeat_last = repeat_last
        self.fail = fail
        self.requests = []
        self.seeds = []

    async def decide(self, request, seed):
        self.requests.append(request)
        self.seeds.append(seed)
        if self.fail:
            raise OracleError("oracle offline")
        if self.repeat_last and len(self.decisions) == 1:
            return self.decisions[0]
        if not self.decisions:
            raise OracleError("script exhausted")
        return self.decisions.pop(0)

    async def extract_claims(self, query, answer, seed):
        raise OracleError("no claim extraction in tests")


def make_registry(calls=None):
    calls = calls if calls is not None else []
    registry = ToolRegistry()

    async def ui_layer(params):
        calls.append(("get_ui_layer_data", params))
        data_type = params.get("dataType")
        if data_type == "components":
            return {"success": True, "data": USERS_DATA}
        if data_type == "console":
            return {"success": True, "data": {"logs": [], "errors": ["TypeError: x is undefined"]}}
        return {"success": True, "data": {"appInfo": {"name": "Demo"}}}

    async def read_file(params):
        calls.append(("read_file", params))
        return f"// {params.get('filePath')}\nexport default {{}}"

    registry.register_tool("get_ui_layer_data", ui_layer)
    registry.register_tool("read_file", read_file)
    return registry


def make_engine(oracle, registry=None, **kwargs):
    kwargs.setdefault("verify_answers", False)
    return OrchestrationEngine(oracle, ActionDispatcher(registry or make_registry()), **kwargs)


def test_steps_strictly_increasing():
    """Action steps start at 1 and strictly increase."""
    print("=" * 60)
    print("TEST 1: Step numbering")
    print("=" * 60)

    oracle = ScriptedOracle([
        cont("get_ui_layer_data", {"dataType": "components"}),
        cont("read_file", {"filePath": "pages/home/home.component.js"}),
        done("The home page shows a list."),
    ])
    result = asyncio.run(make_engine(oracle).run("What does the home page show?"))

    steps = [a.step for a in result.action_history]
    print(f"\nSteps: {steps}")
    assert steps == [1, 2]
    assert all(b > a for a, b in zip(steps, steps[1:]))
    assert result.answer == "The home page shows a list."
    print("\n[PASS] Steps strictly increase")


def test_five_users_scenario():
    """Components lookup then a confident answer."""
    print("\n" + "=" * 60)
    print("TEST 2: How many users are shown?")
    print("=" * 60)

    oracle = ScriptedOracle([
        cont("get_ui_layer_data", {"dataType": "components"}, confidence=85),
        done("There are 5 users displayed in the UserList widget.", confidence=95),
    ])
    result = asyncio.run(make_engine(oracle).run("How many users are shown?", ExecutionContext(channel_id="c1")))

    print(f"\nAnswer: {result.answer} ({result.confidence}%, {result.quality.value})")
    assert "5 users" in result.answer
    assert result.confidence >= 90
    assert [a.name for a in result.action_history] == ["get_ui_layer_data"]
    assert result.action_history[0].result.startswith("Component Tree Result:")
    assert result.quality == Quality.HIGH
    assert result.pattern == "Runtime Data Investigation"
    assert result.errors == []
    print("\n[PASS] Scenario answered with high confidence")


def test_loop_guard_stops_repeats():
    """The third identical proposal is refused before it executes."""
    print("\n" + "=" * 60)
    print("TEST 3: Loop guard")
    print("=" * 60)

    calls = []
    oracle = ScriptedOracle([cont("get_ui_layer_data", {"dataType": "components"})], repeat_last=True)
    store = PatternStore()
    engine = make_engine(oracle, make_registry(calls), pattern_store=store)
    result = asyncio.run(engine.run("How many users are shown?"))

    print(f"\nAnswer: {result.answer[:80]}...")
    assert len(calls) == 2
    assert len(result.action_history) == 2
    assert result.confidence == 30
    assert "get_ui_layer_data" in result.answer
    assert result.quality == Quality.LOW
    assert oracle.requests[2].repeated_last_action == 2
    assert len(store.failed) == 1 and not store.successful
    print("\n[PASS] Loop aborted with confidence 30")


def test_fallback_routes_errors_to_console():
    """Without an oracle, error questions start at the console."""
    print("\n" + "=" * 60)
    print("TEST 4: Fallback decisions")
    print("=" * 60)

    oracle = ScriptedOracle([], fail=True)
    result = asyncio.run(make_engine(oracle).run("Are there any errors?"))

    names = [(a.name, a.params.get("dataType")) for a in result.action_history]
    print(f"\nActions: {names}")
    assert names[0] == ("get_ui_layer_data", "console")
    assert result.action_history[0].result.startswith("Console Data Result (0 logs, 1 errors):")
    assert len(result.action_history) == 3
    assert result.answer == FALLBACK_PARTIAL_ANSWER
    assert result.confidence == 30
    print("\n[PASS] Fallback checked the console first")


def test_failed_action_below_confidence_stops():
    """An unknown tool with low confidence ends the run."""
    print("\n" + "=" * 60)
    print("TEST 5: Low-confidence failure")
    print("=" * 60)

    oracle = ScriptedOracle([cont("nonexistent_tool", confidence=40), done("unreachable")])
    result = asyncio.run(make_engine(oracle).run("Where is the login handler?"))

    assert result.answer == DEFAULT_ANSWER
    assert result.action_history[0].error == "Unknown tool: nonexistent_tool"
    assert result.errors[0]["error"] == "Unknown tool: nonexistent_tool"
    assert len(oracle.requests) == 1
    print("[PASS] Stopped after failing step")

    oracle = ScriptedOracle([cont("nonexistent_tool", confidence=80), done("Recovered answer.", 80)])
    result = asyncio.run(make_engine(oracle).run("Where is the login handler?"))
    assert result.answer == "Recovered answer."
    assert len(result.errors) == 1
    print("[PASS] Confident run continues past a failure")


def test_terminal_statuses():
    """Clarification, error status and malformed decisions."""
    print("\n" + "=" * 60)
    print("TEST 6: Terminal statuses")
    print("=" * 60)

    clarify = Decision.model_validate({
        "status": "need_clarification",
        "clarificationNeeded": "Which page do you mean?",
        "confidence": 20,
    })
    result = asyncio.run(make_engine(ScriptedOracle([clarify])).run("Fix the page"))
    assert result.answer == "I need clarification: Which page do you mean?"
    assert result.action_history == []
    print("[PASS] Clarification")

    error = Decision.model_validate({"status": "error", "reasoning": "Tool server down"})
    result = asyncio.run(make_engine(ScriptedOracle([error])).run("Fix the page"))
    assert result.answer == DEFAULT_ANSWER
    assert result.errors == [{"step": 1, "error": "Tool server down"}]
    print("[PASS] Error status")

    malformed = Decision.model_validate({"status": "continue", "confidence": 60})
    result = asyncio.run(make_engine(ScriptedOracle([malformed])).run("Fix the page"))
    assert result.answer == DEFAULT_ANSWER
    assert "nextAction" in result.errors[0]["error"]
    print("[PASS] Continue without nextAction")


def test_max_steps():
    """Distinct actions forever hit the step cap."""
    print("\n" + "=" * 60)
    print("TEST 7: Max steps")
    print("=" * 60)

    oracle = ScriptedOracle([cont("read_file", {"filePath": f"file{i}.js"}) for i in range(10)])
    result = asyncio.run(make_engine(oracle, max_steps=3).run("Read everything"))

    assert len(result.action_history) == 3
    assert result.answer == MAX_STEPS_ANSWER
    print("[PASS] Stopped at max steps")


def test_seed_and_observer():
    """The configured seed reaches every decision; observers see each step."""
    print("\n" + "=" * 60)
    print("TEST 8: Seed and observer")
    print("=" * 60)

    updates = []
    oracle = ScriptedOracle([
        cont("get_ui_layer_data", {"dataType": "components"}),
        cont("get_ui_layer_data", {"dataType": "info"}),
        done("Done."),
    ])
    context = ExecutionContext(channel_id="c1", on_step_update=updates.append)
    asyncio.run(make_engine(oracle, seed=7).run("Show the data", context))

    assert oracle.seeds == [7, 7, 7]
    assert [u.type for u in updates] == ["step", "step", "complete"]
    assert updates[0].data["step"] == 1
    assert updates[-1].data["totalSteps"] == 2
    print("[PASS] Seed forwarded, observer notified")

    def broken(update):
        raise RuntimeError("observer bug")

    oracle = ScriptedOracle([cont("get_ui_layer_data", {"dataType": "info"}), done("Done.")])
    result = asyncio.run(make_engine(oracle).run("Show the data", ExecutionContext(on_step_update=broken)))
    assert result.answer == "Done."
    print("[PASS] Failing observer does not break the run")


def test_reinvestigation_after_failed_verification():
    """An unsupported answer triggers exactly one more round."""
    print("\n" + "=" * 60)
    print("TEST 9: Re-investigation")
    print("=" * 60)

    oracle = ScriptedOracle([
        cont("get_ui_layer_data", {"dataType": "components"}),
        done("There are 5 users displayed.", confidence=92),
        done("there are 5 users displayed in the list.", confidence=90),
    ])
    engine = make_engine(oracle, verify_answers=True)
    result = asyncio.run(engine.run("How many users are shown?"))

    print(f"\nVerification: {result.verification}")
    assert len(oracle.requests) == 3
    assert oracle.requests[1].evidence_gaps == []
    assert oracle.requests[2].evidence_gaps
    assert result.answer == "there are 5 users displayed in the list."
    assert result.verification is not None
    assert result.verification.verified
    print("\n[PASS] One re-investigation, then accepted")

    oracle = ScriptedOracle([
        done("The Widget shows Users.", confidence=80),
        done("The Widget shows Users again.", confidence=80),
        done("never asked"),
    ])
    result = asyncio.run(make_engine(oracle, verify_answers=True).run("How many users are shown?"))
    assert len(oracle.requests) == 2
    assert result.answer == "The Widget shows Users again."
    print("[PASS] Re-investigation is capped")


def test_pattern_learning_and_session_files():
    """A good session becomes a pattern that the next run is offered."""
    print("\n" + "=" * 60)
    print("TEST 10: Pattern learning")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)
        store = PatternStore(pattern_dir=tmp / "patterns")

        def script():
            return ScriptedOracle([
                cont("get_ui_layer_data", {"dataType": "components"}),
                done("There are 5 users displayed in the UserList widget.", confidence=95),
            ])

        first = asyncio.run(make_engine(script(), pattern_store=store, session_log_dir=tmp / "sessions")
                            .run("How many users are shown?"))
        assert first.quality == Quality.HIGH
        assert len(store.successful) == 1

        oracle = script()
        second = asyncio.run(make_engine(oracle, pattern_store=store, session_log_dir=tmp / "sessions")
                             .run("How many users are shown?"))
        pattern = store.successful[0]
        print(f"\nPattern {pattern.id}: uses={pattern.usage_count}, successes={pattern.success_count}")

        assert oracle.requests[0].pattern is not None
        # one use per session, even when the session merges into its own hint
        assert pattern.usage_count == 2
        assert pattern.success_count == 2
        assert pattern.failure_count == 0
        assert pattern.tool_sequence == ["get_ui_layer_data"]

        log = load_session_log(tmp / "sessions" / f"{second.session_id}.json")
        assert log.pattern_match == pattern.id
        assert log.final_answer == second.answer
        assert (tmp / "sessions" / f"{second.session_id}.md").exists()
        assert (tmp / "patterns" / "successful-patterns.json").exists()

        reloaded = PatternStore(pattern_dir=tmp / "patterns")
        assert reloaded.successful[0].id == pattern.id
    print("\n[PASS] Pattern stored, matched and persisted")


def test_steps_count_executed_actions():
    """A re-investigation does not use up a step number."""
    print("\n" + "=" * 60)
    print("TEST 11: Steps after re-investigation")
    print("=" * 60)

    oracle = ScriptedOracle([
        done("The Widget shows Users.", confidence=80),
        cont("get_ui_layer_data", {"dataType": "components"}),
        done("there are 5 users displayed in the list.", confidence=90),
    ])
    result = asyncio.run(make_engine(oracle, verify_answers=True).run("How many users are shown?"))

    assert len(oracle.requests) == 3
    assert [a.step for a in result.action_history] == [1]
    assert result.answer == "there are 5 users displayed in the list."
    print("[PASS] Actions numbered from 1")

    oracle = ScriptedOracle([
        done("The Widget shows Users.", confidence=80),
        cont("read_file", {"filePath": "a.js"}),
        cont("read_file", {"filePath": "b.js"}),
        cont("read_file", {"filePath": "c.js"}),
    ])
    result = asyncio.run(make_engine(oracle, verify_answers=True, max_steps=2).run("Read the files"))
    assert [a.step for a in result.action_history] == [1, 2]
    assert result.answer == "The Widget shows Users."
    print("[PASS] Step cap counts executed actions")


class Opaque:
    """Tool payload with no JSON form."""


class ClaimingOracle(ScriptedOracle):
    async def extract_claims(self, query, answer, seed):
        return ["there are 5 users displayed"]


class BrokenPatternStore(PatternStore):
    def store_successful_pattern(self, session_log):
        raise OSError("disk full")


def test_run_survives_misbehaving_collaborators():
    """Unserializable tool data and a failing pattern store still yield a result."""
    print("\n" + "=" * 60)
    print("TEST 12: Misbehaving collaborators")
    print("=" * 60)

    registry = make_registry()

    async def eval_expression(params):
        return {"success": True, "data": Opaque()}

    registry.register_tool("eval_expression", eval_expression)
    answer = "There are 5 users displayed. Open the list with Actions.goToPage('Users')."

    with tempfile.TemporaryDirectory() as tmp:
        oracle = ClaimingOracle([
            cont("get_ui_layer_data", {"dataType": "components"}),
            done(answer, confidence=95),
        ])
        engine = make_engine(
            oracle,
            registry,
            verify_answers=True,
            run_solution_tests=True,
            session_log_dir=Path(tmp),
            pattern_store=BrokenPatternStore(),
        )
        result = asyncio.run(engine.run("How many users are shown?"))

        print(f"\nAnswer: {result.answer} ({result.quality.value})")
        assert isinstance(result, ExecutionResult)
        assert result.answer == answer
        assert result.errors == []
        assert result.verification.verified
        assert len(result.test_results) == 2
        assert all(t.success for t in result.test_results)
        assert result.quality == Quality.HIGH

        log = load_session_log(Path(tmp) / f"{result.session_id}.json")
        assert "Opaque" in log.test_results[0].actual_result
        assert log.quality == Quality.HIGH
        assert (Path(tmp) / f"{result.session_id}.md").exists()
    print("\n[PASS] Session persisted and result returned")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("ORCHESTRATION ENGINE TESTS")
    print("=" * 60)

    test_steps_strictly_increasing()
    test_five_users_scenario()
    test_loop_guard_stops_repeats()
    test_fallback_routes_errors_to_console()
    test_failed_action_below_confidence_stops()
    test_terminal_statuses()
    test_max_steps()
    test_seed_and_observer()
    test_reinvestigation_after_failed_verification()
    test_pattern_learning_and_session_files()
    test_steps_count_executed_actions()
    test_run_survives_misbehaving_collaborators()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
