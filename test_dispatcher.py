"""
Dispatcher and Tool Registry Tests

Tests for parameter injection, result normalization and rendering.
"""

import asyncio
import json

from inquest.orchestration import (
    Action,
    ActionDispatcher,
    ActionKind,
    ConversationTurn,
    ExecutionContext,
    LoopGuard,
    ToolFailure,
    ToolRegistry,
    ToolSuccess,
    UnknownCapabilityError,
    normalize_tool_result,
    result_to_text,
)
from inquest.orchestration.dispatcher import SYNTHESIS_RESULT, TRUNCATION_MARKER


def make_registry(seen):
    registry = ToolRegistry()

    async def read_file(params):
        seen.append(("read_file", params))
        return {"success": True, "data": {"content": "export default {}"}}

    async def ui_layer(params):
        seen.append(("get_ui_layer_data", params))
        return {"requests": [{"url": "/api/users"}, {"url": "/api/me"}]}

    async def broken(params):
        raise ConnectionError("socket closed")

    async def refuses(params):
        return {"success": False, "error": "Widget not found"}

    async def page_agent(params, conversation):
        seen.append(("page-agent", params, conversation))
        return "Created the page"

    registry.register_tool("read_file", read_file)
    registry.register_tool("get_ui_layer_data", ui_layer)
    registry.register_tool("broken_tool", broken)
    registry.register_tool("select_widget", refuses)
    registry.register_agent("page-agent", page_agent)
    return registry


def test_param_injection():
    """channelId goes everywhere; projectLocation only to file tools and agents."""
    print("=" * 60)
    print("TEST 1: Param injection")
    print("=" * 60)

    seen = []
    dispatcher = ActionDispatcher(make_registry(seen))
    turns = [ConversationTurn(role="user", text="make a page")]
    context = ExecutionContext(channel_id="c1", project_location="/work/app", conversation_history=turns)

    async def run():
        read = Action(step=1, kind=ActionKind.TOOL, name="read_file", params={"filePath": "a.js"})
        ui = Action(step=2, kind=ActionKind.TOOL, name="get_ui_layer_data", params={"dataType": "network"})
        agent = Action(step=3, kind=ActionKind.AGENT, name="page-agent", params={"channelId": "explicit"})
        return [await dispatcher.dispatch(a, context) for a in (read, ui, agent)], read

    (read_done, ui_done, agent_done), read = asyncio.run(run())

    assert seen[0] == ("read_file", {"filePath": "a.js", "channelId": "c1", "projectLocation": "/work/app"})
    assert seen[1] == ("get_ui_layer_data", {"dataType": "network", "channelId": "c1"})
    assert seen[2][1] == {"channelId": "explicit", "projectLocation": "/work/app"}
    assert seen[2][2] == turns
    assert read.params == {"filePath": "a.js"}
    assert read_done.params == {"filePath": "a.js"}
    print("[PASS] Params injected without touching the action")

    assert ui_done.result.startswith("Network Data Result (2 requests):")
    assert agent_done.result == "Created the page"
    print("[PASS] Results rendered")


def test_failures_never_raise():
    """Unknown names, exceptions and error envelopes become action errors."""
    print("\n" + "=" * 60)
    print("TEST 2: Failures")
    print("=" * 60)

    dispatcher = ActionDispatcher(make_registry([]))
    context = ExecutionContext()

    async def run(kind, name):
        return await dispatcher.dispatch(Action(step=1, kind=kind, name=name), context)

    unknown_agent = asyncio.run(run(ActionKind.AGENT, "ghost-agent"))
    assert unknown_agent.error == "Unknown agent: ghost-agent"
    assert unknown_agent.result == "Error: Unknown agent: ghost-agent"

    unknown_tool = asyncio.run(run(ActionKind.TOOL, "ghost"))
    assert unknown_tool.error == "Unknown tool: ghost"

    crashed = asyncio.run(run(ActionKind.TOOL, "broken_tool"))
    assert crashed.error == "socket closed"

    refused = asyncio.run(run(ActionKind.TOOL, "select_widget"))
    assert refused.error == "Widget not found"
    print("[PASS] All failures normalized")

    synthesis = asyncio.run(run(ActionKind.SYNTHESIS, "synthesize"))
    assert synthesis.result == SYNTHESIS_RESULT
    assert synthesis.error is None
    print("[PASS] Synthesis is a no-op")


def test_dispatch_parallel_keeps_order():
    print("\n" + "=" * 60)
    print("TEST 3: Parallel dispatch")
    print("=" * 60)

    dispatcher = ActionDispatcher(make_registry([]))
    actions = [
        Action(step=1, kind=ActionKind.TOOL, name="read_file", params={"filePath": "a.js"}),
        Action(step=1, kind=ActionKind.TOOL, name="ghost"),
        Action(step=1, kind=ActionKind.TOOL, name="get_ui_layer_data"),
    ]
    results = asyncio.run(dispatcher.dispatch_parallel(actions, ExecutionContext()))
    assert [r.name for r in results] == ["read_file", "ghost", "get_ui_layer_data"]
    assert results[1].failed and not results[0].failed
    print("[PASS] Order preserved")


def test_normalize_and_render():
    """The single result boundary and its text rendering."""
    print("\n" + "=" * 60)
    print("TEST 4: Result normalization")
    print("=" * 60)

    assert normalize_tool_result({"success": True, "data": [1, 2]}) == ToolSuccess(data=[1, 2])
    assert normalize_tool_result({"success": True, "logs": []}) == ToolSuccess(data={"logs": []})
    assert normalize_tool_result({"success": False}) == ToolFailure(error="Unknown error")
    assert normalize_tool_result("plain") == ToolSuccess(data="plain")
    assert normalize_tool_result(ToolFailure(error="x")) == ToolFailure(error="x")
    print("[PASS] Normalization")

    assert result_to_text(ToolSuccess(data=None)) == "No result returned"
    assert result_to_text(ToolSuccess(data="raw text")) == "raw text"
    assert result_to_text(ToolFailure(error="boom")) == "Error: boom"
    assert result_to_text(ToolSuccess(data={"variables": {"a": 1}})).startswith("Application Info Result:")
    assert result_to_text(ToolSuccess(data={"events": [1]})).startswith("Timeline Data Result:")
    assert result_to_text(ToolSuccess(data={"localStorage": {"k": "v"}})).startswith("Storage Data Result:")
    assert result_to_text(ToolSuccess(data=[1, 2])).startswith("Result:\n")

    text = result_to_text(ToolSuccess(data={"variables": {"a": 1}}))
    body = json.loads(text.split("\n", 1)[1])
    assert body == {"success": True, "data": {"variables": {"a": 1}}}
    print("[PASS] Headers and JSON body")

    big = result_to_text(ToolSuccess(data={"blob": "x" * 500}), char_cap=100)
    assert big.endswith(TRUNCATION_MARKER)
    assert len(big) == len("Result:\n") + 100 + len(TRUNCATION_MARKER)
    print("[PASS] Truncation")


def test_loop_guard():
    print("\n" + "=" * 60)
    print("TEST 5: Loop guard")
    print("=" * 60)

    guard = LoopGuard()

    def act(step, params):
        return Action(step=step, kind=ActionKind.TOOL, name="read_file", params=params)

    history = [act(1, {"a": 1, "b": 2})]
    proposed = act(2, {"b": 2, "a": 1})
    assert guard.repeat_count(history, proposed) == 1
    assert not guard.is_loop(history, proposed)

    history.append(proposed)
    assert guard.is_loop(history, act(3, {"a": 1, "b": 2}))
    assert guard.last_action_repeated(history) == 2
    assert not guard.is_loop(history, act(3, {"a": 2}))

    # Old repeats fall out of the window
    history += [act(3, {"c": 1}), act(4, {"d": 1})]
    assert not guard.is_loop(history, act(5, {"a": 1, "b": 2}))

    answer = guard.fallback_answer(history, act(5, {"a": 1, "b": 2}))
    assert "After 4 steps" in answer and "(read_file)" in answer
    print("[PASS] Loop guard")


def test_registry_describe():
    registry = make_registry([])
    text = registry.describe()
    assert "**read_file**" in text
    assert "### Agents" in text and "**page-agent**" in text
    assert registry.agent_names == ["page-agent"]

    try:
        registry.resolve_agent("ghost-agent")
        assert False, "expected UnknownCapabilityError"
    except UnknownCapabilityError as e:
        assert e.kind == "agent" and e.name == "ghost-agent"
    print("[PASS] Registry describe")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("DISPATCHER TESTS")
    print("=" * 60)

    test_param_injection()
    test_failures_never_raise()
    test_dispatch_parallel_keeps_order()
    test_normalize_and_render()
    test_loop_guard()
    test_registry_describe()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
