"""
Solution tester: checks a proposed answer against the running application.

Each check extracts code from the answer and runs a small probe through the
``eval_expression`` tool. A check that cannot run is a failed TestResult,
never an exception.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

from .dispatcher import ActionDispatcher
from .models import Action, ActionKind, ExecutionContext, TestResult, TestType, ToolFailure

logger = logging.getLogger(__name__)

EVAL_TOOL = "eval_expression"

NAVIGATION_PATTERNS = [
    re.compile(r"Actions\.goToPage\([^)]+\)"),
    re.compile(r"navigateToPage\([^)]+\)"),
    re.compile(r"navigation\.navigate\([^)]+\)"),
    re.compile(r"App\.navigate\([^)]+\)"),
]
_VARIABLE_REF = re.compile(r"\b(?:Variables|Widgets)\.\w+(?:\.\w+)*")
_FUNCTION_CALL = re.compile(r"\b[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)+(?=\s*\()")
_STYLE_PROPS = [re.compile(r"\b([a-z][a-zA-Z]+):"), re.compile(r"['\"]([a-z-]+)['\"]")]


def extract_navigation_code(answer: str) -> str | None:
    for pattern in NAVIGATION_PATTERNS:
        match = pattern.search(answer)
        if match:
            return match.group(0)
    return None


def extract_variable_references(answer: str) -> list[str]:
    return list(dict.fromkeys(_VARIABLE_REF.findall(answer)))


def extract_function_calls(answer: str) -> list[str]:
    return list(dict.fromkeys(_FUNCTION_CALL.findall(answer)))


def extract_style_properties(answer: str) -> list[str]:
    properties = []
    for pattern in _STYLE_PROPS:
        for prop in pattern.findall(answer):
            if len(prop) > 2:
                properties.append(re.sub(r"-([a-z])", lambda m: m.group(1).upper(), prop))
    return list(dict.fromkeys(properties))


def _js_list(items: list[str]) -> str:
    return "[" + ", ".join(f"'{item}'" for item in items) + "]"


class SolutionTester:
    """
    Runs answer checks through the dispatcher.

    Usage:
        tester = SolutionTester(dispatcher)
        result = await tester.test_function_call(answer, context)
    """

    def __init__(self, dispatcher: ActionDispatcher):
        self.dispatcher = dispatcher

    async def _probe(
        self,
        test_type: TestType,
        test_code: str,
        expression: str,
        context: ExecutionContext,
    ) -> TestResult:
        started = time.monotonic()
        probe = Action(step=0, kind=ActionKind.TOOL, name=EVAL_TOOL, params={"expression": expression})
        result = await self.dispatcher.invoke(probe, context)
        duration = time.monotonic() - started

        if isinstance(result, ToolFailure):
            return TestResult(
                test_type=test_type,
                test_code=test_code,
                success=False,
                error=result.error or f"{test_type.value} test failed",
                duration=duration,
            )

        outcome: Any = result.data
        success = bool(outcome.get("success")) if isinstance(outcome, dict) else bool(outcome)
        error = outcome.get("error") if isinstance(outcome, dict) else None
        logger.info(f"{test_type.value} test {'passed' if success else 'failed'} in {duration:.2f}s")
        return TestResult(
            test_type=test_type,
            test_code=test_code,
            success=success,
            actual_result=outcome,
            error=error,
            duration=duration,
        )

    @staticmethod
    def _not_testable(test_type: TestType, answer: str, reason: str) -> TestResult:
        return TestResult(test_type=test_type, test_code=answer, success=False, error=reason)

    async def test_navigation(self, answer: str, context: ExecutionContext) -> TestResult:
        code = extract_navigation_code(answer)
        if not code:
            return self._not_testable(
                TestType.NAVIGATION, answer, "Could not extract navigation code from solution"
            )

        expression = f"""(async () => {{
  try {{
    const currentPage = App.activePage?.name;
    {code};
    await new Promise(resolve => setTimeout(resolve, 100));
    return {{ success: true, currentPage, newPage: App.activePage?.name, navigationExecuted: true }};
  }} catch (error) {{
    return {{ success: false, error: error.message }};
  }}
}})()"""
        return await self._probe(TestType.NAVIGATION, code, expression, context)

    async def test_data_binding(self, answer: str, context: ExecutionContext) -> TestResult:
        refs = extract_variable_references(answer)
        if not refs:
            return self._not_testable(
                TestType.DATA_BINDING, answer, "Could not extract variable references from solution"
            )

        expression = f"""(() => {{
  const refs = {_js_list(refs)};
  const missing = refs.filter(ref => {{
    try {{ return eval(ref) === undefined; }} catch (e) {{ return true; }}
  }});
  return missing.length === 0
    ? {{ success: true, checked: refs }}
    : {{ success: false, missing, error: 'Undefined references: ' + missing.join(', ') }};
}})()"""
        return await self._probe(TestType.DATA_BINDING, ", ".join(refs), expression, context)

    async def test_function_call(self, answer: str, context: ExecutionContext) -> TestResult:
        calls = extract_function_calls(answer)
        if not calls:
            return self._not_testable(
                TestType.FUNCTION_CALL, answer, "Could not extract function calls from solution"
            )

        expression = f"""(() => {{
  const calls = {_js_list(calls)};
  const missing = calls.filter(name => {{
    try {{ return typeof eval(name) !== 'function'; }} catch (e) {{ return true; }}
  }});
  return missing.length === 0
    ? {{ success: true, checked: calls }}
    : {{ success: false, missing, error: 'Not callable: ' + missing.join(', ') }};
}})()"""
        return await self._probe(TestType.FUNCTION_CALL, ", ".join(calls), expression, context)

    async def test_style_application(
        self,
        answer: str,
        context: ExecutionContext,
        widget: str | None = None,
    ) -> TestResult:
        props = extract_style_properties(answer)
        if not props or not widget:
            return self._not_testable(
                TestType.STYLE_APPLICATION, answer, "Could not extract widget style properties from solution"
            )

        expression = f"""(() => {{
  const w = Widgets['{widget}'];
  if (!w) return {{ success: false, error: 'Widget {widget} not found' }};
  const style = Object.assign({{}}, ...[].concat(w.styles || w.props?.style || []));
  const props = {_js_list(props)};
  const missing = props.filter(p => style[p] === undefined);
  return {{ success: missing.length === 0, applied: props.filter(p => !missing.includes(p)), missing }};
}})()"""
        return await self._probe(TestType.STYLE_APPLICATION, ", ".join(props), expression, context)

    async def run_applicable(self, answer: str, context: ExecutionContext) -> list[TestResult]:
        """Run every check whose code can be found in the answer."""
        results = []
        if extract_navigation_code(answer):
            results.append(await self.test_navigation(answer, context))
        if extract_variable_references(answer):
            results.append(await self.test_data_binding(answer, context))
        if extract_function_calls(answer):
            results.append(await self.test_function_call(answer, context))
        return results
