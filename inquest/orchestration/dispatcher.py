"""Action dispatcher: runs one proposed action against its collaborator."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from typing import Any

from .errors import UnknownCapabilityError
from .models import (
    Action,
    ActionKind,
    ExecutionContext,
    ToolFailure,
    ToolResult,
    ToolSuccess,
    normalize_tool_result,
)
from .tools import FILESYSTEM_TOOLS, ToolRegistry

logger = logging.getLogger(__name__)

RESULT_CHAR_CAP = 50_000
TRUNCATION_MARKER = "\n\n... (response truncated, showing first 50K characters)"
SYNTHESIS_RESULT = "Synthesis step"


def _describe(data: Any) -> str:
    """Header telling the oracle what kind of payload follows."""
    if not isinstance(data, dict):
        return "Result:\n"

    if data.get("componentTree"):
        return "Component Tree Result:\n"
    if data.get("requests") or data.get("networkRequests"):
        count = len(data.get("requests") or data.get("networkRequests") or [])
        return f"Network Data Result ({count} requests):\n"
    if "logs" in data or "errors" in data:
        log_count = len(data.get("logs") or [])
        error_count = len(data.get("errors") or [])
        return f"Console Data Result ({log_count} logs, {error_count} errors):\n"
    if data.get("variables") or data.get("appInfo"):
        return "Application Info Result:\n"
    if data.get("events") or data.get("navigation"):
        return "Timeline Data Result:\n"
    if data.get("storage") or data.get("localStorage"):
        return "Storage Data Result:\n"
    return "Result:\n"


def result_to_text(result: ToolResult, char_cap: int = RESULT_CHAR_CAP) -> str:
    """
    Render a tool result as text the oracle can read.

    Args:
        result: Normalized tool result
        char_cap: Maximum length of the JSON body before truncation

    Returns:
        Text with a descriptive header, or the raw text for string results
    """
    if isinstance(result, ToolFailure):
        return f"Error: {result.error or 'Unknown error'}"

    data = result.data
    if data is None:
        return "No result returned"
    if isinstance(data, str):
        return data

    header = _describe(data)
    try:
        body = json.dumps({"success": True, "data": data}, indent=2, default=str)
    except (TypeError, ValueError):
        return f"Result (non-JSON): {data!s}"

    if len(body) > char_cap:
        return header + body[:char_cap] + TRUNCATION_MARKER
    return header + body


class ActionDispatcher:
    """
    Executes actions and normalizes every outcome into a completed Action.

    Nothing raised by a collaborator escapes ``dispatch``; failures land in
    ``action.error``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        result_char_cap: int = RESULT_CHAR_CAP,
        filesystem_tools: Iterable[str] = FILESYSTEM_TOOLS,
    ):
        """
        Initialize the dispatcher.

        Args:
            registry: Tools and agents available to actions
            result_char_cap: Cap on rendered result length
            filesystem_tools: Tool names that receive projectLocation
        """
        self.registry = registry
        self.result_char_cap = result_char_cap
        self.filesystem_tools = frozenset(filesystem_tools)

    def prepare_params(self, action: Action, context: ExecutionContext) -> dict[str, Any]:
        """Copy the action's params and add session identifiers it is missing."""
        params = dict(action.params)

        if context.channel_id and not params.get("channelId"):
            params["channelId"] = context.channel_id

        wants_location = action.kind == ActionKind.AGENT or action.name in self.filesystem_tools
        if context.project_location and wants_location and not params.get("projectLocation"):
            params["projectLocation"] = context.project_location

        return params

    async def invoke(self, action: Action, context: ExecutionContext) -> ToolResult:
        """
        Call the collaborator behind an action.

        Returns:
            ToolResult; exceptions are converted into ToolFailure
        """
        if action.kind == ActionKind.SYNTHESIS:
            return ToolSuccess(data=SYNTHESIS_RESULT)

        params = self.prepare_params(action, context)

        try:
            if action.kind == ActionKind.TOOL:
                handler = self.registry.resolve_tool(action.name)
                logger.info(f"Calling tool: {action.name}")
                raw = await handler(params)
            else:
                agent = self.registry.resolve_agent(action.name)
                logger.info(f"Calling agent: {action.name}")
                raw = await agent(params, list(context.conversation_history))
        except UnknownCapabilityError as e:
            logger.warning(str(e))
            return ToolFailure(error=str(e))
        except Exception as e:
            logger.error(f"{action.kind.value} {action.name} raised: {e}")
            return ToolFailure(error=str(e) or type(e).__name__)

        return normalize_tool_result(raw)

    async def dispatch(self, action: Action, context: ExecutionContext) -> Action:
        """
        Execute an action.

        Args:
            action: Proposed action (not modified)
            context: Session identifiers and conversation

        Returns:
            Completed copy of the action carrying result and/or error
        """
        result = await self.invoke(action, context)
        text = result_to_text(result, self.result_char_cap)

        if isinstance(result, ToolFailure):
            logger.info(f"Step {action.step} {action.name} failed: {result.error}")
            return action.completed(result=text, error=result.error)

        logger.info(f"Step {action.step} {action.name} completed ({len(text)} chars)")
        return action.completed(result=text)

    async def dispatch_parallel(
        self,
        actions: list[Action],
        context: ExecutionContext,
    ) -> list[Action]:
        """Run independent actions concurrently; results keep input order."""
        logger.info(f"Dispatching {len(actions)} actions in parallel")
        return list(await asyncio.gather(*(self.dispatch(a, context) for a in actions)))
