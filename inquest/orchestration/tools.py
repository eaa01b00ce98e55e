"""Tool and agent catalog for the orchestration engine.

The engine never knows what a tool does; it only knows names, a short
description for the oracle prompt, and an async handler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from ..settings import TOOL_SERVER_TIMEOUT, TOOL_SERVER_URL
from .errors import UnknownCapabilityError
from .models import ActionKind, ConversationTurn, ToolFailure, ToolResult, normalize_tool_result

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]
AgentHandler = Callable[[dict[str, Any], list[ConversationTurn]], Awaitable[Any]]

# Tools that operate on the project checkout and need its location
FILESYSTEM_TOOLS: frozenset[str] = frozenset({
    "find_files",
    "read_file",
    "edit_file",
    "write_file",
    "append_file",
    "grep_files",
    "list_directory",
    "execute_command",
    "echo_command",
    "sed_command",
})


@dataclass
class ToolDefinition:
    """Definition of a tool or agent the oracle may pick."""

    name: str
    description: str
    parameters: dict[str, dict] = field(default_factory=dict)
    required_params: list[str] = field(default_factory=list)
    kind: ActionKind = ActionKind.TOOL


# Catalog of the inspection server's tools
TOOL_DEFINITIONS: dict[str, ToolDefinition] = {
    "get_ui_layer_data": ToolDefinition(
        name="get_ui_layer_data",
        description="Get runtime data from the running application.",
        parameters={
            "dataType": {
                "type": "string",
                "enum": ["components", "network", "info", "console", "storage", "timeline"],
                "description": (
                    "components (element tree + bindings), network (API responses), "
                    "info (variables/app state), console (logs/errors), "
                    "storage (localStorage), timeline (events/navigation)"
                ),
            },
        },
        required_params=["dataType"],
    ),
    "select_widget": ToolDefinition(
        name="select_widget",
        description="Highlight a widget by name.",
        parameters={"widgetName": {"type": "string"}},
        required_params=["widgetName"],
    ),
    "get_widget_properties_styles": ToolDefinition(
        name="get_widget_properties_styles",
        description="Get widget properties and styles by widget id.",
        parameters={"widgetId": {"type": "string"}},
        required_params=["widgetId"],
    ),
    "eval_expression": ToolDefinition(
        name="eval_expression",
        description="Execute a JavaScript expression in the application context.",
        parameters={"expression": {"type": "string"}},
        required_params=["expression"],
    ),
    "find_files": ToolDefinition(
        name="find_files",
        description="Find files by name pattern.",
        parameters={"pattern": {"type": "string"}},
        required_params=["pattern"],
    ),
    "read_file": ToolDefinition(
        name="read_file",
        description="Read file contents.",
        parameters={"filePath": {"type": "string"}},
        required_params=["filePath"],
    ),
    "edit_file": ToolDefinition(
        name="edit_file",
        description="Edit a file by search/replace.",
        parameters={
            "filePath": {"type": "string"},
            "search": {"type": "string"},
            "replace": {"type": "string"},
        },
        required_params=["filePath", "search", "replace"],
    ),
    "write_file": ToolDefinition(
        name="write_file",
        description="Write or overwrite a file.",
        parameters={"filePath": {"type": "string"}, "content": {"type": "string"}},
        required_params=["filePath", "content"],
    ),
    "grep_files": ToolDefinition(
        name="grep_files",
        description="Search text in files.",
        parameters={"pattern": {"type": "string"}, "path": {"type": "string"}},
        required_params=["pattern"],
    ),
    "list_directory": ToolDefinition(
        name="list_directory",
        description="List directory contents.",
        parameters={"path": {"type": "string"}},
    ),
    "execute_command": ToolDefinition(
        name="execute_command",
        description="Execute a shell command in the project directory.",
        parameters={"command": {"type": "string"}},
        required_params=["command"],
    ),
}

AGENT_DEFINITIONS: dict[str, ToolDefinition] = {
    "current-page-state-agent": ToolDefinition(
        name="current-page-state-agent",
        description="Gets current page state, selected widget and element tree.",
        kind=ActionKind.AGENT,
    ),
    "page-agent": ToolDefinition(
        name="page-agent",
        description="Analyzes page files (component.js, script.js, variables.js, style.js).",
        kind=ActionKind.AGENT,
    ),
    "codebase-agent": ToolDefinition(
        name="codebase-agent",
        description="Answers questions about the platform and its codebase.",
        kind=ActionKind.AGENT,
    ),
    "file-operations-agent": ToolDefinition(
        name="file-operations-agent",
        description="Handles multi-step file operations.",
        kind=ActionKind.AGENT,
    ),
}


class ToolRegistry:
    """
    Name -> handler registry for tools and sub-agents.

    Usage:
        registry = ToolRegistry()
        registry.register_tool(TOOL_DEFINITIONS["read_file"], read_file)
        registry.register_agent(AGENT_DEFINITIONS["page-agent"], run_page_agent)
    """

    def __init__(self):
        self._tools: dict[str, tuple[ToolDefinition, ToolHandler]] = {}
        self._agents: dict[str, tuple[ToolDefinition, AgentHandler]] = {}

    def register_tool(self, definition: ToolDefinition | str, handler: ToolHandler) -> None:
        if isinstance(definition, str):
            definition = TOOL_DEFINITIONS.get(definition) or ToolDefinition(definition, "")
        self._tools[definition.name] = (definition, handler)
        logger.debug(f"Registered tool {definition.name}")

    def register_agent(self, definition: ToolDefinition | str, handler: AgentHandler) -> None:
        if isinstance(definition, str):
            definition = AGENT_DEFINITIONS.get(definition) or ToolDefinition(
                definition, "", kind=ActionKind.AGENT
            )
        self._agents[definition.name] = (definition, handler)
        logger.debug(f"Registered agent {definition.name}")

    def tool(self, name: str) -> ToolHandler | None:
        entry = self._tools.get(name)
        return entry[1] if entry else None

    def agent(self, name: str) -> AgentHandler | None:
        entry = self._agents.get(name)
        return entry[1] if entry else None

    def resolve_tool(self, name: str) -> ToolHandler:
        """
        Look up a tool handler.

        Raises:
            UnknownCapabilityError: If no tool is registered under ``name``
        """
        handler = self.tool(name)
        if handler is None:
            raise UnknownCapabilityError("tool", name)
        return handler

    def resolve_agent(self, name: str) -> AgentHandler:
        handler = self.agent(name)
        if handler is None:
            raise UnknownCapabilityError("agent", name)
        return handler

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    @property
    def agent_names(self) -> list[str]:
        return list(self._agents)

    def describe(self) -> str:
        """
        Get human-readable tool and agent descriptions for the oracle prompt.

        Returns:
            Formatted string describing everything registered
        """
        lines = ["### Tools"]
        for name, (definition, _) in self._tools.items():
            lines.append(f"- **{name}** - {definition.description}")
            for param, schema in definition.parameters.items():
                detail = schema.get("description") or schema.get("type", "")
                lines.append(f"  - {param}: {detail}")
        if self._agents:
            lines.append("\n### Agents (for complex tasks)")
            for name, (definition, _) in self._agents.items():
                lines.append(f"- **{name}** - {definition.description}")
        return "\n".join(lines)


class HTTPToolBackend:
    """
    Forwards tool calls to a remote inspection server.

    Each call is ``POST {base_url}/tools/{name}`` with the params as JSON body;
    the server answers with ``{"success": bool, "data": ..., "error": ...}``.

    Usage:
        async with HTTPToolBackend() as backend:
            backend.bind(registry)
            result = await backend.call("get_ui_layer_data", {"dataType": "console"})
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or TOOL_SERVER_URL).rstrip("/")
        self.timeout = timeout or TOOL_SERVER_TIMEOUT
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPToolBackend":
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "Client not initialized. Use 'async with' context manager."
            )
        return self._client

    async def call(self, name: str, params: dict[str, Any]) -> ToolResult:
        """
        Invoke a tool on the server.

        Args:
            name: Tool name
            params: JSON-serializable params

        Returns:
            ToolResult; transport and HTTP errors become ToolFailure
        """
        logger.debug(f"POST /tools/{name} params={list(params)}")
        try:
            response = await self.client.post(f"/tools/{name}", json=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Tool server returned {e.response.status_code} for {name}")
            return ToolFailure(error=f"HTTP {e.response.status_code}: {e.response.text[:200]}")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Tool server call {name} failed: {e}")
            return ToolFailure(error=str(e))

        return normalize_tool_result(payload)

    def handler(self, name: str) -> ToolHandler:
        """Async handler bound to one remote tool."""

        async def _call(params: dict[str, Any]) -> ToolResult:
            return await self.call(name, params)

        return _call

    def bind(self, registry: ToolRegistry, names: list[str] | None = None) -> None:
        """Register remote handlers for ``names`` (default: the whole catalog)."""
        for name in names or list(TOOL_DEFINITIONS):
            registry.register_tool(TOOL_DEFINITIONS.get(name) or name, self.handler(name))
