"""Name-keyed lookup of the tools a session may call."""

import logging
from typing import Any, Dict, Iterable, List

from ..errors import NotFoundError
from .base import Tool
from .command_tools import RunCommandTool
from .file_tools import EditFileTool, ListFilesTool, ReadFileTool, SearchCodeTool, WriteFileTool
from .task_tools import CreateTaskTool, ListTasksTool, UpdateTaskStatusTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Holds tool instances by name; classification is read from each tool's ``kind``."""

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool {tool.name} ({tool.kind.value})")

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise NotFoundError(f"Unknown tool: {name}", tool_name=name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> List[str]:
        return list(self._tools)

    def needs_approval(self, name: str) -> bool:
        """Static classification; unknown names report False and fail at dispatch."""
        tool = self._tools.get(name)
        return tool.needs_approval if tool else False

    def specs(self) -> List[Dict[str, Any]]:
        return [tool.spec() for tool in self._tools.values()]


def default_registry() -> ToolRegistry:
    """Registry with every built-in tool."""
    return ToolRegistry([
        # Task management
        ListTasksTool(),
        CreateTaskTool(),
        UpdateTaskStatusTool(),
        # File operations
        ReadFileTool(),
        WriteFileTool(),
        EditFileTool(),
        ListFilesTool(),
        SearchCodeTool(),
        # Command execution
        RunCommandTool(),
    ])
