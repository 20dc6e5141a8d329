"""Tools over the draft workspace: read, write and modify test sources, and
pull a broken locator out of a failure message."""

import re
from typing import Any

from ...models.actions import AgentActionType
from ...models.tool_integration import ToolDefinition, ToolParameter
from ..base import Tool
from .clients import WorkspaceClient

_PATH = ToolParameter(name="path", type="string", description="File path", required=True, min_length=1)

_LOCATOR_PATTERNS = (
    re.compile(r"""locator\((['"])(?P<locator>.+?)\1\)"""),
    re.compile(r"""(?:selector|waiting for)\s+(['"])(?P<locator>.+?)\1"""),
    re.compile(r"""get_by_\w+\((['"])(?P<locator>.+?)\1\)"""),
)


class ReadFileTool(Tool):
    def __init__(self, client: WorkspaceClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.READ_FILE,
                name="Read File",
                description="Read a file from the draft workspace",
                parameters={"path": _PATH},
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        content = await self.client.read_file(parameters["path"])
        return {"file_path": parameters["path"], "file_content": content}


class WriteFileTool(Tool):
    def __init__(self, client: WorkspaceClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.WRITE_FILE,
                name="Write File",
                description="Write a file to the draft workspace",
                parameters={
                    "path": _PATH,
                    "content": ToolParameter(
                        name="content", type="string", description="File content", required=True
                    ),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        await self.client.write_file(parameters["path"], parameters["content"])
        self.logger.info("file_written", path=parameters["path"])
        return {"file_path": parameters["path"], "bytes_written": len(parameters["content"])}


class ModifyFileTool(Tool):
    """Modify a file by find/replace, or replace its whole content."""

    def __init__(self, client: WorkspaceClient):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.MODIFY_FILE,
                name="Modify File",
                description="Replace text in a workspace file, or its full content",
                parameters={
                    "path": _PATH,
                    "find": ToolParameter(name="find", type="string", description="Text to replace"),
                    "replace": ToolParameter(name="replace", type="string", description="Replacement text"),
                    "content": ToolParameter(name="content", type="string", description="New full content"),
                },
            )
        )
        self.client = client

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        path = parameters["path"]
        if parameters.get("content") is not None:
            await self.client.write_file(path, parameters["content"])
            return {"file_path": path, "replacements": 1}

        find, replace = parameters.get("find"), parameters.get("replace")
        if find is None or replace is None:
            raise ValueError("Either 'content' or both 'find' and 'replace' are required")

        original = await self.client.read_file(path)
        replacements = original.count(find)
        if replacements == 0:
            raise ValueError(f"Text to replace not found in {path}: {find!r}")

        await self.client.write_file(path, original.replace(find, replace))
        return {"file_path": path, "replacements": replacements}


class ExtractBrokenLocatorTool(Tool):
    """Parse the failing locator out of a browser-automation error message."""

    def __init__(self):
        super().__init__(
            ToolDefinition(
                action_type=AgentActionType.EXTRACT_BROKEN_LOCATOR,
                name="Extract Broken Locator",
                description="Extract the locator that failed from a test error message",
                parameters={
                    "error_message": ToolParameter(
                        name="error_message", type="string", description="Test failure output", required=True
                    ),
                },
            )
        )

    async def execute(self, parameters: dict[str, Any]) -> dict[str, Any]:
        message = parameters["error_message"]
        for pattern in _LOCATOR_PATTERNS:
            match = pattern.search(message)
            if match:
                return {"broken_locator": match.group("locator")}
        raise ValueError("No locator found in error message")
