"""Tool framework: tool interface, registry and built-in collaborator adapters."""

from .base import Tool
from .errors import (
    InvalidParametersError,
    ToolError,
    ToolErrorCode,
    ToolExecutionFailedError,
    ToolNotFoundError,
)
from .registry import ToolRegistry

__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolError",
    "ToolErrorCode",
    "ToolNotFoundError",
    "InvalidParametersError",
    "ToolExecutionFailedError",
]
