"""Tool dispatch for the orchestration loop."""

from .execute_code import EXECUTE_CODE_TOOL, ExecuteCodeInput, ExecuteCodeTool, register_execute_code
from .registry import ToolDescriptor, ToolDispatcher, ToolRegistry, ToolResult, schema_from_model

__all__ = [
    "EXECUTE_CODE_TOOL",
    "ExecuteCodeInput",
    "ExecuteCodeTool",
    "ToolDescriptor",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolResult",
    "register_execute_code",
    "schema_from_model",
]
