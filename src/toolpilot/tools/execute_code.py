"""The sandbox-backed universal tool."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from contextvars import copy_context
from functools import partial
from typing import Any, TypeAlias

from loguru import logger
from pydantic import BaseModel, Field

from toolpilot.sandbox import CodeSandbox
from toolpilot.tools.registry import ToolRegistry, ToolResult

EXECUTE_CODE_TOOL = "execute_code"
DEFAULT_DESCRIPTION = "Dynamic code execution"

EXECUTE_CODE_DESCRIPTION = (
    "Execute custom Python code inside the host process. Use this ONLY when no predefined tool can "
    "accomplish the task. You write the body of: def execute(context, output). "
    "Host objects are available through `context` and as globals of the same name. "
    "Use output.print() or print() to report results, and `return` a value if useful. "
    "Only modules already loaded by the host can be imported. "
    "If compilation fails, read the error messages and fix your code."
)

ContextSource: TypeAlias = Mapping[str, Any] | Callable[[], Mapping[str, Any]]


class ExecuteCodeInput(BaseModel):
    code: str = Field(
        ...,
        description="Python function body inserted into `def execute(context, output):`. "
        "Print results with print() or output.print(); return a value or None.",
    )
    description: str = Field(
        default=DEFAULT_DESCRIPTION,
        description="Brief description of what this code does (for logging and user transparency).",
    )


class ExecuteCodeTool:
    """Runs model-written fragments in a ``CodeSandbox`` with host context bound."""

    def __init__(self, sandbox: CodeSandbox | None = None, context: ContextSource | None = None) -> None:
        self._sandbox = sandbox or CodeSandbox()
        self._context = context

    def _resolve_context(self) -> Mapping[str, Any]:
        if self._context is None:
            return {}
        if callable(self._context):
            return self._context()
        return self._context

    async def __call__(self, params: ExecuteCodeInput) -> ToolResult:
        if not params.code.strip():
            return ToolResult.fail("Code parameter is empty.")

        description = params.description or DEFAULT_DESCRIPTION
        logger.info("tool.execute_code description={} lines={}", description, params.code.count("\n") + 1)
        run = partial(self._sandbox.compile_and_execute, params.code, self._resolve_context())
        result = await asyncio.get_running_loop().run_in_executor(None, copy_context().run, run)

        if not result.success:
            if result.compilation_errors:
                message = "Compilation failed. Fix the errors and try again:\n" + "\n".join(result.compilation_errors)
                return ToolResult.fail(message, {"failure_type": "compilation", "description": description})
            if result.runtime_error:
                message = "Runtime error:\n" + result.runtime_error
                if result.output:
                    message += "\n\nOutput before error:\n" + result.output
                return ToolResult.fail(message, {"failure_type": "runtime", "description": description})
            return ToolResult.fail(
                "Code execution failed: " + result.output,
                {"failure_type": "unknown", "description": description},
            )

        data: dict[str, Any] = {"output": result.output, "description": description}
        if result.return_value is not None:
            data["return_value"] = str(result.return_value)

        if result.output:
            message = result.output.rstrip()
        elif result.return_value is not None:
            message = f"Code executed successfully. Return value: {result.return_value}"
        else:
            message = "Code executed successfully (no output)."
        return ToolResult.ok(message, data)


def register_execute_code(
    registry: ToolRegistry,
    *,
    context: ContextSource | None = None,
    sandbox: CodeSandbox | None = None,
) -> ExecuteCodeTool:
    tool = ExecuteCodeTool(sandbox=sandbox, context=context)
    registry.register(EXECUTE_CODE_TOOL, EXECUTE_CODE_DESCRIPTION, ExecuteCodeInput, tool)
    return tool
