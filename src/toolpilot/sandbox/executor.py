"""Compile and run model-written Python fragments inside the host process.

A fragment is the body of ``execute(context, output)``. It may only import
modules the process had already loaded when the sandbox first ran, and it
is executed in a throwaway module that is never registered in
``sys.modules``.
"""

from __future__ import annotations

import asyncio
import builtins
import io
import sys
import textwrap
import threading
import traceback
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from types import ModuleType
from typing import Any

from loguru import logger

SNIPPET_FILENAME = "<snippet>"
ENTRY_POINT = "execute"
TEMPLATE_PREFIX = f"def {ENTRY_POINT}(context, output):\n"
TEMPLATE_LINE_OFFSET = TEMPLATE_PREFIX.count("\n")
BODY_INDENT = "    "

_reference_modules: frozenset[str] | None = None
_reference_lock = threading.Lock()


def reference_modules() -> frozenset[str]:
    """Names of the modules snippets may import, captured once per process."""
    global _reference_modules
    if _reference_modules is None:
        with _reference_lock:
            if _reference_modules is None:
                _reference_modules = frozenset(sys.modules)
                logger.debug("sandbox.reference_set modules={}", len(_reference_modules))
    return _reference_modules


class SnippetOutput(io.StringIO):
    """Text sink handed to snippets as ``output``."""

    def print(self, *values: object, sep: str = " ", end: str = "\n") -> None:
        self.write(sep.join(str(value) for value in values) + end)

    def append_line(self, text: object = "") -> None:
        self.write(f"{text}\n")


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    output: str = ""
    return_value: Any = None
    compilation_errors: tuple[str, ...] = ()
    runtime_error: str | None = None


def wrap_source(fragment: str) -> str:
    body = textwrap.dedent(fragment).strip("\n")
    if not body.strip():
        body = "pass"
    return TEMPLATE_PREFIX + textwrap.indent(body, BODY_INDENT) + "\n"


def snippet_line(template_line: int) -> int:
    adjusted = template_line - TEMPLATE_LINE_OFFSET
    return adjusted if adjusted >= 1 else template_line


def _restricted_import(
    name: str,
    globals: Mapping[str, Any] | None = None,
    locals: Mapping[str, Any] | None = None,
    fromlist: tuple[str, ...] | list[str] = (),
    level: int = 0,
) -> ModuleType:
    if level != 0:
        raise ImportError("Relative imports are not available in snippets")
    loaded = reference_modules()
    if name not in loaded:
        raise ImportError(f"Module '{name}' is not loaded in this process and cannot be imported")
    module = sys.modules.get(name)
    for item in fromlist or ():
        if item == "*" or hasattr(module, item):
            continue
        submodule = f"{name}.{item}"
        if submodule not in loaded:
            raise ImportError(f"Module '{submodule}' is not loaded in this process and cannot be imported")
    return builtins.__import__(name, globals, locals, fromlist, level)


def _exit(code: object = None) -> None:
    raise SystemExit(code)


def _snippet_builtins() -> dict[str, Any]:
    namespace = dict(vars(builtins))
    namespace["__import__"] = _restricted_import
    namespace["exit"] = namespace["quit"] = _exit
    return namespace


def _innermost(exc: BaseException) -> BaseException:
    seen = {id(exc)}
    while True:
        inner = exc.__cause__ or exc.__context__
        if inner is None or id(inner) in seen:
            return exc
        seen.add(id(inner))
        exc = inner


@contextmanager
def isolated_module() -> Iterator[ModuleType]:
    module = ModuleType(f"snippet_{uuid.uuid4().hex[:8]}")
    try:
        yield module
    finally:
        module.__dict__.clear()


class CodeSandbox:
    """Compiles fragments into ``execute(context, output)`` and runs them."""

    def compile_and_execute(self, source: str, context: Mapping[str, Any] | None = None) -> ExecutionResult:
        reference_modules()
        full_source = wrap_source(source)
        body_lines = full_source.splitlines()[TEMPLATE_LINE_OFFSET:]

        try:
            code = compile(full_source, SNIPPET_FILENAME, "exec")
        except SyntaxError as exc:
            line = snippet_line(exc.lineno or 0)
            errors = (f"Line {line}: {exc.msg}",)
            logger.info("sandbox.compile.failed errors={}", len(errors))
            return ExecutionResult(success=False, output="\n".join(errors), compilation_errors=errors)

        bindings = dict(context or {})
        output = SnippetOutput()
        with isolated_module() as module:
            namespace = module.__dict__
            namespace.update(bindings)
            namespace["__builtins__"] = _snippet_builtins()
            namespace["print"] = output.print
            try:
                exec(code, namespace)
                return_value = namespace[ENTRY_POINT](bindings, output)
            except asyncio.CancelledError:
                raise
            except BaseException as exc:
                error = self._describe_runtime_error(exc, body_lines)
                logger.info("sandbox.run.failed error={}", error.splitlines()[0])
                return ExecutionResult(success=False, output=output.getvalue(), runtime_error=error)

        logger.info("sandbox.run.ok output_chars={}", len(output.getvalue()))
        return ExecutionResult(success=True, output=output.getvalue(), return_value=return_value)

    @staticmethod
    def _describe_runtime_error(exc: BaseException, body_lines: list[str]) -> str:
        inner = _innermost(exc)
        lines = [f"{type(inner).__name__}: {inner}"]
        frames = [
            frame for frame in traceback.extract_tb(inner.__traceback__) if frame.filename == SNIPPET_FILENAME
        ]
        if frames:
            lines.append("Traceback (snippet frames):")
            for frame in frames:
                line = snippet_line(frame.lineno or 0)
                lines.append(f"  Line {line}, in {frame.name}")
                if 1 <= line <= len(body_lines):
                    lines.append(f"    {body_lines[line - 1].strip()}")
        return "\n".join(lines)
