"""In-process code sandbox."""

from .executor import CodeSandbox, ExecutionResult, SnippetOutput, reference_modules

__all__ = ["CodeSandbox", "ExecutionResult", "SnippetOutput", "reference_modules"]
