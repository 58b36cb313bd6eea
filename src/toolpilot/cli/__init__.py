"""Terminal front-end for toolpilot."""

from .app import app, build_orchestrator
from .render import Renderer

__all__ = ["Renderer", "app", "build_orchestrator"]
