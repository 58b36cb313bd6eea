"""Typer entry points: interactive chat, one-shot run and provider listing."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from loguru import logger

from toolpilot.cancellation import CancellationToken
from toolpilot.cli.render import Renderer
from toolpilot.config import Settings, get_settings
from toolpilot.core.context_window import ContextWindow
from toolpilot.core.orchestrator import CANCEL_REASON, LoopHooks, Orchestrator
from toolpilot.core.prompt import DEFAULT_SYSTEM_PROMPT
from toolpilot.errors import ConfigurationError, OperationCancelledError
from toolpilot.llm.factory import create_adapter
from toolpilot.logging_utils import configure_logging
from toolpilot.session.tracker import SessionTracker
from toolpilot.tools.execute_code import register_execute_code
from toolpilot.tools.registry import ToolRegistry

EXIT_COMMANDS = frozenset({"quit", "exit", "q"})

app = typer.Typer(
    name="toolpilot",
    help="Natural-language agent that drives a host through tools and generated code.",
    add_completion=False,
    rich_markup_mode="rich",
)


def _load_settings(provider: str | None, model: str | None, max_tokens: int | None) -> Settings:
    return get_settings(provider=provider, model=model, max_tokens=max_tokens)


def build_orchestrator(settings: Settings) -> Orchestrator:
    """Wire adapter, tool registry and tracker from settings."""
    api_key = settings.require_api_key()
    adapter = create_adapter(
        settings.resolved_provider,
        api_key,
        settings.resolved_model,
        settings.max_tokens,
        timeout=settings.request_timeout_seconds,
    )
    registry = ToolRegistry()
    register_execute_code(registry, context={"workspace": Path.cwd(), "settings": settings})
    return Orchestrator(
        adapter,
        registry,
        SessionTracker(tool_history_limit=settings.tool_history_limit),
        system_prompt=settings.system_prompt or DEFAULT_SYSTEM_PROMPT,
        context_window=ContextWindow(settings.max_input_tokens, settings.chars_per_token),
        rate_limit_delays=settings.rate_limit_delays,
    )


def _hooks(renderer: Renderer) -> LoopHooks:
    return LoopHooks(
        on_text_delta=renderer.text_delta,
        on_status=renderer.status,
        on_tool_started=renderer.tool_started,
        on_tool_finished=renderer.tool_finished,
    )


@contextmanager
def _cancel_on_sigint(token: CancellationToken) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, CANCEL_REASON)
    except (NotImplementedError, RuntimeError):
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _run_turn(orchestrator: Orchestrator, renderer: Renderer, message: str) -> bool:
    token = CancellationToken()
    with _cancel_on_sigint(token):
        try:
            result = await orchestrator.handle_message(message, cancellation=token, hooks=_hooks(renderer))
        except OperationCancelledError:
            renderer.cancelled()
            return False
    renderer.turn_result(result)
    return result.success


async def _chat_loop(orchestrator: Orchestrator, renderer: Renderer) -> None:
    async with orchestrator:
        while True:
            try:
                user_input = (await renderer.get_user_input()).strip()
            except (KeyboardInterrupt, EOFError):
                renderer.info("\nGoodbye!")
                return
            if not user_input:
                continue
            command = user_input.casefold()
            if command in EXIT_COMMANDS:
                renderer.info("Goodbye!")
                return
            if command == "reset":
                orchestrator.reset()
                orchestrator.tracker.reset()
                renderer.info("[dim]Session reset[/dim]")
                continue
            if command == "debug":
                renderer.toggle_debug()
                continue
            await _run_turn(orchestrator, renderer, user_input)


async def _run_once(orchestrator: Orchestrator, renderer: Renderer, message: str) -> bool:
    async with orchestrator:
        return await _run_turn(orchestrator, renderer, message)


def _prepare(
    provider: str | None, model: str | None, max_tokens: int | None, renderer: Renderer
) -> tuple[Settings, Orchestrator]:
    settings = _load_settings(provider, model, max_tokens)
    configure_logging(profile="chat", level=settings.log_level)
    try:
        orchestrator = build_orchestrator(settings)
    except ConfigurationError as exc:
        renderer.error(str(exc))
        raise typer.Exit(1) from exc
    logger.info("cli.start provider={} model={}", settings.resolved_provider, settings.resolved_model)
    return settings, orchestrator


@app.command()
def chat(
    provider: str | None = typer.Option(None, help="anthropic, openai or google"),
    model: str | None = typer.Option(None, help="Model name; defaults to the provider's default"),
    max_tokens: int | None = typer.Option(None, help="Maximum output tokens per response"),
) -> None:
    """Start an interactive chat session."""
    renderer = Renderer()
    settings, orchestrator = _prepare(provider, model, max_tokens, renderer)
    tools = [definition.name for definition in orchestrator.dispatcher.definitions()]
    renderer.welcome(settings.resolved_provider, settings.resolved_model, tools)
    asyncio.run(_chat_loop(orchestrator, renderer))


@app.command()
def run(
    message: str = typer.Argument(..., help="Message to send to the agent"),
    provider: str | None = typer.Option(None, help="anthropic, openai or google"),
    model: str | None = typer.Option(None, help="Model name; defaults to the provider's default"),
    max_tokens: int | None = typer.Option(None, help="Maximum output tokens per response"),
) -> None:
    """Send one message, print the reply and exit."""
    renderer = Renderer()
    _, orchestrator = _prepare(provider, model, max_tokens, renderer)
    if not asyncio.run(_run_once(orchestrator, renderer, message)):
        raise typer.Exit(1)


@app.command()
def providers() -> None:
    """List supported providers with their default models."""
    Renderer().providers()
