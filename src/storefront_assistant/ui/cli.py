"""Command-line front-end for the storefront assistant.

Examples:
    storefront-assistant chat "Do you ship to Canada?"
    storefront-assistant repl
    storefront-assistant providers
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from storefront_assistant.orchestrator import ConversationOrchestrator, TurnResult, create_orchestrator

app = typer.Typer(help="Storefront Assistant - multi-provider shopping chat")
console = Console()

_REPL_HELP = "/new  /status  /order  /cancel  /provider <id>  /quit"


def _print_answer(result: TurnResult) -> None:
    console.print("\n[bold blue]Assistant:[/bold blue]")
    console.print(Markdown(result.answer))
    note = f"session {result.session_id} · {result.provider_id}"
    if result.degraded:
        kind = result.error_kind.value if result.error_kind else "no provider"
        note += f" · degraded ({kind})"
    console.print(f"[dim]{note}[/dim]\n")


@app.command(name="chat")
def chat_command(
    message: str = typer.Argument(..., help="Message to send"),
    session_id: Optional[str] = typer.Option(None, "--session-id", help="Session to continue"),
) -> None:
    """Send one message and print the answer."""
    result = asyncio.run(_single_turn(message, session_id))
    _print_answer(result)


async def _single_turn(message: str, session_id: str | None) -> TurnResult:
    async with create_orchestrator() as orchestrator:
        return await orchestrator.send_turn(message, session_id)


@app.command(name="repl")
def repl_command() -> None:
    """Interactive conversation on a single session."""
    asyncio.run(_repl())


async def _handle_command(
    orchestrator: ConversationOrchestrator, command: str, session_id: str | None
) -> tuple[bool, str | None]:
    """Run a slash command. Returns (keep_running, session_id)."""
    name, _, argument = command.partition(" ")
    if name == "/quit":
        return False, session_id
    if name == "/new":
        if session_id:
            orchestrator.clear_session(session_id)
        console.print("[dim]Started a new session.[/dim]")
        return True, None
    if name == "/status":
        summary = orchestrator.get_session_summary(session_id) if session_id else None
        console.print(summary or "[dim]No session yet.[/dim]")
        console.print(f"[dim]Provider: {orchestrator.registry.current_provider_name}[/dim]")
    elif name == "/order":
        status = orchestrator.start_order_flow(session_id)
        session_id = status["session_id"]
        console.print(f"[dim]Order flow started at step {status['step']}.[/dim]")
    elif name == "/cancel":
        cancelled = session_id is not None and orchestrator.cancel_order_flow(session_id)
        console.print("[dim]Order flow cancelled.[/dim]" if cancelled else "[dim]No active order flow.[/dim]")
    elif name == "/provider" and argument:
        switched = await orchestrator.registry.switch_provider(argument.strip())
        console.print(
            f"[dim]Switched to {orchestrator.registry.current_provider_name}.[/dim]"
            if switched
            else f"[yellow]Provider {argument.strip()} is not available.[/yellow]"
        )
    else:
        console.print(f"[dim]{_REPL_HELP}[/dim]")
    return True, session_id


async def _repl() -> None:
    async with create_orchestrator() as orchestrator:
        console.print(
            f"[bold]Storefront Assistant[/bold] using {orchestrator.registry.current_provider_name}"
        )
        console.print(f"[dim]{_REPL_HELP}[/dim]\n")
        session_id: str | None = None
        while True:
            try:
                text = (await asyncio.to_thread(console.input, "[bold green]You:[/bold green] ")).strip()
            except (EOFError, KeyboardInterrupt):
                break
            if not text:
                continue
            if text.startswith("/"):
                keep_running, session_id = await _handle_command(orchestrator, text, session_id)
                if not keep_running:
                    break
                continue
            result = await orchestrator.send_turn(text, session_id)
            session_id = result.session_id
            _print_answer(result)


@app.command(name="providers")
def providers_command() -> None:
    """Show provider health and the active provider."""
    status = asyncio.run(_provider_status())

    table = Table(title="LLM providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Status")
    table.add_column("Model")
    table.add_column("Details", style="dim")
    for provider_id, health in status["providers"].items():
        details = dict(health["details"])
        model = str(details.pop("model", ""))
        colour = {"healthy": "green", "unhealthy": "red"}.get(health["status"], "yellow")
        marker = " *" if provider_id == status["current_provider"] else ""
        table.add_row(
            provider_id + marker,
            f"[{colour}]{health['status']}[/{colour}]",
            model,
            ", ".join(f"{k}={v}" for k, v in details.items() if k != "provider"),
        )
    console.print(table)
    console.print(f"Active: [bold]{status['current_provider_name']}[/bold]")


async def _provider_status() -> dict:
    orchestrator = create_orchestrator()
    await orchestrator.registry.initialize()
    return await orchestrator.registry.get_provider_status()


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
