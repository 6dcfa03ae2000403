"""CLI interface for OpsPilot."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from opspilot import __version__

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="opspilot")
def cli():
    """OpsPilot - tool-calling operations assistant."""
    pass


@cli.command()
@click.option("--config", "-c", "config_path", default="config.yaml", help="Config file path")
def init(config_path: str):
    """Generate default config.yaml."""
    from opspilot.config import generate_default_config

    if Path(config_path).exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            console.print("[yellow]Cancelled.[/]")
            return

    generate_default_config(config_path)

    console.print(f"[green]Created {config_path}[/]")
    console.print("Edit the file and set your provider API key.")


@cli.command()
@click.option("--config", "-c", "config_path", default="config.yaml", help="Config file path")
def chat(config_path: str):
    """Interactive chat with the agent in this terminal."""
    from opspilot.config import load_config
    from opspilot.core.agent import ToolEvent, ToolEventPhase, TurnState
    from opspilot.factory import create_agent
    from opspilot.utils import setup_logging

    cfg = load_config(config_path)
    setup_logging(cfg.logging.level, cfg.logging.format)

    async def show_event(event: ToolEvent) -> None:
        if event.phase == ToolEventPhase.START:
            console.print(f" [dim cyan]⚙[/] [bold]{event.tool_name}[/]")
        elif event.phase == ToolEventPhase.RESULT:
            console.print(f" [dim green]✓ {event.tool_name}[/]")
        elif event.phase == ToolEventPhase.ERROR:
            console.print(f" [dim red]✗ {event.tool_name} failed[/]")
        elif event.phase == ToolEventPhase.RETRY:
            console.print(f" [dim yellow]↻ retrying {event.tool_name}[/]")
        elif event.phase in (ToolEventPhase.LOOP_WARNING, ToolEventPhase.LOOP_BLOCKED):
            console.print(f" [yellow]⚠ {event.meta}[/]")

    agent = create_agent(cfg, on_event=show_event)

    console.print(Panel.fit(
        f"[bold green]{cfg.agent.name} Interactive Chat[/]\n"
        f"Provider: {cfg.provider.type.value}\n"
        f"Model: {cfg.provider.model}\n"
        "Type 'exit' or 'quit' to end session"
    ))

    async def chat_loop():
        history: list[dict[str, str]] = []

        while True:
            user_input = await asyncio.get_running_loop().run_in_executor(
                None, console.input, "[bold blue]You>[/] "
            )

            if user_input.lower() in ("exit", "quit", "q"):
                console.print("[yellow]Goodbye![/]")
                break

            if not user_input.strip():
                continue

            with console.status("[dim]Thinking...[/]", spinner="dots"):
                outcome = await agent.run_turn(user_input, history=history)

            if outcome.state == TurnState.CONFIRM_REQUIRED:
                console.print(Panel(outcome.content, title="[bold yellow]Confirm[/]", border_style="yellow"))
                approved = await asyncio.get_running_loop().run_in_executor(
                    None, click.confirm, "Run this tool?"
                )
                if approved:
                    outcome = await agent.confirm(outcome.turn_id)
                else:
                    outcome = await agent.cancel(outcome.turn_id)

            style = "red" if outcome.state == TurnState.ERROR else "green"
            console.print(Panel(
                Markdown(outcome.content),
                title=f"[bold {style}]{cfg.agent.name}[/]",
                border_style=style,
            ))

            history.append({"role": "user", "content": user_input})
            history.append({"role": "assistant", "content": outcome.content})

    try:
        asyncio.run(chat_loop())
    except (KeyboardInterrupt, EOFError):
        console.print("\n[yellow]Goodbye![/]")


@cli.group()
def skills():
    """Manage skills."""
    pass


@skills.command("list")
@click.option("--config", "-c", "config_path", default="config.yaml", help="Config file path")
def list_skills(config_path: str):
    """List tool skills and skill documents."""
    from opspilot.config import load_config
    from opspilot.factory import create_catalog, create_registry, create_state_store

    cfg = load_config(config_path)
    store = create_state_store(cfg)
    registry = create_registry(cfg, state_store=store)

    table = Table(title="Skills")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Tools")
    table.add_column("Type")
    table.add_column("Status")

    for skill in registry.all_skills():
        tools = ", ".join(
            f"{t.name}{' ⚠️' if t.dangerous else ''}" for t in skill.tools
        )
        table.add_row(
            skill.id,
            f"{skill.icon} {skill.name}",
            tools,
            "builtin" if skill.builtin else "custom",
            "[green]Enabled[/]" if skill.enabled else "[red]Disabled[/]",
        )

    console.print(table)

    documents = create_catalog(cfg, state_store=store).load_all()
    if documents:
        doc_table = Table(title="Skill Documents")
        doc_table.add_column("Name")
        doc_table.add_column("Source")
        doc_table.add_column("Description")
        doc_table.add_column("Status")
        for doc in documents:
            doc_table.add_row(
                f"{doc.metadata.emoji or '📦'} {doc.name}",
                doc.source.value,
                doc.description,
                "[green]Enabled[/]" if doc.enabled else "[red]Disabled[/]",
            )
        console.print(doc_table)


def _toggle_skill(config_path: str, skill_id: str, enabled: bool) -> None:
    from opspilot.config import load_config
    from opspilot.factory import create_catalog, create_registry, create_state_store

    cfg = load_config(config_path)
    store = create_state_store(cfg)
    registry = create_registry(cfg, state_store=store)

    # Tool skills are addressed by id, skill documents by name
    try:
        found = registry.set_enabled(skill_id, enabled)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        sys.exit(1)
    if not found:
        found = create_catalog(cfg, state_store=store).set_enabled(skill_id, enabled)

    if not found:
        console.print(f"[red]Unknown skill: {skill_id}[/]")
        sys.exit(1)

    if not cfg.skills.state_file:
        console.print("[yellow]No skills.state_file configured; the change will not persist.[/]")

    console.print(f"[green]{skill_id} {'enabled' if enabled else 'disabled'}[/]")


@skills.command("enable")
@click.argument("skill_id")
@click.option("--config", "-c", "config_path", default="config.yaml", help="Config file path")
def enable_skill(skill_id: str, config_path: str):
    """Enable a skill."""
    _toggle_skill(config_path, skill_id, True)


@skills.command("disable")
@click.argument("skill_id")
@click.option("--config", "-c", "config_path", default="config.yaml", help="Config file path")
def disable_skill(skill_id: str, config_path: str):
    """Disable a skill."""
    _toggle_skill(config_path, skill_id, False)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def scan(file: str):
    """Scan a custom skill script; exits with 1 on critical findings."""
    from opspilot.security import scan_script

    summary = scan_script(Path(file).read_text(encoding="utf-8"))

    if not summary.findings:
        console.print("[green]No findings.[/]")
        return

    colors = {"critical": "red", "warn": "yellow", "info": "cyan"}
    table = Table(title=f"Scan results: {file}")
    table.add_column("Line", justify="right")
    table.add_column("Severity")
    table.add_column("Rule")
    table.add_column("Message")
    table.add_column("Evidence")

    for finding in summary.findings:
        color = colors[finding.severity.value]
        table.add_row(
            str(finding.line),
            f"[{color}]{finding.severity.value}[/]",
            finding.rule_id,
            finding.message,
            finding.evidence,
        )

    console.print(table)
    console.print(
        f"critical: {summary.critical}  warn: {summary.warn}  info: {summary.info}"
    )

    if summary.has_critical:
        sys.exit(1)


if __name__ == "__main__":
    cli()
