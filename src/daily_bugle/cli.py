"""Command-line entry points for the Daily Bugle generator and server."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.logging import RichHandler

from .config import AppConfig, FixedInterval, get_settings, load_config
from .errors import ConfigError, GenerationError
from .generator import generate_all
from .scheduler import Scheduler, describe_policy, format_time, next_run_at

app = typer.Typer(
    help="Generate newspaper sections with Ollama on a schedule and serve them."
)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load_or_exit(path: Path) -> AppConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        rprint(f"[red]Error loading config: {exc}[/red]")
        raise typer.Exit(code=1)


def _print_config(config: AppConfig) -> None:
    policy = config.schedule
    if isinstance(policy, FixedInterval):
        retry = f"Every {policy.interval_minutes:g} minutes (next interval)"
    else:
        retry = f"Every {policy.retry_delay_minutes:g} minutes"

    rprint("\n[bold]========================================[/bold]")
    rprint("[bold]Daily Bugle Configuration[/bold]")
    rprint("[bold]========================================[/bold]\n")
    rprint("[cyan]Ollama Configuration:[/cyan]")
    rprint(f"  Base URL: {config.ollama.base_url}")
    rprint(f"  Model: {config.ollama.model}")
    rprint(f"  Temperature: {config.ollama.temperature}")
    rprint("\n[cyan]Scheduler Configuration:[/cyan]")
    rprint(f"  Schedule: {describe_policy(policy)}")
    rprint(f"  Retry on Failure: {retry}")
    rprint("\n[cyan]System Prompt:[/cyan]")
    rprint(f"  {config.system_prompt or '(none)'}")
    rprint(f"\n[cyan]Sections: {len(config.sections)}[/cyan]")
    for index, section in enumerate(config.sections, start=1):
        rprint(f"  {index}. {section.name} ({section.id}) - {section.reporter}")
    rprint("\n[bold]========================================[/bold]\n")


@app.command("serve")
def serve_command(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Sections config JSON (defaults to CONFIG_PATH or config/sections.json).",
    ),
    public_dir: Optional[Path] = typer.Option(
        None,
        "--public-dir",
        "-p",
        help="Directory to publish into and serve (defaults to PUBLIC_DIR or public/).",
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (defaults to HOST)."),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (defaults to PORT)."),
):
    """
    Serve the public directory and run the generation scheduler.
    """
    import uvicorn

    from .server import create_app

    settings = get_settings()
    configure_logging(settings.log_level)
    config = _load_or_exit(config_path or settings.config_path)
    _print_config(config)

    root = (public_dir or settings.public_dir).resolve()
    scheduler = Scheduler(config, root)
    bind_host = host or settings.host
    bind_port = port or settings.port
    rprint(f"[green]Daily Bugle server running on http://{bind_host}:{bind_port}[/green]")
    uvicorn.run(
        create_app(root, scheduler=scheduler),
        host=bind_host,
        port=bind_port,
        log_config=None,
    )


@app.command("generate")
def generate_command(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Sections config JSON (defaults to CONFIG_PATH or config/sections.json).",
    ),
    public_dir: Optional[Path] = typer.Option(
        None,
        "--public-dir",
        "-p",
        help="Directory to publish into (defaults to PUBLIC_DIR or public/).",
    ),
):
    """
    Run one generation batch immediately, without the scheduler.
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    config = _load_or_exit(config_path or settings.config_path)
    root = (public_dir or settings.public_dir).resolve()
    try:
        index = asyncio.run(generate_all(config, root))
    except (GenerationError, OSError) as exc:
        rprint(f"[red]Generation failed: {exc}[/red]")
        raise typer.Exit(code=1)
    rprint(f"[green]Generated {len(index.items)} articles under {root}[/green]")
    for item in index.items:
        rprint(f"[cyan]{item.name}[/cyan]: {item.url}")


@app.command("show-config")
def show_config_command(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Sections config JSON (defaults to CONFIG_PATH or config/sections.json).",
    ),
):
    """
    Print the loaded configuration.
    """
    config = _load_or_exit(config_path or get_settings().config_path)
    _print_config(config)


@app.command("next-run")
def next_run_command(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Sections config JSON (defaults to CONFIG_PATH or config/sections.json).",
    ),
):
    """
    Print when the configured schedule would next trigger.
    """
    config = _load_or_exit(config_path or get_settings().config_path)
    now = datetime.now().astimezone()
    at = next_run_at(config.schedule, now)
    minutes = round((at - now).total_seconds() / 60)
    rprint(f"Next generation scheduled for: {format_time(at)} (in {minutes} minutes)")


def main():
    app()


if __name__ == "__main__":
    main()
