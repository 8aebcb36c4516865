import asyncio
import json
import os
import socket
import sys
import threading
import webbrowser
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from milhouse.config import Config
from milhouse.constants import TURN_SANDBOX_MODE
from milhouse.logging import configure_logging, uvicorn_log_config

console = Console()

HEADER = "[bold yellow]milhouse[/bold yellow] - plan/build loop for the Codex CLI"


def _is_port_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, port))
        except OSError:
            return False
        return True


def choose_port(host: str, preferred: int) -> int:
    """The preferred port if free, otherwise any free port the OS hands out."""
    if preferred and _is_port_free(host, preferred):
        return preferred
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def _overrides(**values) -> dict:
    return {k: v for k, v in values.items() if v is not None}


@click.group(invoke_without_command=True)
@click.pass_context
def main(ctx):
    """milhouse - plan/build loop for the Codex CLI"""
    ctx.ensure_object(dict)
    if ctx.invoked_subcommand is None:
        console.print(HEADER + "\n")
        console.print("Run [cyan]milhouse ui[/cyan] to open the dashboard.")
        console.print("\nUse [cyan]milhouse --help[/cyan] for all commands.")


def _load_config(**overrides) -> Config:
    try:
        return Config(**_overrides(**overrides))
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)


@main.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("-p", "--port", type=click.IntRange(0, 65535), default=None, help="Port to bind to")
@click.option("-w", "--workdir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Default workdir for runs")
@click.option("--state-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Where sessions and run state live")
@click.option("--open/--no-open", "open_browser", default=True, help="Open the dashboard in a browser")
def ui(host: str | None, port: int | None, workdir: Path | None, state_dir: Path | None, open_browser: bool):
    """Start the local dashboard server."""
    config = _load_config(host=host, port=port, default_workdir=workdir, state_dir=state_dir)

    import uvicorn

    from milhouse.server.app import create_app

    bound_port = choose_port(config.host, config.port)
    url = f"http://{config.host}:{bound_port}"

    console.print(HEADER + "\n")
    console.print(f"Dashboard running at [cyan]{url}[/cyan]")
    console.print(f"[dim]workdir: {config.default_workdir}  state: {config.state_dir}[/dim]")
    console.print("[dim]Press Ctrl+C to stop[/dim]")
    console.print()

    if open_browser:
        threading.Timer(1.0, webbrowser.open, args=(url,)).start()

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=bound_port,
        log_config=uvicorn_log_config(colors=sys.stderr.isatty()),
    )


@main.command()
@click.option("-g", "--goal", required=True, help="What the agent should build")
@click.option("-n", "--max-iterations", type=click.IntRange(min=0), default=0, help="Build turn budget, 0 for unbounded")
@click.option("-w", "--workdir", default=None, help="Agent working directory (default: current)")
@click.option("--create/--no-create", default=True, help="Create the workdir if it does not exist")
@click.option("--state-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Where sessions and run state live")
def run(goal: str, max_iterations: int, workdir: str | None, create: bool, state_dir: Path | None):
    """Run one session in the foreground (headless, no dashboard)."""
    config = _load_config(state_dir=state_dir)
    configure_logging(config.log_level)
    status = asyncio.run(_run_headless(config, goal, max_iterations, workdir, create))
    if status != "succeeded":
        raise SystemExit(1)


async def _run_headless(config: Config, goal: str, max_iterations: int, workdir: str | None, create: bool) -> str:
    from milhouse.server.runtime import Runtime
    from milhouse.supervisor import AlreadyRunningError, EngineLaunchError, SessionStoreError, WorkdirNotFoundError

    runtime = Runtime(config)
    runtime.connect()
    sub = runtime.broadcaster.subscribe()

    async def printer():
        async for line in sub:
            style = "red" if line.startswith("[stderr]") else None
            console.print(line, style=style, markup=False, highlight=False)

    printing = asyncio.create_task(printer())
    try:
        try:
            session = await runtime.supervisor.start(goal, max_iterations, workdir, create)
        except (AlreadyRunningError, WorkdirNotFoundError, EngineLaunchError, SessionStoreError) as e:
            console.print(f"[red]Error:[/red] {e}")
            return "failed"
        await runtime.supervisor.wait()
        return session.status.value
    finally:
        await runtime.close()
        await printing


def _event_summary(event: dict) -> str:
    kind = event.get("type", "unknown")
    item = event.get("item") or {}
    match kind:
        case "item.completed" if item.get("type") == "agent_message":
            return f"[agent] {item.get('text') or ''}"
        case "item.completed":
            return f"[item.completed] {item.get('type') or 'unknown'}"
        case "turn.completed":
            return "[turn.completed] usage recorded"
    return f"[{kind}]"


@main.command()
@click.argument("prompt", nargs=-1)
@click.option("--prompt-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None, help="Read the prompt from a file")
@click.option("-t", "--thread", "thread_id", default=None, help="Resume an existing Codex thread")
@click.option("-w", "--workdir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Agent working directory (default: current)")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.option("--stream", is_flag=True, help="Stream Codex events to stderr")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Also write the JSON result to a file")
def turn(
    prompt: tuple[str, ...],
    prompt_file: Path | None,
    thread_id: str | None,
    workdir: Path | None,
    as_json: bool,
    stream: bool,
    log_file: Path | None,
):
    """Run a single Codex turn and print its final response."""
    from milhouse.engine.executor import CodexExecutor, TurnExecutionError

    text = prompt_file.read_text(encoding="utf-8") if prompt_file else " ".join(prompt)
    if not text.strip():
        raise click.UsageError("Prompt is required (inline or via --prompt-file).")

    config = _load_config()
    configure_logging(config.log_level)
    executor = CodexExecutor(command=config.codex_command, model=config.codex_model, api_key=config.codex_api_key)
    on_event = (lambda event: click.echo(_event_summary(event), err=True)) if stream else None

    try:
        result = asyncio.run(
            executor.execute(
                text,
                Path(os.path.abspath(workdir or Path.cwd())),
                thread_id,
                sandbox_mode=TURN_SANDBOX_MODE,
                on_event=on_event,
            )
        )
    except TurnExecutionError as e:
        click.echo(f"Codex run failed: {e}", err=True)
        raise SystemExit(1)

    output = json.dumps(result.to_dict(), indent=2)
    if log_file:
        log_file.write_text(output, encoding="utf-8")
    if as_json:
        click.echo(output)
        return
    click.echo(result.final_response)
    if result.thread_id:
        click.echo(f"thread: {result.thread_id}", err=True)


@main.command()
@click.option("--state-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Where sessions and run state live")
@click.option("-l", "--limit", type=click.IntRange(min=1), default=20, help="How many recent sessions to show")
def sessions(state_dir: Path | None, limit: int):
    """List recorded sessions, newest last."""
    from milhouse.sessions.store import SessionRegistry

    config = _load_config(state_dir=state_dir)
    records = SessionRegistry(config.sessions_path).list_all()[-limit:]
    if not records:
        console.print("[dim]No sessions yet.[/dim]")
        return

    table = Table("id", "status", "started", "iterations", "workdir", "goal")
    colors = {"running": "cyan", "succeeded": "green", "failed": "red", "stopped": "yellow"}
    for r in records:
        table.add_row(
            r.id[:8],
            f"[{colors[r.status.value]}]{r.status.value}[/]",
            r.started_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            str(r.max_iterations or "∞"),
            str(r.workdir),
            r.goal if len(r.goal) <= 60 else r.goal[:57] + "...",
        )
    console.print(table)


if __name__ == "__main__":
    main()
