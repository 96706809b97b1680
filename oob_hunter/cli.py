from __future__ import annotations
import asyncio
from pathlib import Path
import anyio
import typer
from rich.console import Console
from .config import ClientOptions, Settings
from .errors import OOBError
from .interactions import Interaction, InteractionLog
from .interactsh_client import InteractshClient
from .logs import configure_logging
from .session import load_session_file, save_session_file

app = typer.Typer(no_args_is_help=True)
console = Console()


def _printer(results: InteractionLog):
    def handle(interaction: Interaction) -> None:
        results(interaction)
        row = results.rows()[-1]
        console.print(
            f"[cyan]#{row['req']}[/] {row['dateTime']} [bold]{row['type']}[/] "
            f"{row['payload']} [dim]from[/] {row['source']}"
        )
    return handle


async def run_listener(
    settings: Settings,
    interval: int,
    urls: int = 1,
    session_path: Path | None = None,
    keep: bool = False,
    max_cycles: int = 0,
    client: InteractshClient | None = None,
) -> InteractionLog:
    """Register (or resume), print bait URLs and stream interactions until stopped."""
    info = load_session_file(session_path) if session_path else None
    opts = ClientOptions.from_settings(settings, session_info=info)
    opts.keep_alive_interval = interval * 1000
    results = InteractionLog()
    client = client or InteractshClient(settings=settings)
    try:
        await client.initialize(opts, _printer(results))
    except OOBError as e:
        console.print(f"[bold red]Registration failed:[/] {e}")
        await client.aclose()
        raise typer.Exit(1)

    console.rule("[bold cyan]OOB listener")
    console.print(f"Server: [bold]{client.server_url}[/] | Resumed: [bold]{info is not None}[/] | Poll every [bold]{interval}s[/]")
    for _ in range(urls):
        console.print(f"[green]➜[/] {client.generate_url()}")
    try:
        if max_cycles:
            while client.cycles < max_cycles:
                await anyio.sleep(0.05)
        else:
            await anyio.sleep_forever()
    except asyncio.CancelledError:
        console.print("[yellow]Interrupted, shutting down…")
    finally:
        if keep and session_path:
            await client.aclose()
            save_session_file(session_path, client.save_session())
            console.print(f"Session kept: [bold]{session_path}[/]")
        else:
            await client.stop()
            console.print("[green]✔[/] Deregistered")
    console.print(f"Interactions received: [bold]{len(results)}[/]")
    return results


async def run_deregister(settings: Settings, session_path: Path, client: InteractshClient | None = None) -> None:
    info = load_session_file(session_path)
    if info is None:
        console.print(f"[bold red]No session at {session_path}")
        raise typer.Exit(1)
    client = client or InteractshClient(settings=settings)
    await client.initialize(ClientOptions.from_settings(settings, session_info=info, keep_alive=False))
    await client.close()
    console.print(f"[green]✔[/] Deregistered [bold]{info.correlation_id}[/] from {info.server_url}")


@app.command()
def listen(
    server: str = typer.Option(None, help="Collaborator server URL"),
    token: str = typer.Option(None, help="Authorization token"),
    interval: int = typer.Option(30, min=5, max=3600, help="Poll interval in seconds"),
    urls: int = typer.Option(1, min=0, help="Number of bait URLs to print"),
    session: Path = typer.Option(None, help="Resume from / save to this session file"),
    keep: bool = typer.Option(False, help="Keep the session registered on exit and save it to --session"),
    max_cycles: int = typer.Option(0, min=0, help="Stop after N poll cycles (0 = until Ctrl-C)"),
    json_logs: bool = typer.Option(False, help="Emit JSON log lines"),
):
    s = Settings()
    if server:
        s.SERVER_URL = server
    if token:
        s.TOKEN = token
    if session is None and s.SESSION_FILE:
        session = Path(s.SESSION_FILE)
    configure_logging(json=json_logs)
    try:
        asyncio.run(run_listener(s, interval, urls, session, keep, max_cycles))
    except KeyboardInterrupt:
        pass


@app.command()
def deregister(
    session: Path = typer.Option(..., exists=True, readable=True, help="Saved session file"),
    json_logs: bool = typer.Option(False, help="Emit JSON log lines"),
):
    configure_logging(json=json_logs)
    try:
        asyncio.run(run_deregister(Settings(), session))
    except OOBError as e:
        console.print(f"[bold red]{e}")
        raise typer.Exit(1)
