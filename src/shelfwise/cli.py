"""CLI interface for the Shelfwise server."""

from __future__ import annotations

from collections import deque
from pathlib import Path

import httpx
import typer
from pydantic import SecretStr
from rich.console import Console

from shelfwise.config import ensure_dirs, get_base_dir, load_config, save_config

app = typer.Typer(
    name="shelfwise",
    help="Work through a board game collection and decide what stays on the shelf.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


# ---------------------------------------------------------------------------
# HTTP helper
# ---------------------------------------------------------------------------


def fetch_status() -> dict:
    """Query ``/api/status`` on the locally running server.

    Raises a user-friendly error (via ``typer.Exit``) when nothing is
    listening on the configured port.
    """
    cfg = load_config()
    url = f"http://{cfg.server.host}:{cfg.server.port}/api/status"
    try:
        response = httpx.get(url, timeout=10.0)
        response.raise_for_status()
        return response.json()
    except httpx.ConnectError:
        console.print(
            "[red]Could not connect to the server.[/red]  Is it running?  Try [bold]shelfwise serve[/bold].",
        )
        raise typer.Exit(1) from None
    except httpx.HTTPStatusError as exc:
        console.print(f"[red]Server returned an error:[/red] {exc.response.status_code}")
        raise typer.Exit(1) from exc


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration string."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


def _print_dataset(title: str, info: dict) -> None:
    running = info.get("in_progress", False)
    state = "[blue]syncing[/blue]" if running else "[green]idle[/green]"
    console.print(f"\n  [bold cyan]{title}[/bold cyan]  {state}")
    console.print(f"    cached:   {info.get('cached', 0)}")
    console.print(f"    progress: {info.get('fetched', 0)}/{info.get('total', 0)}")
    console.print(f"    method:   {info.get('method', 'none')}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("", "--host", help="Interface to bind (default: server.host)"),
    port: int = typer.Option(0, "--port", "-p", help="Port to listen on (default: server.port)"),
) -> None:
    """Run the Shelfwise API server in the foreground."""
    import uvicorn

    from shelfwise.logging import setup_logging
    from shelfwise.server.api import AppState, create_app

    ensure_dirs()
    cfg = load_config()
    setup_logging(cfg.server.log_level, cfg.log_dir, console=True)

    if not cfg.has_api_token():
        console.print("[yellow]No catalog API token configured; expansion sync may fall back to name matching.[/yellow]")

    state = AppState(cfg)
    uvicorn.run(
        create_app(state),
        host=host or cfg.server.host,
        port=port or cfg.server.port,
        log_level=cfg.server.log_level,
    )


@app.command()
def status() -> None:
    """Show server uptime, catalog login and dataset sync progress."""
    data = fetch_status()

    console.print()
    uptime_secs = data.get("uptime_seconds")
    if uptime_secs is not None:
        console.print(f"  [bold]Uptime:[/bold]    {_format_duration(uptime_secs)}")
    logged_in = data.get("logged_in", False)
    console.print(f"  [bold]Logged in:[/bold] {'[green]yes[/green]' if logged_in else '[dim]no[/dim]'}")

    _print_dataset("Expansions", data.get("expansions", {}))
    _print_dataset("Dimensions", data.get("dimensions", {}))
    console.print()


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    sync: bool = typer.Option(False, "--sync", help="Show sync.log (JSON) instead of server.log"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output (like tail -f)"),
) -> None:
    """Show recent server log output (supports --sync for JSON sync log, --follow for live tail)."""
    filename = "sync.log" if sync else "server.log"
    log_file = get_base_dir() / "logs" / filename
    if not log_file.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {log_file}")
        raise typer.Exit(1)

    if follow:
        _follow_log(log_file, tail_lines)
        return

    with open(log_file, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        _print_log_line(line)


def _log_line_style(line: str) -> str | None:
    """Return a Rich style string based on the log level found in *line*.

    Matches structlog formats only:
    - ConsoleRenderer: ``[error    ]``
    - JSONRenderer: ``"level": "error"``
    """
    lower = line.lower()
    if "[error" in lower or "[critical" in lower or '"level": "error"' in lower or '"level": "critical"' in lower:
        return "red"
    if "[warning" in lower or '"level": "warning"' in lower:
        return "yellow"
    if "[debug" in lower or '"level": "debug"' in lower:
        return "dim"
    return None


def _print_log_line(line: str) -> None:
    line = line.rstrip("\n")
    if not line:
        return
    console.print(line, style=_log_line_style(line), highlight=False, markup=False)


def _follow_log(log_file: Path, initial_lines: int = 10) -> None:
    """Follow a log file, printing new lines as they appear."""
    import time

    with open(log_file, encoding="utf-8") as fh:
        last = deque(fh, maxlen=initial_lines)
    for line in last:
        _print_log_line(line)

    with open(log_file, encoding="utf-8") as fh:
        fh.seek(0, 2)
        try:
            while True:
                line = fh.readline()
                if line:
                    _print_log_line(line)
                else:
                    time.sleep(0.5)
        except KeyboardInterrupt:
            pass


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(secret: SecretStr) -> str:
    """Return '***' if the secret is non-empty, else '(not set)'."""
    return "[bold]***[/bold]" if secret.get_secret_value() else "[dim](not set)[/dim]"


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration (secrets are masked)."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")

    console.print("[bold cyan]\\[server][/bold cyan]")
    console.print(f"  host      = {cfg.server.host}")
    console.print(f"  port      = {cfg.server.port}")
    console.print(f"  log_level = {cfg.server.log_level}")

    console.print("\n[bold cyan]\\[catalog][/bold cyan]")
    console.print(f"  base_url        = {cfg.catalog.base_url}")
    console.print(f"  api_token       = {_mask(cfg.catalog.api_token)}")
    console.print(f"  username        = {cfg.catalog.username or '[dim](not set)[/dim]'}")
    console.print(f"  request_timeout = {cfg.catalog.request_timeout}")
    console.print(f"  batch_size      = {cfg.catalog.batch_size}")
    console.print(f"  retry_backoff   = {cfg.catalog.retry_backoff}")

    console.print("\n[bold cyan]\\[sync][/bold cyan]")
    console.print(f"  expansion_delay_seconds = {cfg.sync.expansion_delay_seconds}")
    console.print(f"  dimension_delay_seconds = {cfg.sync.dimension_delay_seconds}")
    console.print(f"  default_volume          = {cfg.sync.default_volume}")
    console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. catalog.username"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. shelfwise config set server.port 9000)."""

    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. catalog.username).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = {
        "server": cfg.server,
        "catalog": cfg.catalog,
        "sync": cfg.sync,
    }

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    field_type = fields[field_name].annotation

    try:
        coerced = _coerce_value(value, field_type)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model)(**section_data)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)

    display_val = "***" if isinstance(coerced, SecretStr) else coerced
    console.print(f"[green]Set[/green] {key} = {display_val}")


def _coerce_value(raw: str, field_type: type) -> object:
    """Coerce a string value to the expected field type."""
    import typing

    origin = typing.get_origin(field_type)
    args = typing.get_args(field_type)

    if field_type is SecretStr:
        return SecretStr(raw)

    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    if field_type is float:
        return float(raw)

    if field_type is str:
        return raw

    # Comma-separated lists, e.g. "2,4,8"
    if origin is list:
        item_type = args[0] if args else str
        return [_coerce_value(part.strip(), item_type) for part in raw.split(",") if part.strip()]

    if origin is typing.Literal:
        if raw not in args:
            msg = f"'{raw}' is not a valid option (choose from: {', '.join(str(a) for a in args)})"
            raise ValueError(msg)
        return raw

    return raw
