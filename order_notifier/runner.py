"""
CLI entrypoint for Order Notifier.
"""
import asyncio

import httpx
import typer
from rich.console import Console

from order_notifier.client.admin_tab import AdminTab
from order_notifier.client.visualizer import Visualizer
from order_notifier.server.event_buffer import EventBuffer
from order_notifier.shared.config import settings
from order_notifier.shared.debug_log import archived_log_names, clear_debug_log, delete_all_logs, read_debug_log
from order_notifier.shared.models import ClientConfig, UserContext
from order_notifier.shared.storage import JsonFileStore, MemoryStore

app = typer.Typer(help="Order Notifier CLI Manager")
logs_app = typer.Typer(help="Inspect and clean the debug log")
app.add_typer(logs_app, name="logs")

console = Console()


def _base_url() -> str:
    return f"http://127.0.0.1:{settings.PORT}"


def _identity(user_id: int, login: str, role: str) -> dict[str, str]:
    return {"X-User-Id": str(user_id), "X-User-Login": login, "X-User-Role": role}


@app.command()
def server():
    """Start the FastAPI backend server using Uvicorn."""
    import uvicorn
    typer.echo(f"Starting server on port {settings.PORT}...")
    uvicorn.run(
        "order_notifier.server.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


@app.command()
def tab(
    user_id: int = typer.Option(1, help="Admin user id the host would report"),
    login: str = typer.Option("admin", help="Admin login"),
    role: str = typer.Option("administrator", help="Admin role"),
    screen: str = typer.Option("orders", help="Screen the tab shows: orders, dashboard, ..."),
    duration: float = typer.Option(300.0, help="How long to keep the tab open, in seconds"),
    follower: bool = typer.Option(False, "--follower", help="Do not open a stream; rely on broadcasts and polling"),
    reload: bool = typer.Option(False, "--reload", help="Boot as a hard page reload"),
):
    """Open one admin tab against a running server with the rich dashboard."""
    headers = _identity(user_id, login, role)
    resp = httpx.get(f"{_base_url()}/client-config", headers=headers)
    if resp.status_code != 200:
        typer.echo(f"Server refused the tab: {resp.status_code} {resp.text}")
        raise typer.Exit(1)

    admin_tab = AdminTab(
        _base_url(),
        ClientConfig.model_validate(resp.json()),
        UserContext(user_id=user_id, username=login, role=role, authorized=True),
        cookies=MemoryStore(),
        local_storage=JsonFileStore(settings.DATA_DIR / "tab-local-storage.json"),
        screen=screen,
        navigation_type="reload" if reload else "navigate",
        holds_connection=not follower,
        retry_s=settings.CLIENT_RETRY_S,
        ack_ttl_s=settings.ACK_MARKER_TTL_S,
        ceiling_s=settings.ADAPTIVE_CEILING_S,
        tab_id=f"cli-{user_id}",
    )
    try:
        asyncio.run(Visualizer(admin_tab).run(duration))
    except KeyboardInterrupt:
        pass


@app.command()
def dispatch(
    order_id: int = typer.Argument(..., help="Order id to create"),
    name: str = typer.Option("Demo Demic", help="Billing name"),
    status: str = typer.Option("processing", help="Order status"),
):
    """Simulate the host creating an order."""
    resp = httpx.post(f"{_base_url()}/orders", json={"id": order_id, "billing_name": name, "status": status})
    typer.echo(resp.json())


@app.command("reset-buffer")
def reset_buffer():
    """Empty the event buffer file."""
    ok = EventBuffer(settings.buffer_path, lock_timeout_s=settings.BUFFER_LOCK_TIMEOUT_S).reset()
    typer.echo("Buffer reset." if ok else "Buffer reset failed, see the log.")
    if not ok:
        raise typer.Exit(1)


@logs_app.command("show")
def logs_show():
    """Print the current debug log."""
    console.print(read_debug_log(settings) or "[dim]Debug log is empty.[/dim]")


@logs_app.command("clear")
def logs_clear():
    """Truncate the current debug log."""
    typer.echo("Debug log cleared." if clear_debug_log(settings) else "No debug log to clear.")


@logs_app.command("archives")
def logs_archives():
    """List rotated debug log archives."""
    names = archived_log_names(settings)
    for name in names:
        typer.echo(name)
    if not names:
        typer.echo("No archives.")


@logs_app.command("purge")
def logs_purge():
    """Delete the debug log and every archive."""
    typer.echo(f"Removed {delete_all_logs(settings)} file(s).")


if __name__ == "__main__":
    app()
