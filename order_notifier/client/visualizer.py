"""
MODULE OVERVIEW:
The Rich Terminal Dashboard for one admin tab.

WHAT IS HAPPENING HERE:
The tab runs in the background; the dashboard re-renders four times a second from
what the tab already records: visible toasts, stream and poll counters, the adaptive
interval and the connection timeline.
"""

from rich.live import Live
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from collections import deque
from datetime import datetime
import asyncio

from order_notifier.client.admin_tab import AdminTab


class Visualizer:
    def __init__(self, tab: AdminTab):
        self.tab = tab
        self.status = "INITIALIZING"
        self.timeline = deque(maxlen=6)

    async def on_status_change(self, status: str):
        self.status = status
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] Stream: {status}")

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline")
        )

        color = "green" if "ACTIVE" in self.status else "yellow" if "WAITING" in self.status else "red"
        role = "leader" if self.tab.stream is not None else "follower"
        layout["header"].update(Panel(
            f"[{color} bold]Tab: {self.tab.tab_id} ({role}) | User: {self.tab.user.username} | Stream: {self.status}[/]",
            style=color,
        ))

        table = Table(title="Notifications", expand=True)
        table.add_column("Time", justify="left", style="cyan", no_wrap=True)
        table.add_column("Type", style="magenta")
        table.add_column("Title", style="green")
        table.add_column("Message")
        table.add_column("Source", style="blue")

        for toast in reversed(self.tab.toasts.visible):
            ts = datetime.fromtimestamp(toast.shown_at).strftime("%H:%M:%S")
            table.add_row(ts, toast.payload.type, toast.payload.title, toast.payload.message, toast.source)

        layout["left"].update(Panel(table, title=self.tab.toasts.badge_text or "Feed"))

        stream_stats = self.tab.stream.stats if self.tab.stream else None
        poll_stats = self.tab.poller.stats
        stats_text = (
            f"Stream events: {stream_stats['events_received'] if stream_stats else '-'}\n"
            f"Stream pings: {stream_stats['pings_received'] if stream_stats else '-'}\n"
            f"Stream reconnects: {stream_stats['reconnect_count'] if stream_stats else '-'}\n"
            f"Poll hits / idle: {poll_stats['events_received']} / {poll_stats['empty_responses']}\n"
            f"Poll interval: {self.tab.scheduler.current_interval:.0f}s (idle {self.tab.scheduler.idle_count})\n"
            f"Reloads: {self.tab.reload_count}"
        )
        layout["stats"].update(Panel(stats_text, title="Connection Stats"))

        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        return layout

    async def run(self, duration_s: float):
        if self.tab.stream is not None:
            self.tab.stream.set_callbacks(self.tab.handle_stream_event, self.on_status_change)

        tab_task = asyncio.create_task(self.tab.run(duration_s))

        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while not tab_task.done():
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
        await tab_task
