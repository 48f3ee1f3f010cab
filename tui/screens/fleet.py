"""Fleet overview screen — lists all buckets with live status."""

from textual.app import ComposeResult
from textual.containers import Vertical, Horizontal
from textual.screen import Screen
from textual.widgets import Static, Label, Header, Footer, ListView, ListItem
from textual.reactive import reactive

from tui.services.status_reader import BucketStatus, format_usd, scan_bucket_statuses


class BucketCard(ListItem):
    """Single bucket status card."""

    def __init__(self, status: BucketStatus) -> None:
        super().__init__()
        self.bucket_status = status

    def compose(self) -> ComposeResult:
        s = self.bucket_status
        state_class = f"status-{s.state_label.lower()}"

        with Horizontal(classes="bucket-card"):
            yield Label(f" [{s.kind:7s}] ", classes="bucket-kind")
            yield Label(f"{s.bucket_id[:16]}", classes="bucket-id")
            yield Label(f"  {s.state_label:11s}", classes=state_class)
            yield Label(f"  tvl={format_usd(s.total_value)}", classes="bucket-tvl")
            yield Label(f"  holders={s.holder_count}", classes="bucket-holders")
            if not s.accountable:
                yield Label("  OWNER < 5%", classes="status-error")
            if s.error:
                yield Label(f"  {s.error[:30]}", classes="status-error")


class FleetScreen(Screen):
    """Fleet overview — all buckets."""

    BINDINGS = [
        ("r", "refresh", "Refresh"),
        ("q", "quit_app", "Quit"),
        ("escape", "quit_app", "Quit"),
    ]

    status_dir: reactive[str] = reactive("")

    def __init__(self, status_dir: str = "") -> None:
        super().__init__()
        self.status_dir = status_dir

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Vertical(id="fleet-container")
        yield Footer()

    def on_mount(self) -> None:
        self._refresh_buckets()
        self.set_interval(5.0, self._refresh_buckets)

    def _refresh_buckets(self) -> None:
        container = self.query_one("#fleet-container", Vertical)
        container.remove_children()

        statuses = scan_bucket_statuses(self.status_dir)

        if not statuses:
            container.mount(
                Static(
                    "[dim]No buckets found[/dim]\n\n"
                    "Buckets appear here once they persist state.\n"
                    "Status directory: " + (self.status_dir or "(not configured)"),
                    classes="empty-state",
                )
            )
            return

        n_paused = sum(1 for s in statuses if s.is_paused)
        n_unaccountable = sum(1 for s in statuses if not s.is_accountable)
        summary = (
            f"Fleet: {len(statuses)} bucket(s) | "
            f"[yellow]{n_paused} paused[/yellow] | "
            f"[red]{n_unaccountable} not accountable[/red]"
        )
        container.mount(Static(summary))
        container.mount(Static(""))

        container.mount(ListView(*[BucketCard(status) for status in statuses]))

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        if isinstance(event.item, BucketCard):
            self.app.push_screen(
                "cockpit",
                bucket_id=event.item.bucket_status.bucket_id,
            )

    def action_refresh(self) -> None:
        self._refresh_buckets()

    def action_quit_app(self) -> None:
        self.app.exit()
