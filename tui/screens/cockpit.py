"""Bucket cockpit screen — 9 gauges + holdings detail."""

from textual.app import ComposeResult
from textual.containers import Vertical, Horizontal, Grid
from textual.css.query import NoMatches
from textual.screen import Screen
from textual.widgets import Static, Label, Header, Footer, Button

from tui.services.status_reader import (
    BucketStatus,
    find_bucket_status,
    format_shares,
    format_usd,
)


class Gauge(Static):
    """Single metric gauge."""

    def __init__(self, label: str, value: str = "—", gauge_id: str = "") -> None:
        super().__init__(classes="gauge")
        self.gauge_label = label
        self.gauge_value = value
        self._gauge_id = gauge_id

    def compose(self) -> ComposeResult:
        yield Label(self.gauge_label, classes="gauge-label")
        yield Label(self.gauge_value, id=f"val-{self._gauge_id}", classes="gauge-value")


def gauge_values(s: BucketStatus) -> dict:
    """Display strings for every cockpit gauge."""
    owner_stake = "—" if s.owner_bps is None else f"{s.owner_bps / 100:.2f}%"
    return {
        "kind": s.kind,
        "state": s.state_label,
        "tvl": format_usd(s.total_value),
        "price": format_usd(s.token_price),
        "supply": format_shares(s.total_supply),
        "owner": owner_stake + ("" if s.accountable else " (!)"),
        "deposited": format_usd(s.total_deposit_value),
        "withdrawn": format_usd(s.total_withdraw_value),
        "wm": str(s.watermark.get("commit_seq", "—")),
    }


class CockpitScreen(Screen):
    """Bucket cockpit — gauges for one bucket."""

    BINDINGS = [
        ("escape", "go_back", "Back"),
        ("r", "refresh", "Refresh"),
    ]

    def __init__(self, bucket_id: str = "", status_dir: str = "") -> None:
        super().__init__()
        self.bucket_id = bucket_id
        self.status_dir = status_dir
        self._status: BucketStatus | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Vertical():
            yield Static(f"Bucket: {self.bucket_id}", id="cockpit-title")
            with Grid(id="cockpit-grid"):
                yield Gauge("Kind", "—", "kind")
                yield Gauge("State", "—", "state")
                yield Gauge("Total Value", "—", "tvl")
                yield Gauge("Share Price", "—", "price")
                yield Gauge("Total Supply", "—", "supply")
                yield Gauge("Owner Stake", "—", "owner")
                yield Gauge("Deposited", "—", "deposited")
                yield Gauge("Withdrawn", "—", "withdrawn")
                yield Gauge("Watermark Seq", "—", "wm")
            yield Horizontal(
                Button("Back", id="back-btn", variant="default"),
                classes="button-row",
            )
            yield Static("", id="bucket-detail")
        yield Footer()

    def on_mount(self) -> None:
        self._refresh()
        self.set_interval(3.0, self._refresh)

    def _refresh(self) -> None:
        self._status = find_bucket_status(self.status_dir, self.bucket_id)
        self._update_gauges()

    def _update_gauges(self) -> None:
        if not self._status:
            return

        s = self._status
        for gauge_id, value in gauge_values(s).items():
            try:
                self.query_one(f"#val-{gauge_id}", Label).update(value)
            except NoMatches:
                pass

        detail_lines = [f"  {asset:44s} {amount}" for asset, amount in s.holdings.items()]
        detail_text = "Holdings:\n" + "\n".join(detail_lines) if detail_lines else "Holdings: none"
        if s.fees:
            detail_text += "\n\nFees (bps): " + ", ".join(f"{k}={v}" for k, v in s.fees.items())
        if s.last_operation:
            detail_text += f"\nLast operation: {s.last_operation} at {s.updated_ts}"
        if s.pricing_error:
            detail_text += f"\n\n[yellow]PRICING: {s.pricing_error}[/yellow]"
        if s.error:
            detail_text += f"\n\n[red]ERROR: {s.error}[/red]"

        try:
            self.query_one("#bucket-detail", Static).update(detail_text)
        except NoMatches:
            pass

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "back-btn":
            self.action_go_back()

    def action_go_back(self) -> None:
        self.app.pop_screen()

    def action_refresh(self) -> None:
        self._refresh()
