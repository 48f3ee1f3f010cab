"""Bucket Vault Operations Console — Textual TUI entry point.

Launch: python3 -m tui.app [--status-dir PATH]

Reads bucket status from filesystem only. Does NOT import bucket_vault or
any other vault runtime module.
"""

import argparse
import logging
import os

from textual.app import App

from tui.screens.fleet import FleetScreen
from tui.screens.cockpit import CockpitScreen

# Default status directory
DEFAULT_STATUS_DIR = os.path.join(
    os.path.dirname(__file__), "..", "state", "buckets"
)


class OpsConsole(App):
    """Bucket Vault Operations Console."""

    TITLE = "Bucket Vault Ops Console"
    CSS = """
    #fleet-container { padding: 1 2; }
    .bucket-card { height: 1; }
    .bucket-id { width: 18; }
    .status-active { color: green; }
    .status-paused, .status-swap_paused { color: yellow; }
    .status-error { color: red; }
    .empty-state { color: $text-muted; padding: 2; }
    #cockpit-title { padding: 1 2; text-style: bold; }
    #cockpit-grid { grid-size: 3; grid-gutter: 1 2; height: auto; padding: 0 2; }
    .gauge { border: round $primary; height: 5; padding: 0 1; }
    .gauge-label { color: $text-muted; }
    .gauge-value { text-style: bold; }
    .button-row { height: auto; padding: 1 2; }
    #bucket-detail { padding: 0 2; }
    """

    SCREENS = {
        "fleet": FleetScreen,
    }

    def __init__(self, status_dir: str = "") -> None:
        super().__init__()
        self.status_dir = status_dir or DEFAULT_STATUS_DIR

    def on_mount(self) -> None:
        fleet = FleetScreen(status_dir=self.status_dir)
        self.push_screen(fleet)

    def push_screen(self, screen, **kwargs):
        """Override to inject status_dir into screens."""
        if isinstance(screen, str) and screen == "cockpit":
            screen = CockpitScreen(
                bucket_id=kwargs.get("bucket_id", ""),
                status_dir=self.status_dir,
            )
        return super().push_screen(screen)


def main():
    parser = argparse.ArgumentParser(description="Bucket Vault Operations Console")
    parser.add_argument(
        "--status-dir",
        default=DEFAULT_STATUS_DIR,
        help="State directory holding <bucket_id>/status.json files",
    )
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING))
    app = OpsConsole(status_dir=args.status_dir)
    app.run()


if __name__ == "__main__":
    main()
