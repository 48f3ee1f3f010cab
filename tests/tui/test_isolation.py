"""TUI isolation — no vault imports, reads only status files, boots cleanly."""

import importlib
import inspect
import json
import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

TUI_MODULES = [
    "tui.services.status_reader",
    "tui.screens.fleet",
    "tui.screens.cockpit",
    "tui.app",
]


@pytest.mark.parametrize("mod_name", TUI_MODULES)
def test_tui_does_not_import_vault_modules(mod_name):
    """TUI must read status files instead of importing bucket_* modules."""
    mod = importlib.import_module(mod_name)
    source_file = inspect.getfile(mod)
    with open(source_file) as f:
        source = f.read()

    for line in source.splitlines():
        stripped = line.strip()
        if stripped.startswith("import ") or stripped.startswith("from "):
            assert "bucket_" not in stripped, (
                f"{mod_name} imports a vault module: {stripped}"
            )


def test_status_reader_reads_status_files(tmp_path):
    """Status reader correctly parses bucket status JSON."""
    from tui.services.status_reader import read_bucket_status, scan_bucket_statuses

    bucket_dir = tmp_path / "eth-usd"
    bucket_dir.mkdir()
    status_data = {
        "bucket_id": "eth-usd",
        "kind": "PASSIVE",
        "owner": "0xowner",
        "paused": False,
        "swap_paused": True,
        "accountable": True,
        "total_supply": 4000 * 10 ** 18,
        "owner_shares": 2000 * 10 ** 18,
        "owner_bps": 5000,
        "holder_count": 2,
        "total_value": 4000 * 10 ** 8,
        "token_price": 10 ** 8,
        "holdings": {"0xweth": 10 ** 18},
        "watermark": {"commit_seq": 5, "record_hash": "ab"},
    }
    status_file = bucket_dir / "status.json"
    status_file.write_text(json.dumps(status_data))

    status = read_bucket_status(str(status_file))
    assert status.bucket_id == "eth-usd"
    assert status.kind == "PASSIVE"
    assert status.holder_count == 2
    assert status.state_label == "SWAP_PAUSED"
    assert status.is_accountable
    assert not status.is_paused

    statuses = scan_bucket_statuses(str(tmp_path))
    assert len(statuses) == 1
    assert statuses[0].bucket_id == "eth-usd"


def test_corrupt_status_file_reports_error(tmp_path):
    from tui.services.status_reader import read_bucket_status

    path = tmp_path / "status.json"
    path.write_text("{not json")
    status = read_bucket_status(str(path))
    assert status.error
    assert status.state_label == "ERROR"


def test_status_reader_empty_dir(tmp_path):
    """Scan returns empty list when no status files exist."""
    from tui.services.status_reader import scan_bucket_statuses

    assert scan_bucket_statuses(str(tmp_path)) == []
    assert scan_bucket_statuses(str(tmp_path / "nonexistent")) == []


def test_find_bucket_status_missing(tmp_path):
    from tui.services.status_reader import find_bucket_status

    status = find_bucket_status(str(tmp_path), "ghost")
    assert status.bucket_id == "ghost"
    assert status.error == "Status file not found"


def test_format_helpers():
    from tui.services.status_reader import format_shares, format_usd

    assert format_usd(None) == "—"
    assert format_usd(123456 * 10 ** 6) == "$1,234.56"
    assert format_shares(15 * 10 ** 17) == "1.5000"


def test_cockpit_gauge_values():
    from tui.screens.cockpit import gauge_values
    from tui.services.status_reader import BucketStatus

    s = BucketStatus(
        bucket_id="b",
        kind="ACTIVE",
        total_supply=10 ** 18,
        owner_bps=420,
        accountable=False,
        total_value=2 * 10 ** 8,
        watermark={"commit_seq": 3},
    )
    values = gauge_values(s)
    assert values["state"] == "ACTIVE"
    assert values["tvl"] == "$2.00"
    assert values["owner"] == "4.20% (!)"
    assert values["wm"] == "3"


def test_vault_status_is_readable_by_tui(tmp_path):
    """status.json written by a bucket parses into a BucketStatus."""
    from bucket_custody import TokenLedger
    from bucket_oracle import StaticValuationOracle
    from bucket_types import NATIVE_ASSET
    from bucket_vault import ActiveBucket, BucketConfig
    from tui.services.status_reader import scan_bucket_statuses

    ledger = TokenLedger()
    oracle = StaticValuationOracle()
    oracle.whitelist_token(NATIVE_ASSET, 2000 * 10 ** 8)
    ledger.mint(NATIVE_ASSET, "0xowner", 10 ** 18)
    bucket = ActiveBucket(
        BucketConfig(
            bucket_id="alpha",
            kind="ACTIVE",
            owner="0xowner",
            vault_address="0xvault",
            platform_treasury="0xtreasury",
            state_dir=str(tmp_path),
        ),
        ledger=ledger,
        oracle=oracle,
    )
    bucket.deposit("0xowner", NATIVE_ASSET, 10 ** 18)

    statuses = scan_bucket_statuses(str(tmp_path))
    assert len(statuses) == 1
    s = statuses[0]
    assert s.bucket_id == "alpha"
    assert s.total_value == 2000 * 10 ** 8
    assert s.token_price == 10 ** 8
    assert s.last_operation == "deposit"
    assert s.watermark["commit_seq"] == 0


def test_tui_boots_without_status_files():
    """OpsConsole can be instantiated without any bucket status files."""
    from tui.app import OpsConsole

    app = OpsConsole(status_dir="/tmp/nonexistent_tui_test_dir")
    assert app.status_dir == "/tmp/nonexistent_tui_test_dir"
    assert app.TITLE == "Bucket Vault Ops Console"
