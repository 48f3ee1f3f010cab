"""Status reader — reads bucket status from filesystem.

ISOLATION: This module does NOT import bucket_vault, bucket_store, or any
other vault module. It only reads the status.json files the state store
writes after every committed operation.
"""

import glob
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

USD_DECIMALS = 8
SHARE_DECIMALS = 18


@dataclass
class BucketStatus:
    """Bucket status read from filesystem."""
    bucket_id: str
    kind: str = "UNKNOWN"
    owner: str = ""
    paused: bool = False
    swap_paused: bool = False
    accountable: bool = True
    total_supply: int = 0
    owner_shares: int = 0
    owner_bps: Optional[int] = None
    holder_count: int = 0
    total_value: Optional[int] = None
    token_price: Optional[int] = None
    pricing_error: Optional[str] = None
    total_deposit_value: int = 0
    total_withdraw_value: int = 0
    holdings: Dict[str, int] = field(default_factory=dict)
    dex_count: int = 0
    fees: Dict[str, int] = field(default_factory=dict)
    high_water_mark: int = 0
    last_operation: Optional[str] = None
    updated_ts: str = ""
    watermark: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def is_paused(self) -> bool:
        return self.paused

    @property
    def is_accountable(self) -> bool:
        return self.accountable

    @property
    def state_label(self) -> str:
        if self.error:
            return "ERROR"
        if self.paused:
            return "PAUSED"
        if self.swap_paused:
            return "SWAP_PAUSED"
        return "ACTIVE"


def format_usd(value: Optional[int]) -> str:
    """8-decimal integer USD -> '$1,234.56'."""
    if value is None:
        return "—"
    return f"${value / 10 ** USD_DECIMALS:,.2f}"


def format_shares(value: int) -> str:
    return f"{value / 10 ** SHARE_DECIMALS:,.4f}"


def read_bucket_status(status_path: str) -> Optional[BucketStatus]:
    """Read a single bucket status from a JSON file.

    Expected format matches bucket_vault.Bucket.status() plus the store
    watermark.
    """
    try:
        with open(status_path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, FileNotFoundError, PermissionError) as e:
        return BucketStatus(bucket_id="unknown", error=str(e))

    return BucketStatus(
        bucket_id=data.get("bucket_id", "unknown"),
        kind=data.get("kind", "UNKNOWN"),
        owner=data.get("owner", ""),
        paused=bool(data.get("paused", False)),
        swap_paused=bool(data.get("swap_paused", False)),
        accountable=bool(data.get("accountable", True)),
        total_supply=data.get("total_supply", 0),
        owner_shares=data.get("owner_shares", 0),
        owner_bps=data.get("owner_bps"),
        holder_count=data.get("holder_count", 0),
        total_value=data.get("total_value"),
        token_price=data.get("token_price"),
        pricing_error=data.get("pricing_error"),
        total_deposit_value=data.get("total_deposit_value", 0),
        total_withdraw_value=data.get("total_withdraw_value", 0),
        holdings=data.get("holdings", {}),
        dex_count=data.get("dex_count", 0),
        fees=data.get("fees", {}),
        high_water_mark=data.get("high_water_mark", 0),
        last_operation=data.get("last_operation"),
        updated_ts=data.get("updated_ts", ""),
        watermark=data.get("watermark", {}),
    )


def scan_bucket_statuses(status_dir: str) -> List[BucketStatus]:
    """Scan directory for bucket status files.

    Looks for: {status_dir}/**/status.json
    Returns list of BucketStatus, possibly empty.
    """
    if not os.path.isdir(status_dir):
        return []

    pattern = os.path.join(status_dir, "**", "status.json")
    files = glob.glob(pattern, recursive=True)

    statuses = []
    for path in sorted(files):
        status = read_bucket_status(path)
        if status is not None:
            statuses.append(status)

    return statuses


def find_bucket_status(status_dir: str, bucket_id: str) -> BucketStatus:
    """Status of one bucket: <status_dir>/<bucket_id>/status.json, else scan."""
    status_path = os.path.join(status_dir, bucket_id, "status.json")
    if os.path.exists(status_path):
        return read_bucket_status(status_path)
    for s in scan_bucket_statuses(status_dir):
        if s.bucket_id == bucket_id:
            return s
    return BucketStatus(bucket_id=bucket_id, error="Status file not found")
