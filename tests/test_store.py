"""Tests for bucket_store.AtomicStateStore.

Tests:
  ST-1: commit_seq contiguity and hash chain
  ST-2: store authority (sentinels) and never-overwrite
  ST-3: manifest immutability
  ST-4: crash recovery (watermark rebuild, staged cleanup, tamper / gap, failed watermark write)
  ST-5: replay, load_latest, status, concurrent commits
"""

import json
import os
import sys
import threading
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from bucket_store import (
    AtomicStateStore,
    ChainIntegrityError,
    CommitError,
    ManifestImmutabilityError,
    StateRecord,
    StoreAuthorityError,
    StoreInitError,
    StoreManifest,
    atomic_write,
    compute_record_hash,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _record(i: int, operation: str = "deposit", **overrides) -> StateRecord:
    fields = dict(
        format_version=1,
        timestamp=1_700_000_000 + i,
        bucket_id="b-1",
        operation=operation,
        payload={"amount": i},
        state={"schema_version": 1, "shares": {"total_supply": i, "balances": {}}},
    )
    fields.update(overrides)
    return StateRecord(**fields)


def _manifest(config_hash: str = "cfg", bucket_id: str = "b-1") -> StoreManifest:
    return StoreManifest(
        bucket_id=bucket_id,
        kind="ACTIVE",
        config_hash=config_hash,
        schema_version=1,
        created_ts="2026-01-01T00:00:00Z",
    )


def _filled(d, n: int) -> AtomicStateStore:
    store = AtomicStateStore(str(d), "b-1")
    for i in range(n):
        store.append(_record(i))
    return store


def _read(d, seq: int) -> dict:
    with open(os.path.join(str(d), "committed", f"{seq}.record")) as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# ST-1
# ---------------------------------------------------------------------------

def test_commit_seq_contiguous_and_chained(tmp_path):
    store = _filled(tmp_path, 5)
    assert store.watermark.commit_seq == 4

    prev = ""
    for seq in range(5):
        rd = _read(tmp_path, seq)
        assert rd["commit_seq"] == seq
        assert rd["prev_record_hash"] == prev
        assert rd["record_hash"] == compute_record_hash(dict(rd))
        prev = rd["record_hash"]

    ok, err = store.verify_chain_integrity()
    assert ok, err


def test_empty_store_watermark(tmp_path):
    store = AtomicStateStore(str(tmp_path), "b-1")
    assert store.watermark.commit_seq == -1
    assert store.load_latest() is None
    assert store.verify_chain_integrity() == (True, None)


# ---------------------------------------------------------------------------
# ST-2
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("field,value", [
    ("commit_seq", 3),
    ("prev_record_hash", "abc"),
    ("record_hash", "abc"),
])
def test_caller_cannot_set_store_fields(tmp_path, field, value):
    store = AtomicStateStore(str(tmp_path), "b-1")
    with pytest.raises(StoreAuthorityError):
        store.stage_record(_record(0, **{field: value}))


def test_committed_record_never_overwritten(tmp_path):
    store = _filled(tmp_path, 1)
    key = store.stage_record(_record(1))
    # Forge a file at the next slot
    with open(os.path.join(str(tmp_path), "committed", "1.record"), "w") as f:
        f.write("{}")
    with pytest.raises(CommitError):
        store.commit_record(key)


def test_tampered_staged_file_rejected(tmp_path):
    store = AtomicStateStore(str(tmp_path), "b-1")
    key = store.stage_record(_record(0))
    with open(key.staged_path, "ab") as f:
        f.write(b" ")
    with pytest.raises(CommitError):
        store.commit_record(key)


# ---------------------------------------------------------------------------
# ST-3
# ---------------------------------------------------------------------------

def test_manifest_written_once_and_immutable(tmp_path):
    store = AtomicStateStore(str(tmp_path), "b-1")
    store.bind_manifest(_manifest("cfg-a"))
    store.bind_manifest(_manifest("cfg-a"))
    assert store.read_manifest()["config_hash"] == "cfg-a"

    reopened = AtomicStateStore(str(tmp_path), "b-1")
    with pytest.raises(ManifestImmutabilityError):
        reopened.bind_manifest(_manifest("cfg-b"))
    with pytest.raises(ManifestImmutabilityError):
        reopened.bind_manifest(_manifest("cfg-a", bucket_id="b-2"))


# ---------------------------------------------------------------------------
# ST-4
# ---------------------------------------------------------------------------

def test_recovery_rebuilds_deleted_watermark(tmp_path):
    store = _filled(tmp_path, 3)
    real_hash = store.watermark.record_hash
    os.remove(os.path.join(str(tmp_path), "watermark.json"))

    store2 = AtomicStateStore(str(tmp_path), "b-1")
    assert store2.watermark.commit_seq == 2
    assert store2.watermark.record_hash == real_hash


def test_recovery_corrects_wrong_watermark(tmp_path):
    store = _filled(tmp_path, 3)
    real_hash = store.watermark.record_hash
    with open(os.path.join(str(tmp_path), "watermark.json"), "w") as f:
        json.dump({"commit_seq": 99, "record_hash": "wrong"}, f)

    store2 = AtomicStateStore(str(tmp_path), "b-1")
    assert store2.watermark.commit_seq == 2
    assert store2.watermark.record_hash == real_hash


def test_recovery_survives_corrupt_watermark(tmp_path):
    _filled(tmp_path, 2)
    with open(os.path.join(str(tmp_path), "watermark.json"), "w") as f:
        f.write("not json")
    assert AtomicStateStore(str(tmp_path), "b-1").watermark.commit_seq == 1


def test_recovery_discards_staged_records(tmp_path):
    store = _filled(tmp_path, 1)
    k1 = store.stage_record(_record(1))
    k2 = store.stage_record(_record(2))
    assert os.path.exists(k1.staged_path) and os.path.exists(k2.staged_path)

    store2 = AtomicStateStore(str(tmp_path), "b-1")
    assert os.listdir(os.path.join(str(tmp_path), "staged")) == []
    assert store2.watermark.commit_seq == 0


def test_tampered_record_detected_and_chain_truncated(tmp_path):
    store = _filled(tmp_path, 4)
    path = os.path.join(str(tmp_path), "committed", "2.record")
    rd = _read(tmp_path, 2)
    rd["payload"]["amount"] = 999
    with open(path, "w") as f:
        json.dump(rd, f)

    ok, err = store.verify_chain_integrity()
    assert not ok
    assert "commit_seq=2" in err

    store2 = AtomicStateStore(str(tmp_path), "b-1")
    assert store2.watermark.commit_seq == 1


def test_gap_detected(tmp_path):
    store = _filled(tmp_path, 4)
    os.remove(os.path.join(str(tmp_path), "committed", "2.record"))
    ok, err = store.verify_chain_integrity()
    assert not ok
    assert "gap" in err.lower()
    with pytest.raises(ChainIntegrityError):
        store.replay(0, 3)


def test_failed_watermark_write_discards_record(tmp_path):
    store = _filled(tmp_path, 2)

    def failing_write(path, data, **kw):
        if path.endswith("watermark.json"):
            raise OSError("No space left on device")
        return atomic_write(path, data, **kw)

    with patch("bucket_store.atomic_write", side_effect=failing_write):
        with pytest.raises(CommitError, match="watermark"):
            store.append(_record(2))

    assert store.watermark.commit_seq == 1
    assert not os.path.exists(os.path.join(str(tmp_path), "committed", "2.record"))
    assert AtomicStateStore(str(tmp_path), "b-1").watermark.commit_seq == 1

    assert store.append(_record(2)) == 2
    ok, err = store.verify_chain_integrity()
    assert ok, err


def test_same_volume_check(tmp_path):
    original_replace = os.replace

    def failing_replace(src, dst):
        if "_vol_check_" in str(src):
            raise OSError("Cross-device link")
        return original_replace(src, dst)

    with patch("bucket_store.os.replace", side_effect=failing_replace):
        with pytest.raises(StoreInitError, match="same filesystem"):
            AtomicStateStore(str(tmp_path), "b-1")


# ---------------------------------------------------------------------------
# ST-5
# ---------------------------------------------------------------------------

def test_replay_and_load_latest(tmp_path):
    store = _filled(tmp_path, 3)
    records = store.replay(0, 2)
    assert [r.commit_seq for r in records] == [0, 1, 2]
    assert [r.payload["amount"] for r in records] == [0, 1, 2]

    latest = store.load_latest()
    assert latest.commit_seq == 2
    assert latest.state["shares"]["total_supply"] == 2
    assert latest.prev_record_hash == records[1].record_hash


def test_write_status_includes_watermark(tmp_path):
    store = _filled(tmp_path, 2)
    store.write_status({"bucket_id": "b-1", "paused": False})
    with open(store.status_path) as f:
        data = json.load(f)
    assert data["bucket_id"] == "b-1"
    assert data["watermark"]["commit_seq"] == 1


def test_concurrent_commits(tmp_path):
    store = AtomicStateStore(str(tmp_path), "b-1")
    keys = [store.stage_record(_record(i)) for i in range(10)]
    errors = []

    def commit_range(start, end):
        try:
            for i in range(start, end):
                store.commit_record(keys[i])
        except Exception as e:
            errors.append(e)

    t1 = threading.Thread(target=commit_range, args=(0, 5))
    t2 = threading.Thread(target=commit_range, args=(5, 10))
    t1.start()
    t2.start()
    t1.join()
    t2.join()

    assert errors == []
    assert store.watermark.commit_seq == 9
    ok, err = store.verify_chain_integrity()
    assert ok, err
