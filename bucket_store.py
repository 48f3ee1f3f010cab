"""
Bucket Vault — Atomic State Store

Durable, crash-consistent persistence of one bucket's state.  Every committed
operation produces one StateRecord carrying the full schema-versioned state
snapshot; records are hash-chained by commit_seq.

Directory layout (per bucket):
    <store_dir>/
        manifest.json     (bucket id + config hash, written once)
        staged/           (pending records, wiped at startup)
        committed/        (immutable, <commit_seq>.record)
        watermark.json    (rebuilt from committed/ on open)
        status.json       (latest summary for the status console)

Rules:
    - committed/ is the source of truth; watermark.json is rebuilt from it
    - a committed record is never overwritten
    - staged files never survive recovery
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import platform
import threading
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

_log = logging.getLogger(__name__)

SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class StoreInitError(Exception):
    """Raised when the state store cannot be initialised."""


class StoreAuthorityError(Exception):
    """A record arrived with commit_seq or hash fields already filled in."""


class CommitError(Exception):
    """Raised when commit_record() fails."""


class ManifestImmutabilityError(Exception):
    """Raised on an attempt to rebind a store to a different configuration."""


class ChainIntegrityError(Exception):
    """Raised when the record chain is broken."""


class SchemaVersionError(Exception):
    """Raised when a stored state snapshot has an unsupported schema_version."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StateRecord:
    """One committed operation and the state it produced."""
    format_version: int
    timestamp: int                        # unix seconds
    bucket_id: str
    operation: str                        # e.g. "deposit", "redeem", "pause"
    payload: Dict[str, Any]               # Operation arguments / results (ints, strs)
    state: Dict[str, Any]                 # Full state snapshot (SCHEMA_VERSION)

    # STORE-AUTHORITATIVE: caller must pass sentinels (-1, "", "")
    commit_seq: int = -1
    prev_record_hash: str = ""
    record_hash: str = ""


@dataclass(frozen=True)
class StagingKey:
    """Produced by stage_record(); required by commit_record()."""
    content_hash: str
    staged_path: str
    uuid: str


@dataclass(frozen=True)
class StoreManifest:
    """Written once per store."""
    bucket_id: str
    kind: str
    config_hash: str
    schema_version: int
    created_ts: str


# ---------------------------------------------------------------------------
# Canonical hashing
# ---------------------------------------------------------------------------

def _canonical_bytes(d: dict) -> bytes:
    return json.dumps(d, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_record_hash(record_dict: dict) -> str:
    """SHA256 of the canonical record JSON with record_hash forced to ""."""
    record_dict["record_hash"] = ""
    return hashlib.sha256(_canonical_bytes(record_dict)).hexdigest()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _check_sentinels(record: StateRecord) -> None:
    for field_name, sentinel in (
        ("commit_seq", -1),
        ("prev_record_hash", ""),
        ("record_hash", ""),
    ):
        if getattr(record, field_name) != sentinel:
            raise StoreAuthorityError(
                f"{field_name} is assigned by the store, not the caller"
            )


def _fsync_directory(dir_path: str) -> None:
    """fsync a directory to make a rename durable (POSIX only)."""
    if platform.system() == "Windows":
        return
    fd = os.open(dir_path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write(target_path: str, data: bytes, *, fsync_parent: bool = False) -> None:
    """
    1. Write to a temp file in the target's directory.
    2. fsync the temp file.
    3. os.replace(temp, target).
    4. Optionally fsync the parent directory.
    """
    parent = os.path.dirname(target_path) or "."
    tmp_path = os.path.join(parent, f"_tmp_{uuid.uuid4().hex}")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        os.write(fd, data)
        os.fsync(fd)
    finally:
        os.close(fd)
    os.replace(tmp_path, target_path)
    if fsync_parent:
        _fsync_directory(parent)


def _dict_to_record(d: dict) -> StateRecord:
    return StateRecord(**{k: v for k, v in d.items() if k in StateRecord.__dataclass_fields__})


# ---------------------------------------------------------------------------
# Watermark
# ---------------------------------------------------------------------------

@dataclass
class _Watermark:
    commit_seq: int          # -1 means empty store
    record_hash: str         # "" if empty

    def to_dict(self) -> dict:
        return {"commit_seq": self.commit_seq, "record_hash": self.record_hash}

    @classmethod
    def from_dict(cls, d: dict) -> _Watermark:
        return cls(commit_seq=d["commit_seq"], record_hash=d["record_hash"])

    @classmethod
    def empty(cls) -> _Watermark:
        return cls(commit_seq=-1, record_hash="")


# ---------------------------------------------------------------------------
# AtomicStateStore
# ---------------------------------------------------------------------------

class AtomicStateStore:
    """Stage → commit store of hash-chained StateRecords."""

    def __init__(self, store_dir: str, bucket_id: str) -> None:
        self._store_dir = store_dir
        self._bucket_id = bucket_id
        self._chain_lock = threading.Lock()

        self._staged_dir = os.path.join(store_dir, "staged")
        self._committed_dir = os.path.join(store_dir, "committed")
        self._watermark_path = os.path.join(store_dir, "watermark.json")
        self._manifest_path = os.path.join(store_dir, "manifest.json")
        self._status_path = os.path.join(store_dir, "status.json")

        try:
            os.makedirs(self._staged_dir, exist_ok=True)
            os.makedirs(self._committed_dir, exist_ok=True)
        except OSError as exc:
            raise StoreInitError(f"cannot create store at {store_dir}: {exc}") from exc

        self._verify_same_volume()
        self.crash_recovery()

    def _verify_same_volume(self) -> None:
        """staged/ and committed/ must share a filesystem for os.replace to be atomic."""
        test_src = os.path.join(self._staged_dir, f"_vol_check_{uuid.uuid4().hex}")
        test_dst = os.path.join(self._committed_dir, f"_vol_check_{uuid.uuid4().hex}")
        try:
            with open(test_src, "w") as f:
                f.write("vol_check")
            os.replace(test_src, test_dst)
        except OSError as exc:
            raise StoreInitError(
                "staged/ and committed/ are not on the same filesystem"
            ) from exc
        finally:
            for p in (test_src, test_dst):
                if os.path.exists(p):
                    os.remove(p)

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def bind_manifest(self, manifest: StoreManifest) -> None:
        """Write manifest.json once; reopening with another config hash fails."""
        if os.path.exists(self._manifest_path):
            with open(self._manifest_path, "r") as f:
                existing = json.load(f)
            if (existing.get("bucket_id") != manifest.bucket_id
                    or existing.get("config_hash") != manifest.config_hash):
                raise ManifestImmutabilityError(
                    f"store {self._store_dir} is bound to bucket "
                    f"{existing.get('bucket_id')} / config {existing.get('config_hash', '')[:12]}"
                )
            return
        atomic_write(self._manifest_path, _canonical_bytes(asdict(manifest)), fsync_parent=True)

    def read_manifest(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self._manifest_path):
            return None
        with open(self._manifest_path, "r") as f:
            return json.load(f)

    # ------------------------------------------------------------------
    # Stage / commit
    # ------------------------------------------------------------------

    def stage_record(self, record: StateRecord) -> StagingKey:
        """Serialize to staged/<uuid>.staged.  Does NOT acquire _chain_lock."""
        _check_sentinels(record)
        record_uuid = uuid.uuid4().hex
        content_bytes = _canonical_bytes(asdict(record))
        staged_path = os.path.join(self._staged_dir, f"{record_uuid}.staged")
        atomic_write(staged_path, content_bytes)
        return StagingKey(
            content_hash=hashlib.sha256(content_bytes).hexdigest(),
            staged_path=staged_path,
            uuid=record_uuid,
        )

    def commit_record(self, key: StagingKey) -> int:
        """
        Commit a staged record.  Returns its commit_seq.

            1. Verify the staged file exists and re-hash it.
            2. Allocate commit_seq, link prev_record_hash, compute record_hash.
            3. Write committed/<commit_seq>.record (atomic, never overwrite).
            4. Update watermark.json (atomic + parent fsync).
            5. Delete the staged file.
        """
        with self._chain_lock:
            staged_path = os.path.join(self._staged_dir, f"{key.uuid}.staged")
            if not os.path.exists(staged_path):
                raise CommitError(f"Staged file missing: {staged_path}")

            with open(staged_path, "rb") as f:
                raw = f.read()
            actual_hash = hashlib.sha256(raw).hexdigest()
            if actual_hash != key.content_hash:
                raise CommitError(
                    f"Content hash mismatch: expected {key.content_hash}, got {actual_hash}"
                )

            record_dict: dict = json.loads(raw.decode("utf-8"))
            new_seq = self._watermark.commit_seq + 1
            record_dict["commit_seq"] = new_seq
            record_dict["prev_record_hash"] = "" if new_seq == 0 else self._watermark.record_hash
            rec_hash = compute_record_hash(record_dict)
            record_dict["record_hash"] = rec_hash

            committed_path = os.path.join(self._committed_dir, f"{new_seq}.record")
            if os.path.exists(committed_path):
                raise CommitError(
                    f"committed/{new_seq}.record already exists — cannot overwrite"
                )
            atomic_write(committed_path, _canonical_bytes(record_dict))

            advanced = _Watermark(commit_seq=new_seq, record_hash=rec_hash)
            try:
                self._write_watermark(advanced)
            except OSError as exc:
                # an orphaned record would be replayed by recovery
                os.remove(committed_path)
                raise CommitError(f"watermark write failed for commit_seq={new_seq}") from exc
            self._watermark = advanced

            try:
                os.remove(staged_path)
            except OSError:
                _log.warning("Could not delete staged file %s; recovery will", staged_path)
            return new_seq

    def append(self, record: StateRecord) -> int:
        """stage_record + commit_record."""
        return self.commit_record(self.stage_record(record))

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def _read_committed(self) -> Dict[int, dict]:
        records: Dict[int, dict] = {}
        for fname in os.listdir(self._committed_dir):
            if not fname.endswith(".record"):
                continue
            try:
                seq = int(fname[: -len(".record")])
            except ValueError:
                continue
            with open(os.path.join(self._committed_dir, fname), "rb") as f:
                records[seq] = json.loads(f.read().decode("utf-8"))
        return records

    def crash_recovery(self) -> int:
        """
        1. Scan committed/ and walk the hash chain from commit_seq 0.
        2. Derive the watermark from the last valid record.
        3. Rewrite watermark.json if it disagrees.
        4. Delete ALL staged files.
        Returns the watermark commit_seq (-1 if empty).
        """
        committed = self._read_committed()
        last_valid_seq = -1
        last_valid_hash = ""

        if committed:
            for seq in range(max(committed) + 1):
                rd = committed.get(seq)
                if rd is None:
                    _log.warning("Gap at commit_seq=%d during recovery", seq)
                    break
                expected_prev = "" if seq == 0 else last_valid_hash
                if rd.get("prev_record_hash", "") != expected_prev:
                    _log.warning("Hash chain break at commit_seq=%d", seq)
                    break
                stored = rd.get("record_hash", "")
                if stored != compute_record_hash(dict(rd)):
                    _log.warning("record_hash mismatch at commit_seq=%d", seq)
                    break
                last_valid_seq, last_valid_hash = seq, stored

        derived = _Watermark(commit_seq=last_valid_seq, record_hash=last_valid_hash)
        if os.path.exists(self._watermark_path):
            try:
                with open(self._watermark_path, "r") as f:
                    existing = _Watermark.from_dict(json.load(f))
                if existing != derived:
                    _log.warning(
                        "Watermark disagreement: file=%s, derived=%s, rewriting from committed/",
                        existing.to_dict(), derived.to_dict(),
                    )
            except (json.JSONDecodeError, KeyError, TypeError):
                _log.warning("Corrupt watermark.json — rebuilding from committed/")

        self._watermark = derived
        self._write_watermark()
        self._clean_staged()
        return derived.commit_seq

    def _write_watermark(self, watermark: Optional[_Watermark] = None) -> None:
        watermark = watermark or self._watermark
        atomic_write(self._watermark_path, _canonical_bytes(watermark.to_dict()), fsync_parent=True)

    def _clean_staged(self) -> None:
        for fname in os.listdir(self._staged_dir):
            fpath = os.path.join(self._staged_dir, fname)
            if os.path.isfile(fpath):
                _log.info("Recovery: deleting staged file %s", fname)
                os.remove(fpath)

    # ------------------------------------------------------------------
    # Verification / replay
    # ------------------------------------------------------------------

    def verify_chain_integrity(self) -> Tuple[bool, Optional[str]]:
        """Walk committed/ from 0 to the watermark.  (True, None) if intact."""
        prev_hash = ""
        for seq in range(self._watermark.commit_seq + 1):
            fpath = os.path.join(self._committed_dir, f"{seq}.record")
            if not os.path.exists(fpath):
                return (False, f"Missing committed/{seq}.record (gap in chain)")
            with open(fpath, "rb") as f:
                rd = json.loads(f.read().decode("utf-8"))
            if rd.get("commit_seq") != seq:
                return (False, f"commit_seq mismatch in {seq}.record: stored={rd.get('commit_seq')}")
            if rd.get("prev_record_hash", "") != prev_hash:
                return (False, f"prev_record_hash mismatch at commit_seq={seq}")
            stored = rd.get("record_hash", "")
            if not stored:
                return (False, f"Empty record_hash at commit_seq={seq}")
            if stored != compute_record_hash(dict(rd)):
                return (False, f"record_hash mismatch at commit_seq={seq}")
            prev_hash = stored
        return (True, None)

    def replay(self, from_seq: int, to_seq: int) -> List[StateRecord]:
        """Committed records in commit_seq order."""
        results: List[StateRecord] = []
        for seq in range(from_seq, to_seq + 1):
            fpath = os.path.join(self._committed_dir, f"{seq}.record")
            if not os.path.exists(fpath):
                raise ChainIntegrityError(f"Missing committed/{seq}.record during replay")
            with open(fpath, "rb") as f:
                results.append(_dict_to_record(json.loads(f.read().decode("utf-8"))))
        return results

    def load_latest(self) -> Optional[StateRecord]:
        if self._watermark.commit_seq < 0:
            return None
        return self.replay(self._watermark.commit_seq, self._watermark.commit_seq)[0]

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def write_status(self, status: Dict[str, Any]) -> None:
        data = dict(status)
        data["watermark"] = self._watermark.to_dict()
        atomic_write(self._status_path, json.dumps(data, indent=2, sort_keys=True).encode("utf-8"))

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def store_dir(self) -> str:
        return self._store_dir

    @property
    def watermark(self) -> _Watermark:
        return self._watermark

    @property
    def status_path(self) -> str:
        return self._status_path
