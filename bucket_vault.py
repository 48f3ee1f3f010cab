"""
Bucket Vault — Bucket Lifecycle + Public Operations

Defines BucketConfig, Bucket, ActiveBucket and PassiveBucket.  A Bucket owns
one ShareLedger, one asset registry, one DexTable, one RebalanceEngine, one
FlashLoanModule, one GovernanceGuard and (optionally) one AtomicStateStore.

Every mutating operation runs inside _atomic():
    lock → reentrancy flag → snapshot (vault state + custody ledger)
    → checks → effects → interactions → invariant check → store commit
Any exception restores both snapshots and re-raises.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import MISSING, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from bucket_custody import TokenLedger
from bucket_fixed import (
    BASELINE_SHARE_PRICE,
    BPS_DENOMINATOR,
    PRECISION,
    asset_value_usd,
    bps_of,
    mul_div,
)
from bucket_flash import FlashLoanModule, FlashLoanReceipt
from bucket_guard import FeeParameters, GovernanceGuard
from bucket_rebalance import FeeSplit, RebalanceEngine
from bucket_registry import AssetRegistry, DistributionLike, PassiveAssetRegistry
from bucket_shares import ShareLedger
from bucket_store import (
    SCHEMA_VERSION,
    AtomicStateStore,
    SchemaVersionError,
    StateRecord,
    StoreManifest,
)
from bucket_swap import DexTable
from bucket_types import (
    NATIVE_ASSET,
    ZERO_ADDRESS,
    BucketError,
    BucketKind,
    DEXConfig,
    DistributionEntry,
    FlashLoanReceiver,
    InvalidRedeemAmount,
    InvalidToken,
    NotShareholder,
    PauseState,
    RebalanceReport,
    ReentrantCall,
    StalePrice,
    SwapAggregator,
    SwapOrder,
    SwapQuoter,
    SwapRouter,
    SwapState,
    TokenIsWhitelisted,
    ValidationError,
    ValuationOracle,
    ZeroAddress,
    ZeroAmount,
)

_log = logging.getLogger(__name__)

__all__ = [
    "BucketConfig", "compute_config_hash", "load_bucket_config",
    "Bucket", "ActiveBucket", "PassiveBucket",
]


# ---------------------------------------------------------------------------
# BucketConfig (frozen)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BucketConfig:
    """Immutable bucket configuration."""
    bucket_id: str
    kind: str                      # "ACTIVE" | "PASSIVE"
    owner: str
    vault_address: str
    platform_treasury: str
    state_dir: Optional[str] = None          # None disables persistence
    performance_fee_bps: int = 0             # initial values; owner may change
    rebalance_owner_fee_bps: int = 0
    rebalance_caller_fee_bps: int = 0


def compute_config_hash(config: BucketConfig) -> str:
    """SHA256 of canonical BucketConfig JSON (sorted keys, compact separators)."""
    d = {
        "bucket_id": config.bucket_id,
        "kind": config.kind,
        "owner": config.owner,
        "vault_address": config.vault_address,
        "platform_treasury": config.platform_treasury,
        "state_dir": config.state_dir,
        "performance_fee_bps": config.performance_fee_bps,
        "rebalance_owner_fee_bps": config.rebalance_owner_fee_bps,
        "rebalance_caller_fee_bps": config.rebalance_caller_fee_bps,
    }
    js = json.dumps(d, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(js.encode("utf-8")).hexdigest()


def _parse_kind(kind: str) -> BucketKind:
    try:
        return BucketKind(kind)
    except ValueError as exc:
        raise ValidationError(f"unknown bucket kind {kind!r}") from exc


def load_bucket_config(path: str) -> BucketConfig:
    """Read a BucketConfig from a JSON file.  Unknown or missing keys are rejected."""
    with open(path, "r") as f:
        raw = json.load(f)
    unknown = set(raw) - set(BucketConfig.__dataclass_fields__)
    if unknown:
        raise ValidationError(f"unknown config keys: {sorted(unknown)}")
    missing = {
        name for name, field in BucketConfig.__dataclass_fields__.items()
        if field.default is MISSING
    } - set(raw)
    if missing:
        raise ValidationError(f"missing config keys: {sorted(missing)}")
    config = BucketConfig(**raw)
    _parse_kind(config.kind)
    return config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _address_of(obj: Any) -> Optional[str]:
    return getattr(obj, "address", None) if obj is not None else None


# ---------------------------------------------------------------------------
# Bucket
# ---------------------------------------------------------------------------

class Bucket:
    """
    Shared share-accounting core of both bucket variants.

    One Bucket = one vault account on one TokenLedger, priced by one
    ValuationOracle.  Subclasses choose the registry and the rebalance entry
    points.
    """

    KIND: BucketKind

    def __init__(
        self,
        config: BucketConfig,
        *,
        ledger: TokenLedger,
        oracle: ValuationOracle,
        dex_configs: Optional[Sequence[DEXConfig]] = None,
        one_inch_router: Optional[SwapAggregator] = None,
    ) -> None:
        if _parse_kind(config.kind) != self.KIND:
            raise ValidationError(f"config kind {config.kind} does not match {self.KIND.value}")
        for name in ("owner", "vault_address", "platform_treasury"):
            if getattr(config, name) in ("", ZERO_ADDRESS):
                raise ZeroAddress(f"config.{name} must be set")

        self._config = config
        self._vault = config.vault_address
        self._ledger = ledger
        self._oracle = oracle

        self._shares = ShareLedger()
        self._guard = GovernanceGuard(
            config.owner,
            self._shares,
            FeeParameters(
                performance_fee_bps=config.performance_fee_bps,
                rebalance_owner_fee_bps=config.rebalance_owner_fee_bps,
                rebalance_caller_fee_bps=config.rebalance_caller_fee_bps,
            ),
        )
        self._registry = self._make_registry()
        self._dex = DexTable(list(dex_configs or []))
        self._engine = RebalanceEngine(
            self._vault, ledger, oracle, self._registry, self._dex,
        )
        self._flash = FlashLoanModule(self._vault, ledger)
        self._aggregator = one_inch_router

        self._total_deposit_value = 0
        self._total_withdraw_value = 0
        self._last_operation: Optional[str] = None

        self._lock = threading.RLock()
        self._in_operation = False

        # Store directory: <state_dir>/<bucket_id>/
        self._store: Optional[AtomicStateStore] = None
        if config.state_dir:
            self._store = AtomicStateStore(
                os.path.join(config.state_dir, config.bucket_id), config.bucket_id,
            )
            self._store.bind_manifest(StoreManifest(
                bucket_id=config.bucket_id,
                kind=config.kind,
                config_hash=compute_config_hash(config),
                schema_version=SCHEMA_VERSION,
                created_ts=_now_iso(),
            ))
            self._write_status()

        _log.info("Bucket %s created (kind=%s, owner=%s)", config.bucket_id, config.kind, config.owner)

    def _make_registry(self) -> AssetRegistry:
        return AssetRegistry(self._vault, self._ledger)

    # ------------------------------------------------------------------
    # Atomic operation wrapper
    # ------------------------------------------------------------------

    @contextmanager
    def _atomic(self, operation: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        """Serialize, snapshot, run, commit; restore everything on failure."""
        with self._lock:
            if self._in_operation:
                _log.warning("%s rejected: nested call while another operation runs", operation)
                raise ReentrantCall(f"{operation} entered during another operation")
            self._in_operation = True
            captured = self._capture()
            ledger_before = self._ledger.snapshot()
            try:
                yield payload
                self._shares.check_invariant()
                self._last_operation = operation
                self._commit(operation, payload)
            except Exception as exc:
                self._rollback(captured)
                self._ledger.restore(ledger_before)
                _log.warning("%s rejected: %s: %s", operation, type(exc).__name__, exc)
                raise
            finally:
                self._in_operation = False
            self._write_status()

    def _capture(self) -> Tuple[Dict[str, Any], List[DEXConfig], Optional[SwapAggregator]]:
        return self._state_dict(), self._dex.configs(), self._aggregator

    def _rollback(self, captured) -> None:
        state, dex_configs, aggregator = captured
        self._load_state(state)
        self._dex.reset(dex_configs)
        self._aggregator = aggregator

    def _commit(self, operation: str, payload: Dict[str, Any]) -> None:
        if self._store is None:
            return
        record = StateRecord(
            format_version=1,
            timestamp=int(time.time()),
            bucket_id=self._config.bucket_id,
            operation=operation,
            payload=payload,
            state=self._state_dict(),
        )
        seq = self._store.append(record)
        _log.debug("Bucket %s: %s committed at commit_seq=%d", self._config.bucket_id, operation, seq)

    # ------------------------------------------------------------------
    # State snapshot
    # ------------------------------------------------------------------

    def _state_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "bucket_id": self._config.bucket_id,
            "kind": self.KIND.value,
            "owner": self._config.owner,
            "shares": self._shares.to_dict(),
            "held_assets": self._registry.to_list(),
            "dex": self._dex.to_list(),
            "governance": self._guard.to_dict(),
            "total_deposit_value": self._total_deposit_value,
            "total_withdraw_value": self._total_withdraw_value,
            "one_inch_router": _address_of(self._aggregator),
            "last_operation": self._last_operation,
        }

    def _load_state(self, state: Dict[str, Any]) -> None:
        self._shares.load_dict(state["shares"])
        self._registry.load_list(state["held_assets"])
        self._guard.load_dict(state["governance"])
        self._total_deposit_value = int(state["total_deposit_value"])
        self._total_withdraw_value = int(state["total_withdraw_value"])
        self._last_operation = state.get("last_operation")

    def recover(self, resolver: Optional[Mapping[str, Any]] = None) -> bool:
        """
        Load the latest committed snapshot from the store.

        `resolver` maps adapter addresses to live router / quoter / aggregator
        objects.  Without one, the DEX table and aggregator passed to the
        constructor are kept.  Returns False if there is nothing to load.
        """
        if self._store is None:
            return False
        record = self._store.load_latest()
        if record is None:
            return False
        state = record.state
        if state.get("schema_version") != SCHEMA_VERSION:
            raise SchemaVersionError(
                f"snapshot schema_version={state.get('schema_version')}, expected {SCHEMA_VERSION}"
            )
        with self._lock:
            self._load_state(state)
            if resolver is not None:
                self._dex.reset([
                    DEXConfig(
                        router=resolver[item["router"]],
                        quoter=resolver[item["quoter"]],
                        fee_tier=int(item["fee_tier"]),
                        enabled=bool(item["enabled"]),
                    )
                    for item in state["dex"]
                ])
                router_address = state.get("one_inch_router")
                self._aggregator = resolver[router_address] if router_address else None
            self._write_status()
        _log.info(
            "Bucket %s recovered from commit_seq=%d (%s)",
            self._config.bucket_id, record.commit_seq, record.operation,
        )
        return True

    # ------------------------------------------------------------------
    # Deposit / redeem
    # ------------------------------------------------------------------

    def deposit(self, caller: str, asset: str, amount: int) -> int:
        """Deposit `amount` base units of `asset`; returns shares minted."""
        with self._atomic("deposit", caller=caller, asset=asset, amount=amount) as rec:
            if amount <= 0:
                raise ZeroAmount("deposit amount must be positive")
            self._guard.require_not_paused()
            self._guard.require_operational(self._oracle)
            if not self._oracle.is_token_valid(asset):
                raise InvalidToken(f"{asset} is not a valid deposit asset")

            price = self._oracle.get_token_price(asset)
            deposit_value = asset_value_usd(amount, price, self._ledger.decimals(asset))
            total_before = self._engine.total_value()
            shares = self._shares.shares_for_deposit(deposit_value, total_before)

            self._shares.mint(caller, shares)
            self._total_deposit_value += deposit_value.value
            self._registry.track(asset)

            if asset == NATIVE_ASSET:
                self._ledger.transfer(asset, caller, self._vault, amount)
            else:
                self._ledger.transfer_from(asset, self._vault, caller, self._vault, amount)

            rec.update(shares=shares, value=deposit_value.value)
        _log.info(
            "Deposit: %s %d %s -> %d shares (value=%d)",
            caller, amount, asset, shares, deposit_value.value,
        )
        return shares

    def redeem(self, caller: str, shares: int) -> Dict[str, int]:
        """Burn `shares`; returns the pro-rata payout per asset."""
        with self._atomic("redeem", caller=caller, shares=shares) as rec:
            held = self._shares.balance_of(caller)
            if shares <= 0 or shares > held:
                raise InvalidRedeemAmount(f"cannot redeem {shares} of {held} shares")
            self._guard.require_not_paused()
            self._guard.require_operational(self._oracle)

            supply_before = self._shares.total_supply
            payouts = {
                asset: ShareLedger.pro_rata(
                    self._ledger.balance_of(asset, self._vault), shares, supply_before,
                )
                for asset in self._registry.custodied_assets()
            }

            self._shares.burn(caller, shares)
            if caller == self._guard.owner:
                self._guard.require_accountable()
            redeemed_value = self._payout_value(payouts)
            self._total_withdraw_value += redeemed_value

            for asset, amount in payouts.items():
                if amount:
                    self._ledger.transfer(asset, self._vault, caller, amount)
            self._registry.prune()

            rec.update(value=redeemed_value, payouts=payouts)
        _log.info("Redeem: %s %d shares -> %s", caller, shares, payouts)
        return payouts

    def _payout_value(self, payouts: Mapping[str, int]) -> int:
        """
        USD value of a redemption, for the withdraw accumulator only.

        An asset the oracle cannot price (stale or delisted) counts as zero so
        that holders can always exit.
        """
        total = 0
        for asset, amount in payouts.items():
            if not amount:
                continue
            try:
                price = self._oracle.get_token_price(asset)
            except (StalePrice, InvalidToken) as exc:
                _log.warning("Redeem: %s left out of withdraw value (%s)", asset, exc)
                continue
            total += asset_value_usd(amount, price, self._ledger.decimals(asset)).value
        return total

    # ------------------------------------------------------------------
    # Flash loans
    # ------------------------------------------------------------------

    def flash_loan(
        self,
        caller: str,
        asset: str,
        amount: int,
        receiver: FlashLoanReceiver,
        data: bytes = b"",
    ) -> FlashLoanReceipt:
        with self._atomic(
            "flash_loan", caller=caller, asset=asset, amount=amount,
            receiver=_address_of(receiver),
        ) as rec:
            self._guard.require_owner(caller)
            self._guard.require_not_paused()
            self._guard.require_operational(self._oracle)
            receipt = self._flash.flash_loan(caller, asset, amount, receiver, data)
            rec.update(fee=receipt.fee)
        return receipt

    # ------------------------------------------------------------------
    # Governance
    # ------------------------------------------------------------------

    def pause(self, caller: str) -> None:
        with self._atomic("pause", caller=caller):
            self._guard.require_owner(caller)
            self._guard.require_accountable()
            self._guard.set_pause(PauseState.PAUSED)

    def unpause(self, caller: str) -> None:
        with self._atomic("unpause", caller=caller):
            self._guard.require_owner(caller)
            self._guard.set_pause(PauseState.ACTIVE)

    def pause_swap(self, caller: str) -> None:
        with self._atomic("pause_swap", caller=caller):
            self._guard.require_owner(caller)
            self._guard.require_accountable()
            self._guard.set_swap(SwapState.SWAP_PAUSED)

    def unpause_swap(self, caller: str) -> None:
        with self._atomic("unpause_swap", caller=caller):
            self._guard.require_owner(caller)
            self._guard.set_swap(SwapState.SWAP_ACTIVE)

    def recover_tokens(self, caller: str, asset: str, amount: int, to: str) -> None:
        """Return stray, non-whitelisted assets sent to the vault."""
        with self._atomic("recover_tokens", caller=caller, asset=asset, amount=amount, to=to):
            self._guard.require_owner(caller)
            if amount <= 0:
                raise ZeroAmount("recover amount must be positive")
            if not to or to == ZERO_ADDRESS:
                raise ZeroAddress("recover recipient is required")
            if self._oracle.is_token_whitelisted(asset):
                raise TokenIsWhitelisted(f"{asset} is vault-managed")
            self._ledger.transfer(asset, self._vault, to, amount)
        _log.info("Recovered %d %s to %s", amount, asset, to)

    def configure_dex(
        self,
        caller: str,
        index: int,
        router: SwapRouter,
        quoter: SwapQuoter,
        fee_tier: int,
        enabled: bool = True,
    ) -> DEXConfig:
        with self._atomic(
            "configure_dex", caller=caller, index=index, router=_address_of(router),
            quoter=_address_of(quoter), fee_tier=fee_tier, enabled=enabled,
        ):
            self._guard.require_owner(caller)
            self._guard.require_accountable()
            self._guard.require_operational(self._oracle)
            cfg = self._dex.configure(index, router, quoter, fee_tier, enabled)
        return cfg

    def set_performance_fee(self, caller: str, bps: int) -> None:
        with self._atomic("set_performance_fee", caller=caller, bps=bps):
            self._guard.require_owner(caller)
            self._guard.require_accountable()
            self._guard.set_performance_fee(bps)

    def set_rebalance_fees(self, caller: str, owner_bps: int, caller_bps: int) -> None:
        with self._atomic(
            "set_rebalance_fees", caller=caller, owner_bps=owner_bps, caller_bps=caller_bps,
        ):
            self._guard.require_owner(caller)
            self._guard.require_accountable()
            self._guard.set_rebalance_fees(owner_bps, caller_bps)

    def set_one_inch_router(self, caller: str, router: SwapAggregator) -> None:
        with self._atomic("set_one_inch_router", caller=caller, router=_address_of(router)):
            self._guard.require_owner(caller)
            self._guard.require_accountable()
            address = _address_of(router)
            if not address or address == ZERO_ADDRESS:
                raise ZeroAddress("aggregator router is required")
            self._aggregator = router
        _log.info("Aggregator router set to %s", address)

    # ------------------------------------------------------------------
    # Rebalance plumbing
    # ------------------------------------------------------------------

    def _require_swappable(self) -> None:
        self._guard.require_not_paused()
        self._guard.require_swap_active()
        self._guard.require_operational(self._oracle)

    def _report_payload(self, rec: Dict[str, Any], report: RebalanceReport) -> None:
        rec.update(
            value_before=report.value_before,
            value_after=report.value_after,
            caller_fees=report.caller_fees,
            owner_fees=report.owner_fees,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def bucket_id(self) -> str:
        return self._config.bucket_id

    @property
    def config(self) -> BucketConfig:
        return self._config

    @property
    def owner(self) -> str:
        return self._guard.owner

    @property
    def vault_address(self) -> str:
        return self._vault

    @property
    def paused(self) -> bool:
        return self._guard.paused

    @property
    def swap_paused(self) -> bool:
        return self._guard.swap_paused

    @property
    def fees(self) -> FeeParameters:
        return self._guard.fees

    @property
    def one_inch_router(self) -> Optional[SwapAggregator]:
        return self._aggregator

    @property
    def total_deposit_value(self) -> int:
        return self._total_deposit_value

    @property
    def total_withdraw_value(self) -> int:
        return self._total_withdraw_value

    @property
    def high_water_mark(self) -> int:
        return self._guard.high_water_mark

    @property
    def store(self) -> Optional[AtomicStateStore]:
        return self._store

    def balance_of(self, holder: str) -> int:
        return self._shares.balance_of(holder)

    def total_supply(self) -> int:
        return self._shares.total_supply

    def held_assets(self) -> List[str]:
        return self._registry.custodied_assets()

    def is_bucket_accountable(self) -> bool:
        return self._guard.is_accountable()

    def calculate_total_value(self) -> int:
        """Σ balance_i * price_i over custodied assets (USD, 8 dec)."""
        return self._engine.total_value().value

    def token_price(self) -> int:
        """USD per whole share (8 dec); BASELINE 1.00 while no shares exist."""
        return self._shares.token_price(self._engine.total_value()).value

    def get_user_balance(self, holder: str) -> int:
        """USD value of `holder`'s shares (8 dec)."""
        return self._shares.value_of(self._shares.balance_of(holder), self._engine.total_value()).value

    def get_contract_balance(self, asset: str) -> int:
        return self._ledger.balance_of(asset, self._vault)

    def get_best_quote(self, token_in: str, token_out: str, amount_in: int) -> Tuple[int, int]:
        return self._dex.best_quote(token_in, token_out, amount_in)

    def get_dex_config(self, index: int) -> DEXConfig:
        return self._dex.get(index)

    def dex_count(self) -> int:
        return self._dex.count

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """JSON-serializable status dict."""
        supply = self._shares.total_supply
        owner_shares = self._shares.balance_of(self._guard.owner)
        try:
            total_value: Optional[int] = self.calculate_total_value()
            price: Optional[int] = self.token_price()
            pricing_error = None
        except BucketError as exc:
            total_value, price = None, None
            pricing_error = f"{type(exc).__name__}: {exc}"
        return {
            "bucket_id": self._config.bucket_id,
            "kind": self.KIND.value,
            "owner": self._guard.owner,
            "paused": self._guard.paused,
            "swap_paused": self._guard.swap_paused,
            "accountable": self._guard.is_accountable(),
            "total_supply": supply,
            "owner_shares": owner_shares,
            "owner_bps": bps_of(owner_shares, supply) if supply else None,
            "holder_count": len(self._shares.holders()),
            "total_value": total_value,
            "token_price": price,
            "pricing_error": pricing_error,
            "total_deposit_value": self._total_deposit_value,
            "total_withdraw_value": self._total_withdraw_value,
            "holdings": {a: self._ledger.balance_of(a, self._vault) for a in self.held_assets()},
            "dex_count": self._dex.count,
            "fees": self._guard.fees.to_dict(),
            "high_water_mark": self._guard.high_water_mark,
            "last_operation": self._last_operation,
            "updated_ts": _now_iso(),
        }

    def _write_status(self) -> None:
        if self._store is None:
            return
        try:
            self._store.write_status(self.status())
        except OSError as e:
            _log.error("Failed to write status for %s: %s", self._config.bucket_id, e)


# ---------------------------------------------------------------------------
# ActiveBucket
# ---------------------------------------------------------------------------

class ActiveBucket(Bucket):
    """Manager-directed bucket: the owner rebalances at discretion."""

    KIND = BucketKind.ACTIVE

    def rebalance(self, caller: str, calldatas: Sequence[bytes]) -> RebalanceReport:
        """Forward aggregator calldata batches (owner only)."""
        with self._atomic("rebalance", caller=caller, steps=len(calldatas)) as rec:
            self._require_discretionary(caller)
            report = self._engine.execute_calldata(self._aggregator, calldatas, self._fee_split())
            rec.update(performance_fee_shares=self._crystallize_performance_fee())
            self._report_payload(rec, report)
        return report

    def rebalance_by_defi(self, caller: str, orders: Sequence[SwapOrder]) -> RebalanceReport:
        """Best-quote DEX orders (owner only)."""
        with self._atomic(
            "rebalance_by_defi", caller=caller, orders=[o.to_dict() for o in orders],
        ) as rec:
            self._require_discretionary(caller)
            report = self._engine.execute_orders(
                orders, self._fee_split(), platform_treasury=self._config.platform_treasury,
            )
            rec.update(performance_fee_shares=self._crystallize_performance_fee())
            self._report_payload(rec, report)
        return report

    def _require_discretionary(self, caller: str) -> None:
        self._guard.require_owner(caller)
        self._guard.require_accountable()
        self._require_swappable()

    def _fee_split(self) -> FeeSplit:
        owner = self._guard.owner
        return FeeSplit(
            caller=owner,
            owner=owner,
            caller_bps=0,
            owner_bps=self._guard.fees.rebalance_owner_fee_bps,
        )

    def _crystallize_performance_fee(self) -> int:
        """
        Mint performance-fee shares to the owner if the share price rose above
        the high-water mark.  Returns the shares minted.

            fee_value  = (price - hwm) * supply / PRECISION * bps / 10000
            fee_shares = fee_value * supply / (total_value - fee_value)
        """
        supply = self._shares.total_supply
        if supply == 0:
            return 0
        total = self._engine.total_value()
        total_value = total.value
        price = self._shares.token_price(total).value
        hwm = self._guard.high_water_mark or BASELINE_SHARE_PRICE.value
        if price <= hwm:
            return 0

        gain = mul_div(price - hwm, supply, PRECISION)
        fee_value = mul_div(gain, self._guard.fees.performance_fee_bps, BPS_DENOMINATOR)
        fee_shares = 0
        if 0 < fee_value < total_value:
            fee_shares = mul_div(fee_value, supply, total_value - fee_value)
            if fee_shares:
                self._shares.mint(self._guard.owner, fee_shares)

        self._guard.high_water_mark = self._shares.token_price(self._engine.total_value()).value
        _log.info(
            "Performance fee: price %d > hwm %d, minted %d shares, hwm -> %d",
            price, hwm, fee_shares, self._guard.high_water_mark,
        )
        return fee_shares


# ---------------------------------------------------------------------------
# PassiveBucket
# ---------------------------------------------------------------------------

class PassiveBucket(Bucket):
    """Fixed target-weight bucket: any shareholder may trigger a rebalance."""

    KIND = BucketKind.PASSIVE

    def __init__(
        self,
        config: BucketConfig,
        *,
        ledger: TokenLedger,
        oracle: ValuationOracle,
        distribution: DistributionLike,
        dex_configs: Optional[Sequence[DEXConfig]] = None,
        one_inch_router: Optional[SwapAggregator] = None,
    ) -> None:
        self._initial_distribution = distribution
        super().__init__(
            config,
            ledger=ledger,
            oracle=oracle,
            dex_configs=dex_configs,
            one_inch_router=one_inch_router,
        )

    def _make_registry(self) -> PassiveAssetRegistry:
        return PassiveAssetRegistry(
            self._vault, self._ledger, self._initial_distribution, self._oracle,
        )

    def _state_dict(self) -> Dict[str, Any]:
        state = super()._state_dict()
        state["distribution"] = self._registry.distribution_to_list()
        return state

    def _load_state(self, state: Dict[str, Any]) -> None:
        super()._load_state(state)
        self._registry.load_distribution(state["distribution"])

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    def update_bucket_distributions(
        self, caller: str, distribution: DistributionLike,
    ) -> List[DistributionEntry]:
        with self._atomic("update_bucket_distributions", caller=caller) as rec:
            self._guard.require_owner(caller)
            self._guard.require_accountable()
            self._guard.require_operational(self._oracle)
            entries = self._registry.replace_distribution(distribution, self._oracle)
            rec.update(distribution=[e.to_dict() for e in entries])
        return entries

    def get_bucket_distributions(self) -> List[DistributionEntry]:
        return self._registry.distribution

    def get_distribution_count(self) -> int:
        return len(self._registry.distribution)

    # ------------------------------------------------------------------
    # Shareholder-triggered rebalances
    # ------------------------------------------------------------------

    def rebalance_by_1inch(self, caller: str, calldatas: Sequence[bytes]) -> RebalanceReport:
        with self._atomic("rebalance_by_1inch", caller=caller, steps=len(calldatas)) as rec:
            self._require_shareholder(caller)
            report = self._engine.execute_calldata(
                self._aggregator, calldatas, self._fee_split(caller),
            )
            self._report_payload(rec, report)
        return report

    def rebalance_by_defi(
        self, caller: str, orders: Optional[Sequence[SwapOrder]] = None,
    ) -> RebalanceReport:
        """Execute `orders`, or plan them from the target distribution when omitted."""
        with self._atomic("rebalance_by_defi", caller=caller) as rec:
            self._require_shareholder(caller)
            if not orders:
                orders = self._engine.plan_toward(self._registry.distribution)
            rec.update(orders=[o.to_dict() for o in orders])
            report = self._engine.execute_orders(
                orders, self._fee_split(caller), platform_treasury=self._config.platform_treasury,
            )
            self._report_payload(rec, report)
        return report

    def _require_shareholder(self, caller: str) -> None:
        if self._shares.balance_of(caller) == 0:
            raise NotShareholder(f"{caller} holds no shares")
        self._require_swappable()

    def _fee_split(self, caller: str) -> FeeSplit:
        fees = self._guard.fees
        return FeeSplit(
            caller=caller,
            owner=self._guard.owner,
            caller_bps=fees.rebalance_caller_fee_bps,
            owner_bps=fees.rebalance_owner_fee_bps,
        )
