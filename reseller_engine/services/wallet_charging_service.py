import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reseller_engine.core.config import EngineConfig
from reseller_engine.db.models.charge_lock import WalletChargeLock
from reseller_engine.db.models.reseller import (
    RESELLER_STATUS_ACTIVE,
    RESELLER_STATUS_SUSPENDED_WALLET,
    Reseller,
)
from reseller_engine.db.models.reseller_config import ResellerConfig, SuspensionReason
from reseller_engine.db.models.transaction import TRANSACTION_TYPE_USAGE_CHARGE, Transaction
from reseller_engine.db.models.usage_snapshot import ResellerUsageSnapshot
from reseller_engine.schemas.outcomes import WalletChargeResult, WalletDiagnosis
from reseller_engine.services import audit_service, config_state_service
from reseller_engine.services.remote_operation_service import RemoteOperationExecutor
from reseller_engine.services.usage_aggregation_service import reseller_total_usage
from reseller_engine.utils.clock import start_of_minute, utcnow

logger = logging.getLogger("reseller_engine.wallet")

BYTES_PER_GB = 1024 ** 3
CENT = Decimal("0.01")

REASON_WALLET_EXHAUSTED = "wallet_balance_exhausted"


class WalletServiceError(Exception):
    pass


class WalletChargeError(WalletServiceError):
    pass


def cycle_key_for(moment: datetime) -> str:
    """Charges started within the same minute share a cycle key."""
    return start_of_minute(moment).isoformat()


def compute_cost(delta_bytes: int, price_per_gb: Decimal) -> Decimal:
    """Proportional cost of a traffic delta, rounded to the wallet's precision."""
    cost = Decimal(int(delta_bytes)) / Decimal(BYTES_PER_GB) * Decimal(price_per_gb)
    return cost.quantize(CENT, rounding=ROUND_HALF_UP)


class WalletChargingEngine:
    def __init__(self, config: EngineConfig, executor: RemoteOperationExecutor):
        self.config = config
        self.executor = executor

    # Queries

    def price_per_gb(self, reseller: Reseller) -> Decimal:
        if reseller.wallet_price_per_gb is not None:
            return Decimal(reseller.wallet_price_per_gb)
        return Decimal(self.config.wallet_price_per_gb)

    def latest_snapshot(self, db: Session, reseller_id: int) -> Optional[ResellerUsageSnapshot]:
        return (
            db.query(ResellerUsageSnapshot)
            .filter(ResellerUsageSnapshot.reseller_id == reseller_id)
            .order_by(ResellerUsageSnapshot.measured_at.desc(), ResellerUsageSnapshot.id.desc())
            .first()
        )

    def last_charge_snapshot(self, db: Session, reseller_id: int) -> Optional[ResellerUsageSnapshot]:
        return (
            db.query(ResellerUsageSnapshot)
            .filter(
                ResellerUsageSnapshot.reseller_id == reseller_id,
                ResellerUsageSnapshot.charge_applied.is_(True),
            )
            .order_by(ResellerUsageSnapshot.measured_at.desc(), ResellerUsageSnapshot.id.desc())
            .first()
        )

    def usage_delta(self, db: Session, reseller: Reseller):
        current_total = reseller_total_usage(reseller)
        baseline = self.latest_snapshot(db, reseller.id)
        if baseline is None:
            return current_total, None, current_total
        # Usage can shrink after a panel reset; that never produces a refund
        return current_total, baseline.total_bytes, max(0, current_total - int(baseline.total_bytes))

    def is_below_threshold(self, balance: Decimal) -> bool:
        return Decimal(balance) <= Decimal(self.config.wallet_suspension_threshold)

    # Lock

    def acquire_lock(self, db: Session, reseller_id: int, now: Optional[datetime] = None) -> Optional[str]:
        now = now or utcnow()
        token = uuid.uuid4().hex
        try:
            db.query(WalletChargeLock).filter(
                WalletChargeLock.reseller_id == reseller_id,
                WalletChargeLock.expires_at <= now,
            ).delete(synchronize_session=False)
            db.add(WalletChargeLock(
                reseller_id=reseller_id,
                lock_token=token,
                acquired_at=now,
                expires_at=now + timedelta(seconds=self.config.wallet_charge_lock_ttl_seconds),
            ))
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        return token

    def release_lock(self, db: Session, reseller_id: int, token: str) -> None:
        try:
            db.query(WalletChargeLock).filter(
                WalletChargeLock.reseller_id == reseller_id,
                WalletChargeLock.lock_token == token,
            ).delete(synchronize_session=False)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to release wallet charge lock for reseller %s", reseller_id)

    def is_locked(self, db: Session, reseller_id: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return db.query(WalletChargeLock).filter(
            WalletChargeLock.reseller_id == reseller_id,
            WalletChargeLock.expires_at > now,
        ).first() is not None

    # Charging

    def charge_reseller(
        self,
        db: Session,
        reseller: Reseller,
        cycle_key: Optional[str] = None,
        force: bool = False,
        dry_run: bool = False,
        source: str = "cycle",
        now: Optional[datetime] = None,
    ) -> WalletChargeResult:
        """Charge a wallet reseller for usage since the last snapshot.

        Without ``force`` a reseller already charged in this cycle, or within
        the idempotency window, is skipped. ``dry_run`` reports the cost
        without taking the lock or changing anything.
        """
        now = now or utcnow()
        cycle_key = cycle_key or cycle_key_for(now)
        result = WalletChargeResult(reseller_id=reseller.id, status="skipped")

        if not self.config.wallet_charge_enabled:
            result.reason = "charging_disabled"
            return result
        if not reseller.is_wallet:
            result.reason = "not_wallet_type"
            return result
        if dry_run:
            return self.preview_charge(db, reseller)

        token = self.acquire_lock(db, reseller.id, now)
        if token is None:
            logger.warning("wallet_charge_lock_failed reseller_id=%s cycle=%s", reseller.id, cycle_key)
            result.status = "lock_failed"
            result.reason = "concurrent_execution"
            return result

        try:
            result = self._charge_locked(db, reseller, cycle_key, force, source, now)
        finally:
            self.release_lock(db, reseller.id, token)

        # Remote disables are slow; they run after the lock is released and only touch active configs
        if reseller.status == RESELLER_STATUS_SUSPENDED_WALLET and self.is_below_threshold(reseller.wallet_balance):
            batch = config_state_service.disable_reseller_configs(
                db, reseller, SuspensionReason.WALLET, REASON_WALLET_EXHAUSTED, self.executor,
                extra_meta={"disabled_by_wallet_suspension_cycle_at": cycle_key},
            )
            result.disabled_configs = batch.disabled
        return result

    def _charge_locked(
        self, db: Session, reseller: Reseller, cycle_key: str, force: bool, source: str, now: datetime
    ) -> WalletChargeResult:
        result = WalletChargeResult(reseller_id=reseller.id, status="skipped")

        if not force:
            same_cycle = (
                db.query(ResellerUsageSnapshot)
                .filter(
                    ResellerUsageSnapshot.reseller_id == reseller.id,
                    ResellerUsageSnapshot.cycle_key == cycle_key,
                    ResellerUsageSnapshot.charge_applied.is_(True),
                )
                .first()
            )
            if same_cycle is not None:
                result.reason = "cycle_already_charged"
                result.snapshot_id = same_cycle.id
                return result
            last_charge = self.last_charge_snapshot(db, reseller.id)
            window = timedelta(seconds=self.config.wallet_charge_idempotency_seconds)
            if last_charge is not None and now - last_charge.measured_at < window:
                result.reason = "recent_snapshot"
                result.snapshot_id = last_charge.id
                return result

        # Re-read the balance under a row lock where the database supports it
        locked = (
            db.query(Reseller)
            .filter(Reseller.id == reseller.id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        current_total, _, delta = self.usage_delta(db, locked)
        balance = Decimal(locked.wallet_balance or 0)
        result.current_balance = balance
        result.delta_bytes = delta

        if delta <= 0 or delta < self.config.wallet_minimum_delta_bytes:
            result.reason = "no_usage_delta" if delta <= 0 else "below_minimum_delta"
            result.suspended = self._suspend_if_exhausted(db, locked, balance, cycle_key)
            db.commit()
            return result

        price = self.price_per_gb(locked)
        cost = compute_cost(delta, price)
        new_balance = balance - cost
        try:
            snapshot = ResellerUsageSnapshot(
                reseller_id=locked.id,
                total_bytes=current_total,
                measured_at=now,
                cycle_key=cycle_key,
                charge_applied=True,
                meta={
                    "cycle_started_at": cycle_key,
                    "cycle_charge_applied": True,
                    "delta_bytes": delta,
                    "delta_gb": round(delta / BYTES_PER_GB, 6),
                    "cost": str(cost),
                    "price_per_gb": str(price),
                    "source": source,
                },
            )
            db.add(snapshot)
            db.flush()

            locked.wallet_balance = new_balance
            db.add(locked)
            db.add(Transaction(
                reseller_id=locked.id,
                transaction_type=TRANSACTION_TYPE_USAGE_CHARGE,
                amount=-cost,
                balance_after=new_balance,
                snapshot_id=snapshot.id,
                description=f"Usage charge for {delta} bytes at {price}/GB ({source})",
            ))
            audit_service.record_event(
                db, "wallet_charged", "reseller", locked.id, reason=source,
                meta={"cycle_key": cycle_key, "delta_bytes": delta, "cost": str(cost), "new_balance": str(new_balance)},
            )
            suspended = self._suspend_if_exhausted(db, locked, new_balance, cycle_key)
            db.commit()
            db.refresh(locked)
        except Exception as e:
            db.rollback()
            raise WalletChargeError(f"Error charging reseller {reseller.id}: {str(e)}")

        logger.info(
            "wallet_charge_applied reseller_id=%s delta_bytes=%d cost=%s new_balance=%s source=%s",
            locked.id, delta, cost, new_balance, source,
        )
        result.status = "charged"
        result.reason = None
        result.cost = cost
        result.price_per_gb = price
        result.new_balance = new_balance
        result.snapshot_id = snapshot.id
        result.suspended = suspended
        return result

    def _suspend_if_exhausted(self, db: Session, reseller: Reseller, balance: Decimal, cycle_key: str) -> bool:
        """Stage the suspended_wallet flip; committed by the caller with the charge."""
        if reseller.status != RESELLER_STATUS_ACTIVE or not self.is_below_threshold(balance):
            return False
        reseller.status = RESELLER_STATUS_SUSPENDED_WALLET
        db.add(reseller)
        audit_service.record_event(
            db, "reseller_suspended_wallet", "reseller", reseller.id, reason=REASON_WALLET_EXHAUSTED,
            meta={
                "wallet_balance": str(balance),
                "threshold": str(self.config.wallet_suspension_threshold),
                "cycle_key": cycle_key,
            },
        )
        logger.warning("reseller_suspended_wallet reseller_id=%s balance=%s", reseller.id, balance)
        return True

    def preview_charge(self, db: Session, reseller: Reseller) -> WalletChargeResult:
        _, _, delta = self.usage_delta(db, reseller)
        balance = Decimal(reseller.wallet_balance or 0)
        result = WalletChargeResult(
            reseller_id=reseller.id, status="skipped", delta_bytes=delta, current_balance=balance,
        )
        if delta <= 0:
            result.reason = "no_usage_delta"
            return result
        if delta < self.config.wallet_minimum_delta_bytes:
            result.reason = "below_minimum_delta"
            return result
        price = self.price_per_gb(reseller)
        result.status = "dry_run"
        result.price_per_gb = price
        result.cost = compute_cost(delta, price)
        result.new_balance = balance - result.cost
        result.suspended = reseller.status == RESELLER_STATUS_ACTIVE and self.is_below_threshold(result.new_balance)
        return result

    def charge_from_panel(self, db: Session, reseller: Reseller, action: str) -> WalletChargeResult:
        """Charge outstanding usage right away, e.g. before a panel-side action changes counters.

        Bypasses the idempotency window: the delta against the last snapshot
        is all that gets billed, so an immediate re-run charges nothing more.
        """
        return self.charge_reseller(db, reseller, force=True, source=f"panel:{action}")

    def settle_config(self, db: Session, config: ResellerConfig, action_type: str) -> Optional[WalletChargeResult]:
        """Final settlement before a config's live counter is reset or the config removed.

        Wallet resellers are charged first. The live usage is then moved into
        the settled counter, which keeps reseller totals (and the billing
        baseline) continuous.
        """
        reseller = config.reseller
        result = None
        if reseller.is_wallet:
            result = self.charge_reseller(db, reseller, force=True, source=f"final_settlement:{action_type}")
            if result.status == "lock_failed":
                raise WalletChargeError(f"Cannot settle config {config.id}: wallet charge already running")

        try:
            usage = int(config.usage_bytes or 0)
            config.settled_usage_bytes = config.settled_bytes + usage
            config.usage_bytes = 0
            meta = dict(config.meta or {})
            meta.pop("settled_usage_bytes", None)
            meta["last_settled_at"] = utcnow().isoformat()
            meta["last_settlement_action"] = action_type
            config.meta = meta
            db.add(config)
            audit_service.record_event(
                db, "config_usage_settled", "config", config.id, reason=action_type,
                meta={"settled_bytes": usage, "charge_status": result.status if result else None},
            )
            db.commit()
        except Exception as e:
            db.rollback()
            raise WalletServiceError(f"Error settling config {config.id}: {str(e)}")
        return result

    def diagnose(self, db: Session, reseller: Reseller) -> WalletDiagnosis:
        current_total, baseline, delta = self.usage_delta(db, reseller)
        price = self.price_per_gb(reseller)
        last_charge = self.last_charge_snapshot(db, reseller.id)
        flagged = {}
        for config in reseller.configs:
            flags = config_state_service.config_flags(config)
            for flag in (SuspensionReason.TRAFFIC_QUOTA, SuspensionReason.TIME_WINDOW, SuspensionReason.WALLET):
                if flags & flag:
                    flagged[flag.name.lower()] = flagged.get(flag.name.lower(), 0) + 1
        return WalletDiagnosis(
            reseller_id=reseller.id,
            status=reseller.status,
            wallet_balance=Decimal(reseller.wallet_balance or 0),
            price_per_gb=price,
            suspension_threshold=Decimal(self.config.wallet_suspension_threshold),
            current_total_bytes=current_total,
            baseline_total_bytes=baseline,
            pending_delta_bytes=delta,
            pending_cost=compute_cost(delta, price),
            last_charge_at=last_charge.measured_at if last_charge else None,
            lock_held=self.is_locked(db, reseller.id),
            flagged_configs=flagged,
        )
