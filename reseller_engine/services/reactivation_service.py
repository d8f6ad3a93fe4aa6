import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from reseller_engine.core.config import EngineConfig
from reseller_engine.db.models.reseller import (
    RESELLER_STATUS_ACTIVE,
    RESELLER_STATUS_SUSPENDED,
    RESELLER_STATUS_SUSPENDED_WALLET,
    RESELLER_TYPE_TRAFFIC,
    RESELLER_TYPE_WALLET,
    Reseller,
)
from reseller_engine.db.models.reseller_config import (
    CONFIG_STATUS_DISABLED,
    ResellerConfig,
    SuspensionReason,
)
from reseller_engine.schemas.outcomes import ReactivationResult, ReenableSummary
from reseller_engine.services import audit_service, config_state_service
from reseller_engine.services.quota_enforcement_service import QuotaEnforcer
from reseller_engine.services.remote_operation_service import RemoteOperationExecutor

logger = logging.getLogger("reseller_engine.reactivation")

REASON_TAG_FLAGS: Dict[str, SuspensionReason] = {
    "traffic": SuspensionReason.TRAFFIC_QUOTA | SuspensionReason.TIME_WINDOW,
    "quota": SuspensionReason.TRAFFIC_QUOTA,
    "window": SuspensionReason.TIME_WINDOW,
    "wallet": SuspensionReason.WALLET,
}
REASON_TAGS = tuple(REASON_TAG_FLAGS)

# Legacy disabled configs are scanned in id order, this many rows per query
SCAN_CHUNK_SIZE = 50


class ReactivationError(Exception):
    pass


def flags_for(reason: str) -> SuspensionReason:
    try:
        return REASON_TAG_FLAGS[reason]
    except KeyError:
        raise ReactivationError(f"Unknown reactivation reason {reason!r}; expected one of {', '.join(REASON_TAGS)}")


def is_wallet_reason(reason: str) -> bool:
    return reason == "wallet"


class ReactivationEngine:
    def __init__(self, config: EngineConfig, executor: RemoteOperationExecutor, enforcer: QuotaEnforcer):
        self.config = config
        self.executor = executor
        self.enforcer = enforcer

    def find_suspended_configs(self, db: Session, reseller: Reseller, reason: str) -> List[ResellerConfig]:
        """Disabled configs of the reseller that were cut off for ``reason``.

        Union of the structured flag column and a scan for markers left in
        ``meta`` by older code, deduplicated by id.
        """
        flags = flags_for(reason)
        found: Dict[int, ResellerConfig] = {}

        flagged = (
            db.query(ResellerConfig)
            .filter(
                ResellerConfig.reseller_id == reseller.id,
                ResellerConfig.status == CONFIG_STATUS_DISABLED,
                ResellerConfig.suspension_flags.op("&")(int(flags)) != 0,
            )
            .order_by(ResellerConfig.id)
            .all()
        )
        for config in flagged:
            found[config.id] = config

        last_id = 0
        while True:
            chunk = (
                db.query(ResellerConfig)
                .filter(
                    ResellerConfig.reseller_id == reseller.id,
                    ResellerConfig.status == CONFIG_STATUS_DISABLED,
                    ResellerConfig.id > last_id,
                )
                .order_by(ResellerConfig.id)
                .limit(SCAN_CHUNK_SIZE)
                .all()
            )
            if not chunk:
                break
            for config in chunk:
                last_id = config.id
                if config.id in found:
                    continue
                if self._has_legacy_marker(config, reseller, reason, flags):
                    found[config.id] = config

        return [found[config_id] for config_id in sorted(found)]

    @staticmethod
    def _has_legacy_marker(config: ResellerConfig, reseller: Reseller, reason: str, flags: SuspensionReason) -> bool:
        meta = config.meta or {}
        if config_state_service.legacy_flags(meta) & flags:
            return True
        # The oldest rows only recorded who disabled them, never why
        if reason != "traffic" or "disable_reason" in meta:
            return False
        try:
            return int(meta.get("disabled_by_reseller_id")) == reseller.id
        except (TypeError, ValueError):
            return False

    def is_eligible(self, reseller: Reseller, reason: str) -> bool:
        if is_wallet_reason(reason):
            return Decimal(reseller.wallet_balance or 0) > Decimal(self.config.wallet_suspension_threshold)
        return self.enforcer.is_within_limits(reseller)

    def _suspended_status_for(self, reason: str) -> str:
        return RESELLER_STATUS_SUSPENDED_WALLET if is_wallet_reason(reason) else RESELLER_STATUS_SUSPENDED

    def _activate_reseller(self, db: Session, reseller: Reseller, reason: str, actor_type: str, actor_id: Optional[int]) -> bool:
        if reseller.status != self._suspended_status_for(reason):
            return False
        previous = reseller.status
        reseller.status = RESELLER_STATUS_ACTIVE
        db.add(reseller)
        audit_service.record_event(
            db, "reseller_activated", "reseller", reseller.id,
            reason="wallet_balance_recovered" if is_wallet_reason(reason) else "reseller_recovered",
            meta={"previous_status": previous, "reactivation_reason": reason},
            actor_type=actor_type, actor_id=actor_id,
        )
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(reseller)
        return True

    def reenable_configs(
        self, db: Session, reseller: Reseller, reason: str,
        actor_type: str = "system", actor_id: Optional[int] = None,
    ) -> ReactivationResult:
        result = ReactivationResult(reseller_id=reseller.id, reason=reason, status="nothing_to_do")
        configs = self.find_suspended_configs(db, reseller, reason)
        result.found = len(configs)
        reason_code = "wallet_recharged" if is_wallet_reason(reason) else "reseller_recovered"

        pool = self.executor.new_client_pool()
        for index, config in enumerate(configs):
            try:
                outcome = config_state_service.enable_config(
                    db, config, reason_code, self.executor, pool,
                    operation_index=index, actor_type=actor_type, actor_id=actor_id,
                )
            except Exception:
                db.rollback()
                logger.exception("Failed to re-enable config %s of reseller %s", config.id, reseller.id)
                result.failed += 1
                continue
            result.outcomes.append(outcome)
            if outcome.success:
                result.enabled += 1
            else:
                result.failed += 1

        if result.found:
            if not result.failed:
                result.status = "reactivated"
            elif result.enabled:
                result.status = "partial"
            else:
                result.status = "failed"
        return result

    def reactivate_reseller(
        self,
        db: Session,
        reseller: Reseller,
        reason: str,
        trusted: bool = False,
        actor_type: str = "system",
        actor_id: Optional[int] = None,
    ) -> ReactivationResult:
        """Flip a recovered reseller back to active and re-enable its suspended configs.

        ``trusted`` skips the quota/window check for traffic reasons (an
        operator asked for this reseller explicitly). Wallet reactivation
        always requires the balance to be above the suspension threshold.
        """
        flags_for(reason)
        if (is_wallet_reason(reason) or not trusted) and not self.is_eligible(reseller, reason):
            logger.info("Reseller %s not eligible for %s reactivation", reseller.id, reason)
            return ReactivationResult(reseller_id=reseller.id, reason=reason, status="not_eligible")

        reactivated = self._activate_reseller(db, reseller, reason, actor_type, actor_id)
        result = self.reenable_configs(db, reseller, reason, actor_type=actor_type, actor_id=actor_id)
        result.reseller_reactivated = reactivated
        if reactivated and result.status == "nothing_to_do":
            result.status = "reactivated"
        logger.info(
            "reseller_reactivation reseller_id=%s reason=%s status=%s found=%d enabled=%d failed=%d",
            reseller.id, reason, result.status, result.found, result.enabled, result.failed,
        )
        return result

    def candidate_resellers(self, db: Session, reason: str) -> List[Reseller]:
        flags = flags_for(reason)
        reseller_type = RESELLER_TYPE_WALLET if is_wallet_reason(reason) else RESELLER_TYPE_TRAFFIC
        suspended = (
            db.query(Reseller)
            .filter(Reseller.type == reseller_type, Reseller.status == self._suspended_status_for(reason))
            .order_by(Reseller.id)
            .all()
        )
        # Active resellers can still hold flagged configs when an earlier enable failed
        with_leftovers = (
            db.query(Reseller)
            .join(ResellerConfig, ResellerConfig.reseller_id == Reseller.id)
            .filter(
                Reseller.type == reseller_type,
                Reseller.status == RESELLER_STATUS_ACTIVE,
                ResellerConfig.status == CONFIG_STATUS_DISABLED,
                ResellerConfig.suspension_flags.op("&")(int(flags)) != 0,
            )
            .distinct()
            .order_by(Reseller.id)
            .all()
        )
        candidates = {reseller.id: reseller for reseller in suspended + with_leftovers}
        return [candidates[reseller_id] for reseller_id in sorted(candidates) if self.is_eligible(candidates[reseller_id], reason)]

    def sweep(
        self,
        db: Session,
        reason: str,
        reseller_id: Optional[int] = None,
        actor_type: str = "system",
        actor_id: Optional[int] = None,
    ) -> ReenableSummary:
        flags_for(reason)
        summary = ReenableSummary(reason=reason)
        if reseller_id is not None:
            reseller = db.query(Reseller).filter(Reseller.id == reseller_id).first()
            if reseller is None:
                raise ReactivationError(f"Reseller with ID {reseller_id} not found.")
            resellers = [reseller]
        else:
            resellers = self.candidate_resellers(db, reason)

        for reseller in resellers:
            try:
                result = self.reactivate_reseller(
                    db, reseller, reason, trusted=reseller_id is not None,
                    actor_type=actor_type, actor_id=actor_id,
                )
            except Exception:
                db.rollback()
                logger.exception("Reactivation failed for reseller %s", reseller.id)
                result = ReactivationResult(reseller_id=reseller.id, reason=reason, status="error")
                result.failed += 1
            summary.results.append(result)
            summary.enabled += result.enabled
            summary.failed += result.failed
        summary.resellers = len(summary.results)
        return summary
