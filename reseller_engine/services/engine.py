import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from reseller_engine.core.config import EngineConfig
from reseller_engine.db.models.reseller import (
    RESELLER_STATUS_ACTIVE,
    RESELLER_TYPE_TRAFFIC,
    RESELLER_TYPE_WALLET,
    Reseller,
)
from reseller_engine.schemas.outcomes import (
    ReenableSummary,
    UsageSyncSummary,
    WalletChargeCycleSummary,
    WalletChargeResult,
)
from reseller_engine.services.panel_service import PanelClientFactory, build_panel_client
from reseller_engine.services.quota_enforcement_service import QuotaEnforcer
from reseller_engine.services.reactivation_service import ReactivationEngine
from reseller_engine.services.remote_operation_service import RemoteOperationExecutor
from reseller_engine.services.usage_aggregation_service import UsageAggregator
from reseller_engine.services.wallet_charging_service import WalletChargingEngine, cycle_key_for
from reseller_engine.utils.clock import utcnow

logger = logging.getLogger("reseller_engine.engine")


@dataclass
class ResellerEngine:
    """The engine's components wired to one EngineConfig, plus the driver entry points."""

    config: EngineConfig
    executor: RemoteOperationExecutor
    aggregator: UsageAggregator
    enforcer: QuotaEnforcer
    wallet: WalletChargingEngine
    reactivation: ReactivationEngine

    def run_usage_sync(self, db: Session, reseller_id: Optional[int] = None) -> UsageSyncSummary:
        """Refresh usage of active traffic and wallet resellers and enforce traffic quotas."""
        summary = UsageSyncSummary()
        query = db.query(Reseller).filter(
            Reseller.status == RESELLER_STATUS_ACTIVE,
            Reseller.type.in_((RESELLER_TYPE_TRAFFIC, RESELLER_TYPE_WALLET)),
        )
        if reseller_id is not None:
            query = query.filter(Reseller.id == reseller_id)

        for reseller in query.order_by(Reseller.id).all():
            summary.resellers += 1
            try:
                summary.aggregation.append(self.aggregator.aggregate(db, reseller))
                # Wallet resellers are settled by the charge cycle instead
                if reseller.is_traffic:
                    enforcement = self.enforcer.evaluate(db, reseller)
                    summary.enforcement.append(enforcement)
                    if enforcement.status == "suspended":
                        summary.suspended += 1
            except Exception as e:
                db.rollback()
                logger.exception("Usage sync failed for reseller %s", reseller.id)
                summary.failed += 1
                summary.errors.append(f"Reseller {reseller.id}: {str(e)}")
        logger.info(
            "usage_sync_finished resellers=%d suspended=%d failed=%d",
            summary.resellers, summary.suspended, summary.failed,
        )
        return summary

    def run_wallet_charge_cycle(
        self,
        db: Session,
        cycle_key: Optional[str] = None,
        reseller_id: Optional[int] = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> WalletChargeCycleSummary:
        cycle_key = cycle_key or cycle_key_for(utcnow())
        summary = WalletChargeCycleSummary(cycle_key=cycle_key)
        query = db.query(Reseller).filter(Reseller.type == RESELLER_TYPE_WALLET)
        if reseller_id is not None:
            query = query.filter(Reseller.id == reseller_id)

        for reseller in query.order_by(Reseller.id).all():
            try:
                result = self.wallet.charge_reseller(db, reseller, cycle_key=cycle_key, force=force, dry_run=dry_run)
            except Exception as e:
                db.rollback()
                logger.exception("Wallet charge failed for reseller %s", reseller.id)
                result = WalletChargeResult(reseller_id=reseller.id, status="failed", reason=str(e))
            summary.results.append(result)
            if result.status == "charged":
                summary.charged += 1
                summary.total_cost += result.cost
            elif result.status == "dry_run":
                summary.previewed += 1
                summary.total_would_be_cost += result.cost
            elif result.status == "lock_failed":
                summary.lock_failed += 1
            elif result.status == "failed":
                summary.failed += 1
            else:
                summary.skipped += 1
            if result.suspended and result.status != "dry_run":
                summary.suspended += 1
        logger.info(
            "wallet_charge_cycle_finished cycle=%s charged=%d previewed=%d skipped=%d lock_failed=%d "
            "failed=%d suspended=%d total_cost=%s",
            cycle_key, summary.charged, summary.previewed, summary.skipped, summary.lock_failed,
            summary.failed, summary.suspended, summary.total_cost,
        )
        return summary

    def run_reenable(
        self,
        db: Session,
        reseller_id: Optional[int] = None,
        reason: str = "traffic",
        actor_type: str = "system",
        actor_id: Optional[int] = None,
    ) -> ReenableSummary:
        return self.reactivation.sweep(db, reason, reseller_id=reseller_id, actor_type=actor_type, actor_id=actor_id)


def build_engine(
    config: Optional[EngineConfig] = None,
    client_factory: PanelClientFactory = build_panel_client,
    sleep: Optional[Callable[[float], None]] = None,
) -> ResellerEngine:
    config = config or EngineConfig.from_settings()
    executor_kwargs = {"client_factory": client_factory}
    if sleep is not None:
        executor_kwargs["sleep"] = sleep
    executor = RemoteOperationExecutor(**executor_kwargs)
    enforcer = QuotaEnforcer(config, executor)
    return ResellerEngine(
        config=config,
        executor=executor,
        aggregator=UsageAggregator(config, executor),
        enforcer=enforcer,
        wallet=WalletChargingEngine(config, executor),
        reactivation=ReactivationEngine(config, executor, enforcer),
    )
