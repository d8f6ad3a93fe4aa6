import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from reseller_engine.core.config import EngineConfig
from reseller_engine.db.models.panel import Panel
from reseller_engine.db.models.panel_usage_snapshot import ResellerPanelUsageSnapshot
from reseller_engine.db.models.reseller import Reseller
from reseller_engine.db.models.reseller_config import (
    CONFIG_STATUS_ACTIVE,
    CONFIG_STATUS_DISABLED,
    ResellerConfig,
)
from reseller_engine.schemas.outcomes import PanelUsageResult, UsageAggregationResult
from reseller_engine.services.panel_service import PanelClientPool
from reseller_engine.services.remote_operation_service import RemoteOperationExecutor
from reseller_engine.utils.clock import utcnow

logger = logging.getLogger("reseller_engine.usage")

# Disabled configs still count: they may have been used before they were cut off
AGGREGATED_CONFIG_STATUSES = (CONFIG_STATUS_ACTIVE, CONFIG_STATUS_DISABLED)


def effective_used_bytes(total_bytes: int, forgiven_bytes: Optional[int]) -> int:
    return max(0, int(total_bytes) - int(forgiven_bytes or 0))


def reseller_total_usage(reseller: Reseller) -> int:
    """Sum of live and settled usage over all of the reseller's configs."""
    return sum(config.total_usage_bytes for config in reseller.configs)


class UsageAggregator:
    def __init__(self, config: EngineConfig, executor: RemoteOperationExecutor):
        self.config = config
        self.executor = executor

    def reseller_panels(self, reseller: Reseller) -> List[Panel]:
        if reseller.panels:
            return list(reseller.panels)
        if reseller.primary_panel is not None:
            return [reseller.primary_panel]
        return []

    def _read_usage(self, config: ResellerConfig, pool: PanelClientPool) -> Optional[int]:
        try:
            return pool.get(config.panel).get_usage(config.panel_user_id)
        except Exception as e:
            logger.warning("Usage read failed for config %s (%s): %s", config.id, config.panel_user_id, e)
            return None

    def aggregate_panel(
        self, db: Session, reseller: Reseller, panel: Panel, pool: PanelClientPool, now: datetime
    ) -> PanelUsageResult:
        result = PanelUsageResult(panel_id=panel.id)
        configs = (
            db.query(ResellerConfig)
            .filter(
                ResellerConfig.reseller_id == reseller.id,
                ResellerConfig.panel_id == panel.id,
                ResellerConfig.status.in_(AGGREGATED_CONFIG_STATUSES),
            )
            .all()
        )
        active_count = 0
        for config in configs:
            if config.status == CONFIG_STATUS_ACTIVE:
                active_count += 1
            usage = self._read_usage(config, pool)
            if usage is None:
                result.read_failures += 1
                continue
            config.usage_bytes = usage
            db.add(config)
            result.total_usage_bytes += usage + config.settled_bytes
            result.config_count += 1

        snapshot = (
            db.query(ResellerPanelUsageSnapshot)
            .filter(
                ResellerPanelUsageSnapshot.reseller_id == reseller.id,
                ResellerPanelUsageSnapshot.panel_id == panel.id,
            )
            .first()
        )
        if snapshot is None:
            snapshot = ResellerPanelUsageSnapshot(reseller_id=reseller.id, panel_id=panel.id)
        snapshot.total_usage_bytes = result.total_usage_bytes
        snapshot.active_config_count = active_count
        snapshot.captured_at = now
        db.add(snapshot)
        db.commit()
        return result

    def update_total_usage(self, db: Session, reseller: Reseller, total_bytes: int) -> int:
        try:
            reseller.traffic_used_bytes = effective_used_bytes(total_bytes, reseller.admin_forgiven_bytes)
            db.add(reseller)
            db.commit()
            db.refresh(reseller)
        except Exception:
            db.rollback()
            raise
        return reseller.traffic_used_bytes

    def aggregate_multi_panel(self, db: Session, reseller: Reseller, now: Optional[datetime] = None) -> UsageAggregationResult:
        now = now or utcnow()
        result = UsageAggregationResult(reseller_id=reseller.id, mode="multi_panel")
        pool = self.executor.new_client_pool()
        for panel in self.reseller_panels(reseller):
            if not panel.is_active:
                logger.info("Skipping inactive panel %s for reseller %s", panel.id, reseller.id)
                continue
            try:
                panel_result = self.aggregate_panel(db, reseller, panel, pool, now)
            except Exception as e:
                db.rollback()
                logger.exception("Usage aggregation failed for reseller %s on panel %s", reseller.id, panel.id)
                panel_result = PanelUsageResult(panel_id=panel.id, error=str(e))
            result.panels.append(panel_result)
            result.read_failures += panel_result.read_failures
            result.total_bytes += panel_result.total_usage_bytes

        result.effective_used_bytes = self.update_total_usage(db, reseller, result.total_bytes)
        logger.info(
            "usage_aggregated reseller_id=%s mode=multi_panel panels=%d total_bytes=%d effective_bytes=%d",
            reseller.id, len(result.panels), result.total_bytes, result.effective_used_bytes,
        )
        return result

    def aggregate_legacy(self, db: Session, reseller: Reseller) -> UsageAggregationResult:
        """Single-panel mode: every active config is read through its own panel."""
        result = UsageAggregationResult(reseller_id=reseller.id, mode="legacy")
        pool = self.executor.new_client_pool()
        for config in reseller.configs:
            if config.status != CONFIG_STATUS_ACTIVE or config.panel is None:
                continue
            usage = self._read_usage(config, pool)
            if usage is None:
                result.read_failures += 1
                continue
            config.usage_bytes = usage
            db.add(config)
        db.commit()

        result.total_bytes = reseller_total_usage(reseller)
        result.effective_used_bytes = self.update_total_usage(db, reseller, result.total_bytes)
        logger.info(
            "usage_aggregated reseller_id=%s mode=legacy total_bytes=%d effective_bytes=%d",
            reseller.id, result.total_bytes, result.effective_used_bytes,
        )
        return result

    def aggregate(self, db: Session, reseller: Reseller) -> UsageAggregationResult:
        if self.config.multi_panel_usage_enabled:
            return self.aggregate_multi_panel(db, reseller)
        return self.aggregate_legacy(db, reseller)
