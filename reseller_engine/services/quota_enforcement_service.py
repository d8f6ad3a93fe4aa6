import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from reseller_engine.core.config import EngineConfig
from reseller_engine.db.models.reseller import (
    RESELLER_STATUS_ACTIVE,
    RESELLER_STATUS_SUSPENDED,
    Reseller,
)
from reseller_engine.db.models.reseller_config import (
    CONFIG_STATUS_DISABLED,
    CONFIG_STATUS_EXPIRED,
    ResellerConfig,
    SuspensionReason,
)
from reseller_engine.schemas.outcomes import EnforcementResult
from reseller_engine.services import audit_service, config_state_service
from reseller_engine.services.remote_operation_service import RemoteOperationExecutor
from reseller_engine.utils.clock import start_of_day, utcnow

logger = logging.getLogger("reseller_engine.quota")

REASON_QUOTA_EXHAUSTED = "quota_exhausted"
REASON_WINDOW_EXPIRED = "window_expired"
REASON_CONFIG_TRAFFIC_EXCEEDED = "traffic_exceeded"
REASON_CONFIG_TIME_EXPIRED = "time_expired"

SUSPENSION_FLAGS = {
    REASON_QUOTA_EXHAUSTED: SuspensionReason.TRAFFIC_QUOTA,
    REASON_WINDOW_EXPIRED: SuspensionReason.TIME_WINDOW,
}


def apply_grace(limit_bytes: int, percent: float, grace_bytes: int) -> int:
    """Limit plus the larger of a percentage margin and a fixed byte margin."""
    limit_bytes = int(limit_bytes or 0)
    return limit_bytes + max(int(limit_bytes * percent / 100), int(grace_bytes))


def is_window_valid(reseller: Reseller, now: Optional[datetime] = None) -> bool:
    """An open-ended window is always valid; otherwise the end date's day is already outside it."""
    if reseller.window_ends_at is None:
        return True
    if reseller.window_starts_at is None:
        return False
    now = now or utcnow()
    return reseller.window_starts_at <= now < start_of_day(reseller.window_ends_at)


class QuotaEnforcer:
    def __init__(self, config: EngineConfig, executor: RemoteOperationExecutor):
        self.config = config
        self.executor = executor

    def effective_limit(self, reseller: Reseller) -> int:
        return apply_grace(
            reseller.traffic_total_bytes, self.config.reseller_grace_percent, self.config.reseller_grace_bytes
        )

    def has_remaining_traffic(self, reseller: Reseller) -> bool:
        return int(reseller.traffic_used_bytes or 0) < self.effective_limit(reseller)

    def breach_reason(self, reseller: Reseller, now: Optional[datetime] = None) -> Optional[str]:
        if not self.has_remaining_traffic(reseller):
            return REASON_QUOTA_EXHAUSTED
        if not is_window_valid(reseller, now):
            return REASON_WINDOW_EXPIRED
        return None

    def is_within_limits(self, reseller: Reseller, now: Optional[datetime] = None) -> bool:
        return self.breach_reason(reseller, now) is None

    def config_breach_reason(self, config: ResellerConfig, now: datetime) -> Optional[str]:
        if config.traffic_limit_bytes:
            limit = apply_grace(
                config.traffic_limit_bytes, self.config.config_grace_percent, self.config.config_grace_bytes
            )
            if int(config.usage_bytes or 0) >= limit:
                return REASON_CONFIG_TRAFFIC_EXCEEDED
        if config.expires_at is not None and now >= start_of_day(config.expires_at):
            return REASON_CONFIG_TIME_EXPIRED
        return None

    def enforce_config_limits(self, db: Session, reseller: Reseller, now: datetime) -> int:
        """Disable individual configs that ran past their own limit or expiry."""
        pool = self.executor.new_client_pool()
        disabled = 0
        for config in config_state_service.active_configs(reseller):
            reason = self.config_breach_reason(config, now)
            if reason is None:
                continue
            status = CONFIG_STATUS_EXPIRED if reason == REASON_CONFIG_TIME_EXPIRED else CONFIG_STATUS_DISABLED
            try:
                config_state_service.disable_config(
                    db, config, reason, self.executor, pool, operation_index=disabled, status=status,
                )
            except Exception:
                db.rollback()
                logger.exception("Failed to disable overrun config %s of reseller %s", config.id, reseller.id)
                continue
            disabled += 1
        return disabled

    def suspend(self, db: Session, reseller: Reseller, reason: str) -> None:
        reseller.status = RESELLER_STATUS_SUSPENDED
        db.add(reseller)
        audit_service.record_event(
            db, "reseller_suspended", "reseller", reseller.id, reason=reason,
            meta={
                "traffic_used_bytes": reseller.traffic_used_bytes,
                "traffic_total_bytes": reseller.traffic_total_bytes,
                "window_ends_at": reseller.window_ends_at.isoformat() if reseller.window_ends_at else None,
            },
        )
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(reseller)

    def evaluate(self, db: Session, reseller: Reseller, now: Optional[datetime] = None) -> EnforcementResult:
        now = now or utcnow()
        result = EnforcementResult(
            reseller_id=reseller.id,
            status="ok",
            effective_used_bytes=int(reseller.traffic_used_bytes or 0),
            effective_limit_bytes=self.effective_limit(reseller),
        )
        if not reseller.is_traffic:
            result.status = "skipped"
            result.reason = "not_traffic_type"
            return result
        if reseller.status != RESELLER_STATUS_ACTIVE:
            result.status = "already_suspended"
            return result

        if not self.config.allow_config_overrun:
            result.overrun_disabled_configs = self.enforce_config_limits(db, reseller, now)

        reason = self.breach_reason(reseller, now)
        if reason is None:
            return result

        self.suspend(db, reseller, reason)
        batch = config_state_service.disable_reseller_configs(
            db, reseller, SUSPENSION_FLAGS[reason], reason, self.executor,
        )
        result.status = "suspended"
        result.reason = reason
        result.disabled_configs = batch.disabled
        logger.info(
            "reseller_suspended reseller_id=%s reason=%s used=%d limit=%d disabled=%d",
            reseller.id, reason, result.effective_used_bytes, result.effective_limit_bytes, batch.disabled,
        )
        return result
