import enum
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from reseller_engine.db.models.reseller import Reseller
from reseller_engine.db.models.reseller_config import (
    CONFIG_STATUS_ACTIVE,
    CONFIG_STATUS_DISABLED,
    LEGACY_MARKER_KEYS,
    ResellerConfig,
    SuspensionReason,
)
from reseller_engine.schemas.outcomes import ConfigOperationOutcome, DisableBatchResult
from reseller_engine.services import audit_service
from reseller_engine.services.panel_service import PanelClientPool
from reseller_engine.services.remote_operation_service import RemoteOperationExecutor
from reseller_engine.utils.clock import utcnow

logger = logging.getLogger("reseller_engine.configs")


class CommitPolicy(str, enum.Enum):
    # Local state changes whatever the remote outcome was
    OPTIMISTIC = "optimistic"
    # Local state changes only after the remote operation succeeded
    REMOTE_GATED = "remote_gated"

    def allows_commit(self, remote_success: bool) -> bool:
        return self is CommitPolicy.OPTIMISTIC or remote_success


# Stopping billable usage locally matters more than agreeing with the panel.
DISABLE_POLICY = CommitPolicy.OPTIMISTIC
# A config must never read active while the account is still off on the panel.
ENABLE_POLICY = CommitPolicy.REMOTE_GATED

TRUTHY_MARKER_VALUES = (True, 1, "1", "true")

PROVENANCE_KEYS = (
    "disabled_by_reseller_id",
    "disabled_at",
    "disable_reason",
    "disabled_in_cycle",
) + tuple(f"{key}{suffix}" for key in LEGACY_MARKER_KEYS.values() for suffix in ("", "_reason", "_at", "_cycle_at"))


def is_truthy_marker(value: Any) -> bool:
    # Markers were written as bool, int and string over time
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true")
    return value in TRUTHY_MARKER_VALUES


def legacy_flags(meta: Optional[Dict[str, Any]]) -> SuspensionReason:
    flags = SuspensionReason.NONE
    if not meta:
        return flags
    for flag, key in LEGACY_MARKER_KEYS.items():
        if is_truthy_marker(meta.get(key)):
            flags |= flag
    return flags


def config_flags(config: ResellerConfig) -> SuspensionReason:
    """Structured flags merged with markers left in meta by older code."""
    return SuspensionReason(config.suspension_flags or 0) | legacy_flags(config.meta)


def mark_disabled(
    config: ResellerConfig,
    reason_code: str,
    reseller_id: int,
    flag: SuspensionReason = SuspensionReason.NONE,
    status: str = CONFIG_STATUS_DISABLED,
    now: Optional[datetime] = None,
    extra_meta: Optional[Dict[str, Any]] = None,
) -> None:
    now = now or utcnow()
    config.status = status
    config.disabled_at = now
    config.suspension_flags = int(SuspensionReason(config.suspension_flags or 0) | flag)
    meta = dict(config.meta or {})
    meta.update({
        "disabled_by_reseller_id": reseller_id,
        "disabled_at": now.isoformat(),
        "disable_reason": reason_code,
    })
    if extra_meta:
        meta.update(extra_meta)
    config.meta = meta


def mark_enabled(config: ResellerConfig, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    config.status = CONFIG_STATUS_ACTIVE
    config.disabled_at = None
    config.suspension_flags = int(SuspensionReason.NONE)
    meta = {key: value for key, value in (config.meta or {}).items() if key not in PROVENANCE_KEYS}
    meta["last_enabled_at"] = now.isoformat()
    config.meta = meta


def _operation_meta(config: ResellerConfig, reason_code: str, outcome: ConfigOperationOutcome) -> Dict[str, Any]:
    return {
        "reason": reason_code,
        "remote_success": outcome.success,
        "attempts": outcome.attempts,
        "last_error": outcome.last_error,
        "panel_id": config.panel_id,
        "panel_type_used": config.panel.panel_type if config.panel is not None else config.panel_type,
    }


def disable_config(
    db: Session,
    config: ResellerConfig,
    reason_code: str,
    executor: RemoteOperationExecutor,
    pool: PanelClientPool,
    operation_index: int = 0,
    flag: SuspensionReason = SuspensionReason.NONE,
    status: str = CONFIG_STATUS_DISABLED,
    extra_meta: Optional[Dict[str, Any]] = None,
) -> ConfigOperationOutcome:
    """Disable one config remotely and locally, then commit it with its event trail."""
    executor.apply_rate_limit(operation_index)
    remote = executor.disable_config(config, pool)
    outcome = ConfigOperationOutcome(
        config_id=config.id,
        panel_id=config.panel_id,
        success=remote.success,
        attempts=remote.attempts,
        last_error=remote.last_error,
    )
    if not remote.success:
        logger.warning(
            "Remote disable failed for config %s (%s) after %d attempts: %s",
            config.id, config.panel_user_id, remote.attempts, remote.last_error,
        )

    if DISABLE_POLICY.allows_commit(remote.success):
        mark_disabled(config, reason_code, config.reseller_id, flag=flag, status=status, extra_meta=extra_meta)
        db.add(config)
    event_meta = _operation_meta(config, reason_code, outcome)
    audit_service.record_config_event(db, config.id, "auto_disabled", event_meta)
    audit_service.record_event(
        db, "config_auto_disabled", "config", config.id, reason=reason_code, meta=event_meta,
    )
    db.commit()
    return outcome


def enable_config(
    db: Session,
    config: ResellerConfig,
    reason_code: str,
    executor: RemoteOperationExecutor,
    pool: PanelClientPool,
    operation_index: int = 0,
    actor_type: str = "system",
    actor_id: Optional[int] = None,
) -> ConfigOperationOutcome:
    """Enable one config remotely; the local row flips only when the panel agreed."""
    executor.apply_rate_limit(operation_index)
    remote = executor.enable_config(config, pool)
    outcome = ConfigOperationOutcome(
        config_id=config.id,
        panel_id=config.panel_id,
        success=remote.success,
        attempts=remote.attempts,
        last_error=remote.last_error,
    )
    event_meta = _operation_meta(config, reason_code, outcome)
    if ENABLE_POLICY.allows_commit(remote.success):
        mark_enabled(config)
        db.add(config)
        audit_service.record_config_event(db, config.id, "auto_enabled", event_meta)
        audit_service.record_event(
            db, "config_auto_enabled", "config", config.id, reason=reason_code, meta=event_meta,
            actor_type=actor_type, actor_id=actor_id,
        )
    else:
        logger.warning(
            "Remote enable failed for config %s (%s), leaving it disabled: %s",
            config.id, config.panel_user_id, remote.last_error,
        )
        audit_service.record_config_event(db, config.id, "auto_enable_failed", event_meta)
        audit_service.record_event(
            db, "config_auto_enable_failed", "config", config.id, reason=reason_code, meta=event_meta,
            actor_type=actor_type, actor_id=actor_id,
        )
    db.commit()
    return outcome


def active_configs(reseller: Reseller) -> List[ResellerConfig]:
    return [config for config in reseller.configs if config.status == CONFIG_STATUS_ACTIVE]


def disable_reseller_configs(
    db: Session,
    reseller: Reseller,
    flag: SuspensionReason,
    reason_code: str,
    executor: RemoteOperationExecutor,
    configs: Optional[Iterable[ResellerConfig]] = None,
    extra_meta: Optional[Dict[str, Any]] = None,
) -> DisableBatchResult:
    """Disable every active config of a suspended reseller.

    Each config is committed on its own, so one failure does not undo the
    configs already disabled before it.
    """
    result = DisableBatchResult(reseller_id=reseller.id, reason=reason_code)
    pool = executor.new_client_pool()
    targets = list(configs) if configs is not None else active_configs(reseller)
    for index, config in enumerate(targets):
        if config.status != CONFIG_STATUS_ACTIVE:
            result.skipped += 1
            continue
        try:
            outcome = disable_config(
                db, config, reason_code, executor, pool,
                operation_index=index, flag=flag, extra_meta=extra_meta,
            )
        except Exception:
            db.rollback()
            logger.exception("Failed to disable config %s of reseller %s", config.id, reseller.id)
            result.failed += 1
            continue
        result.outcomes.append(outcome)
        result.disabled += 1
        if not outcome.success:
            result.remote_failed += 1

    logger.info(
        "configs_disabled reseller_id=%s reason=%s disabled=%d remote_failed=%d failed=%d",
        reseller.id, reason_code, result.disabled, result.remote_failed, result.failed,
    )
    return result
