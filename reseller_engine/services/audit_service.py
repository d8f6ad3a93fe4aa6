import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from reseller_engine.db.models.audit_log import AuditLog
from reseller_engine.db.models.config_event import ResellerConfigEvent

logger = logging.getLogger("reseller_engine.audit")


def record_event(
    db: Session,
    action: str,
    target_type: str,
    target_id: Optional[int],
    reason: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    actor_type: str = "system",
    actor_id: Optional[int] = None,
) -> AuditLog:
    """Stage an audit row. The caller commits it with the change it describes."""
    entry = AuditLog(
        action=action,
        target_type=target_type,
        target_id=target_id,
        reason=reason,
        meta=meta or {},
        actor_type=actor_type,
        actor_id=actor_id,
    )
    db.add(entry)
    logger.info("%s %s=%s reason=%s", action, target_type, target_id, reason)
    return entry


def record_config_event(db: Session, config_id: int, event_type: str, meta: Optional[Dict[str, Any]] = None) -> ResellerConfigEvent:
    event = ResellerConfigEvent(config_id=config_id, type=event_type, meta=meta or {})
    db.add(event)
    return event
