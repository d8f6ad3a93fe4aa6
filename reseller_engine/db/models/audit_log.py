from sqlalchemy import JSON, Column, Integer, String, TIMESTAMP, func
from reseller_engine.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    action = Column(String(64), nullable=False, index=True)
    target_type = Column(String(32), nullable=False)
    target_id = Column(Integer, nullable=True, index=True)
    reason = Column(String(64), nullable=True)
    meta = Column(JSON, nullable=True)
    actor_type = Column(String(32), nullable=False, server_default="system")
    actor_id = Column(Integer, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now(), nullable=False, index=True)
