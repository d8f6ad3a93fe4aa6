from sqlalchemy import JSON, Column, ForeignKey, Integer, String, TIMESTAMP, func
from reseller_engine.db.base import Base


class ResellerConfigEvent(Base):
    __tablename__ = "reseller_config_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    config_id = Column(Integer, ForeignKey("reseller_configs.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(64), nullable=False, index=True)  # auto_disabled, auto_enabled, auto_enable_failed, ...
    meta = Column(JSON, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now(), nullable=False, index=True)
