from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from reseller_engine.db.base import Base


class ResellerPanelUsageSnapshot(Base):
    __tablename__ = "reseller_panel_usage_snapshots"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    reseller_id = Column(Integer, ForeignKey("resellers.id", ondelete="CASCADE"), nullable=False)
    panel_id = Column(Integer, ForeignKey("panels.id", ondelete="CASCADE"), nullable=False)
    total_usage_bytes = Column(BigInteger, nullable=False, default=0)
    active_config_count = Column(Integer, nullable=False, default=0)
    captured_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("reseller_id", "panel_id", name="uq_reseller_panel_usage_snapshot"),
    )
