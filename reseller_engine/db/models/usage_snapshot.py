from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import expression
from reseller_engine.db.base import Base


class ResellerUsageSnapshot(Base):
    """Append-only usage measurement; the newest row is the wallet billing baseline."""

    __tablename__ = "reseller_usage_snapshots"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    reseller_id = Column(Integer, ForeignKey("resellers.id", ondelete="CASCADE"), nullable=False, index=True)
    total_bytes = Column(BigInteger, nullable=False)
    measured_at = Column(DateTime, nullable=False, index=True)
    cycle_key = Column(String(64), nullable=True, index=True)
    charge_applied = Column(Boolean, nullable=False, server_default=expression.false(), default=False)
    meta = Column(JSON, nullable=True)
