from sqlalchemy import Column, Integer, TIMESTAMP, func, ForeignKey, UniqueConstraint
from reseller_engine.db.base import Base


class ResellerPanelAccess(Base):
    __tablename__ = "reseller_panel_accesses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    reseller_id = Column(Integer, ForeignKey("resellers.id", ondelete="CASCADE"), nullable=False)
    panel_id = Column(Integer, ForeignKey("panels.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(TIMESTAMP, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("reseller_id", "panel_id", name="uq_reseller_panel_access"),
    )
