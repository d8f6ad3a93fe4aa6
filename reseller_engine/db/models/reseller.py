from sqlalchemy import BigInteger, Column, DateTime, DECIMAL, ForeignKey, Integer, String, TIMESTAMP, func
from sqlalchemy.orm import relationship
from reseller_engine.db.base import Base

RESELLER_TYPE_TRAFFIC = "traffic"
RESELLER_TYPE_WALLET = "wallet"
RESELLER_TYPE_PLAN = "plan"

RESELLER_STATUS_ACTIVE = "active"
RESELLER_STATUS_SUSPENDED = "suspended"
RESELLER_STATUS_SUSPENDED_WALLET = "suspended_wallet"


class Reseller(Base):
    __tablename__ = "resellers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(255), unique=True, index=True, nullable=False)
    type = Column(String(16), nullable=False, server_default=RESELLER_TYPE_TRAFFIC, index=True)
    status = Column(String(32), nullable=False, server_default=RESELLER_STATUS_ACTIVE, index=True)
    # Legacy resellers predate multi-panel access and only carry this
    primary_panel_id = Column(Integer, ForeignKey("panels.id", ondelete="SET NULL"), nullable=True)

    traffic_total_bytes = Column(BigInteger, nullable=False, default=0)
    traffic_used_bytes = Column(BigInteger, nullable=False, default=0)
    admin_forgiven_bytes = Column(BigInteger, nullable=False, default=0)
    window_starts_at = Column(DateTime, nullable=True)
    window_ends_at = Column(DateTime, nullable=True)

    wallet_balance = Column(DECIMAL(12, 2), nullable=False, default=0)  # May go negative
    wallet_price_per_gb = Column(DECIMAL(12, 2), nullable=True)  # Overrides the global price

    created_at = Column(TIMESTAMP, server_default=func.now(), nullable=False)
    updated_at = Column(
        TIMESTAMP,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    panels = relationship(
        "Panel",
        secondary="reseller_panel_accesses",
        back_populates="resellers",
        lazy="selectin"
    )
    primary_panel = relationship("Panel", foreign_keys=[primary_panel_id])

    configs = relationship(
        "ResellerConfig",
        back_populates="reseller",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    transactions = relationship(
        "Transaction",
        back_populates="reseller",
        cascade="all, delete-orphan"
    )

    @property
    def is_wallet(self) -> bool:
        return self.type == RESELLER_TYPE_WALLET

    @property
    def is_traffic(self) -> bool:
        return self.type == RESELLER_TYPE_TRAFFIC
