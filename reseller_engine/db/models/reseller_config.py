import enum

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Integer, String, TIMESTAMP, func
from sqlalchemy.orm import relationship
from reseller_engine.db.base import Base

CONFIG_STATUS_ACTIVE = "active"
CONFIG_STATUS_DISABLED = "disabled"
CONFIG_STATUS_EXPIRED = "expired"


class SuspensionReason(enum.IntFlag):
    """Why a config was disabled by the engine. Stored as a bitset so reasons stack."""

    NONE = 0
    TRAFFIC_QUOTA = 1
    TIME_WINDOW = 2
    WALLET = 4


# Marker keys written into `meta` by older code paths; still honoured when reactivating.
LEGACY_MARKER_KEYS = {
    SuspensionReason.TRAFFIC_QUOTA: "disabled_by_reseller_suspension",
    SuspensionReason.TIME_WINDOW: "suspended_by_time_window",
    SuspensionReason.WALLET: "disabled_by_wallet_suspension",
}


class ResellerConfig(Base):
    __tablename__ = "reseller_configs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    reseller_id = Column(Integer, ForeignKey("resellers.id", ondelete="CASCADE"), nullable=False, index=True)
    panel_id = Column(Integer, ForeignKey("panels.id", ondelete="SET NULL"), nullable=True, index=True)
    panel_type = Column(String(32), nullable=True)  # Copied from the panel at provisioning time
    panel_user_id = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, server_default=CONFIG_STATUS_ACTIVE, index=True)

    usage_bytes = Column(BigInteger, nullable=False, default=0)
    settled_usage_bytes = Column(BigInteger, nullable=False, default=0)
    traffic_limit_bytes = Column(BigInteger, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    disabled_at = Column(DateTime, nullable=True)

    suspension_flags = Column(Integer, nullable=False, default=0, index=True)
    meta = Column(JSON, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now(), nullable=False)
    updated_at = Column(
        TIMESTAMP,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    reseller = relationship("Reseller", back_populates="configs")
    panel = relationship("Panel", lazy="selectin")

    @property
    def total_usage_bytes(self) -> int:
        """Live usage plus usage settled before a traffic reset."""
        return int(self.usage_bytes or 0) + self.settled_bytes

    @property
    def settled_bytes(self) -> int:
        settled = int(self.settled_usage_bytes or 0)
        if not settled and self.meta:
            # Older rows kept the settled counter in meta
            legacy = self.meta.get("settled_usage_bytes")
            if isinstance(legacy, (int, float)) or (isinstance(legacy, str) and legacy.isdigit()):
                settled = int(legacy)
        return settled
