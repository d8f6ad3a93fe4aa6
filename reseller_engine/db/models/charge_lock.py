from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from reseller_engine.db.base import Base


class WalletChargeLock(Base):
    """One row per reseller while a wallet charge is in flight.

    The primary key on reseller_id makes a second insert fail, which is how
    concurrent charge attempts are detected. Rows past ``expires_at`` are
    stale and may be taken over.
    """

    __tablename__ = "wallet_charge_locks"

    reseller_id = Column(Integer, ForeignKey("resellers.id", ondelete="CASCADE"), primary_key=True)
    lock_token = Column(String(64), nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
