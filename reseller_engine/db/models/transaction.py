from sqlalchemy import Column, Integer, String, TIMESTAMP, func, DECIMAL, TEXT, ForeignKey
from sqlalchemy.orm import relationship
from reseller_engine.db.base import Base

TRANSACTION_TYPE_USAGE_CHARGE = "wallet_usage_charge"
TRANSACTION_TYPE_TOP_UP = "wallet_top_up"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    reseller_id = Column(Integer, ForeignKey("resellers.id", ondelete="CASCADE"), nullable=False)
    transaction_type = Column(String(50), nullable=False, index=True)
    amount = Column(DECIMAL(12, 2), nullable=False)  # Negative for charges
    balance_after = Column(DECIMAL(12, 2), nullable=True)
    snapshot_id = Column(Integer, ForeignKey("reseller_usage_snapshots.id", ondelete="SET NULL"), nullable=True)
    description = Column(TEXT, nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now(), nullable=False, index=True)

    reseller = relationship("Reseller", back_populates="transactions")
