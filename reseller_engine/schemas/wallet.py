from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class WalletTopUpRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None


class WalletTopUpResponse(BaseModel):
    reseller_id: int
    wallet_balance: Decimal
    transaction_id: int
    reseller_status: str
    reactivation_status: Optional[str] = None
    enabled_configs: int = 0
