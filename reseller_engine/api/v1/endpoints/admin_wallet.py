from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from reseller_engine.api.v1.endpoints.admin_auth import require_admin
from reseller_engine.api.v1.endpoints.deps import get_engine
from reseller_engine.db.session import get_db
from reseller_engine.schemas.wallet import WalletTopUpRequest, WalletTopUpResponse
from reseller_engine.services import wallet_service
from reseller_engine.services.engine import ResellerEngine
from reseller_engine.services.wallet_charging_service import WalletServiceError

router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/resellers/{reseller_id}/top-up", response_model=WalletTopUpResponse)
def top_up_reseller_wallet(
    reseller_id: int,
    top_up_in: WalletTopUpRequest,
    db: Session = Depends(get_db),
    engine: ResellerEngine = Depends(get_engine),
):
    """
    Credit a wallet reseller. Wallet-suspended resellers whose balance now
    clears the suspension threshold are reactivated in the same request.
    """
    try:
        db_reseller, created_tx, reactivation = wallet_service.top_up_wallet(
            db,
            reseller_id=reseller_id,
            amount=top_up_in.amount,
            reactivation=engine.reactivation,
            description=top_up_in.description,
        )
    except WalletServiceError as e:
        detail = str(e)
        code = status.HTTP_404_NOT_FOUND if "not found" in detail else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=detail)

    return WalletTopUpResponse(
        reseller_id=db_reseller.id,
        wallet_balance=db_reseller.wallet_balance,
        transaction_id=created_tx.id,
        reseller_status=db_reseller.status,
        reactivation_status=reactivation.status if reactivation else None,
        enabled_configs=reactivation.enabled if reactivation else 0,
    )
