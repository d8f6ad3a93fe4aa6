from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from reseller_engine.api.v1.endpoints.admin_auth import require_admin
from reseller_engine.api.v1.endpoints.deps import get_engine
from reseller_engine.db.session import get_db
from reseller_engine.schemas.outcomes import (
    ReenableSummary,
    UsageSyncSummary,
    WalletChargeCycleSummary,
    WalletChargeResult,
    WalletDiagnosis,
)
from reseller_engine.services.engine import ResellerEngine
from reseller_engine.services.reactivation_service import REASON_TAGS, ReactivationError
from reseller_engine.services.wallet_charging_service import WalletServiceError
from reseller_engine.services.wallet_service import get_reseller


router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/usage-sync", response_model=UsageSyncSummary)
def trigger_usage_sync(
    reseller_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    engine: ResellerEngine = Depends(get_engine),
):
    """Aggregate usage for active resellers and enforce traffic quotas."""
    return engine.run_usage_sync(db, reseller_id=reseller_id)


@router.post("/wallet-charge", response_model=WalletChargeCycleSummary)
def trigger_wallet_charge_cycle(
    cycle_key: Optional[str] = Query(None, max_length=64),
    db: Session = Depends(get_db),
    engine: ResellerEngine = Depends(get_engine),
):
    return engine.run_wallet_charge_cycle(db, cycle_key=cycle_key)


@router.post("/resellers/{reseller_id}/wallet-charge", response_model=WalletChargeResult)
def charge_single_reseller(
    reseller_id: int,
    dry_run: bool = Query(False),
    force: bool = Query(False),
    db: Session = Depends(get_db),
    engine: ResellerEngine = Depends(get_engine),
):
    db_reseller = get_reseller(db, reseller_id)
    if not db_reseller:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reseller not found.")
    try:
        return engine.wallet.charge_reseller(db, db_reseller, force=force, dry_run=dry_run, source="admin")
    except WalletServiceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.get("/resellers/{reseller_id}/wallet-diagnosis", response_model=WalletDiagnosis)
def diagnose_reseller_wallet(
    reseller_id: int,
    db: Session = Depends(get_db),
    engine: ResellerEngine = Depends(get_engine),
):
    db_reseller = get_reseller(db, reseller_id)
    if not db_reseller:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reseller not found.")
    return engine.wallet.diagnose(db, db_reseller)


@router.post("/reenable", response_model=ReenableSummary)
def trigger_reenable(
    reason: str = Query("traffic", description=f"One of: {', '.join(REASON_TAGS)}"),
    reseller_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    engine: ResellerEngine = Depends(get_engine),
):
    if reason not in REASON_TAGS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown reason: {reason}")
    try:
        return engine.run_reenable(db, reseller_id=reseller_id, reason=reason, actor_type="admin")
    except ReactivationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
