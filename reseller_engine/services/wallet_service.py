import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from reseller_engine.db.models.reseller import RESELLER_STATUS_SUSPENDED_WALLET, Reseller
from reseller_engine.db.models.transaction import TRANSACTION_TYPE_TOP_UP, Transaction
from reseller_engine.schemas.outcomes import ReactivationResult
from reseller_engine.services import audit_service
from reseller_engine.services.reactivation_service import ReactivationEngine
from reseller_engine.services.wallet_charging_service import WalletServiceError

logger = logging.getLogger("reseller_engine.wallet")


def get_reseller(db: Session, reseller_id: int) -> Optional[Reseller]:
    return db.query(Reseller).filter(Reseller.id == reseller_id).first()


def top_up_wallet(
    db: Session,
    reseller_id: int,
    amount: Decimal,
    reactivation: ReactivationEngine,
    description: Optional[str] = None,
    actor_id: Optional[int] = None,
) -> Tuple[Reseller, Transaction, Optional[ReactivationResult]]:
    """
    Credits a reseller's wallet.
    - Creates a 'wallet_top_up' transaction.
    - Updates the wallet balance.
    Both in a single database transaction. A wallet-suspended reseller whose
    balance now clears the threshold is reactivated afterwards.
    """
    amount = Decimal(amount)
    if amount <= 0:
        raise WalletServiceError("Top-up amount must be positive.")

    db_reseller = get_reseller(db, reseller_id)
    if not db_reseller:
        raise WalletServiceError(f"Reseller with ID {reseller_id} not found.")
    if not db_reseller.is_wallet:
        raise WalletServiceError(f"Reseller {db_reseller.username} is not a wallet reseller.")

    try:
        # A charge may have committed since the first read; take the row lock and reload
        db_reseller = (
            db.query(Reseller)
            .filter(Reseller.id == reseller_id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        db_reseller.wallet_balance = Decimal(db_reseller.wallet_balance or 0) + amount
        created_tx = Transaction(
            reseller_id=db_reseller.id,
            transaction_type=TRANSACTION_TYPE_TOP_UP,
            amount=amount,
            balance_after=db_reseller.wallet_balance,
            description=description or f"Wallet top-up by admin ID: {actor_id}.",
        )
        db.add(created_tx)
        db.add(db_reseller)
        audit_service.record_event(
            db, "wallet_topped_up", "reseller", db_reseller.id, reason="top_up",
            meta={"amount": str(amount), "new_balance": str(db_reseller.wallet_balance)},
            actor_type="admin" if actor_id is not None else "system", actor_id=actor_id,
        )
        db.commit()
        db.refresh(db_reseller)
        db.refresh(created_tx)
    except Exception as e:
        db.rollback()
        raise WalletServiceError(f"Error topping up wallet: {str(e)}")

    logger.info("wallet_top_up reseller_id=%s amount=%s new_balance=%s", db_reseller.id, amount, db_reseller.wallet_balance)

    reactivation_result = None
    if (
        db_reseller.status == RESELLER_STATUS_SUSPENDED_WALLET
        and reactivation.config.wallet_auto_reenable_enabled
        and reactivation.is_eligible(db_reseller, "wallet")
    ):
        reactivation_result = reactivation.reactivate_reseller(
            db, db_reseller, "wallet",
            actor_type="admin" if actor_id is not None else "system", actor_id=actor_id,
        )
    return db_reseller, created_tx, reactivation_result
