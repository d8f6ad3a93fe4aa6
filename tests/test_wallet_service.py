from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from reseller_engine.db.base import Base
from reseller_engine.db.models.panel import Panel
from reseller_engine.db.models.reseller import Reseller
from reseller_engine.db.models.reseller_config import ResellerConfig
from reseller_engine.db.models.transaction import Transaction
from reseller_engine.db.models.usage_snapshot import ResellerUsageSnapshot
from reseller_engine.services import wallet_service
from reseller_engine.utils.clock import utcnow
from reseller_engine.utils.encryption import encrypt_data

from tests.conftest import GIB


@pytest.fixture
def file_sessions(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'wallet.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def seed_wallet_reseller(session):
    panel = Panel(
        name="panel-1", panel_type="marzban", api_url="https://panel-1.example.com",
        admin_username="admin", encrypted_admin_password=encrypt_data("secret"),
    )
    reseller = Reseller(username="wallet-1", type="wallet", status="active", wallet_balance=Decimal("10000"))
    reseller.panels = [panel]
    session.add_all([panel, reseller])
    session.flush()
    session.add(ResellerConfig(
        reseller_id=reseller.id, panel_id=panel.id, panel_type=panel.panel_type,
        panel_user_id="w0", status="active", usage_bytes=6 * GIB,
    ))
    session.add(ResellerUsageSnapshot(
        reseller_id=reseller.id, total_bytes=5 * GIB, measured_at=utcnow() - timedelta(hours=1),
        cycle_key="earlier", charge_applied=True, meta={"source": "test"},
    ))
    session.commit()
    return reseller.id


def test_top_up_keeps_charge_committed_after_first_read(file_sessions, engine):
    setup = file_sessions()
    reseller_id = seed_wallet_reseller(setup)
    setup.close()

    top_up_session = file_sessions()
    charge_session = file_sessions()
    try:
        stale = wallet_service.get_reseller(top_up_session, reseller_id)
        assert stale.wallet_balance == Decimal("10000")

        charging = charge_session.query(Reseller).filter(Reseller.id == reseller_id).one()
        charged = engine.wallet.charge_reseller(charge_session, charging, cycle_key="c1")
        assert charged.status == "charged"
        assert charged.new_balance == Decimal("9000.00")

        db_reseller, tx, _ = wallet_service.top_up_wallet(
            top_up_session, reseller_id, Decimal("500"), engine.reactivation
        )
    finally:
        charge_session.close()

    try:
        assert db_reseller.wallet_balance == Decimal("9500.00")
        assert tx.balance_after == Decimal("9500.00")
        amounts = sorted(t.amount for t in top_up_session.query(Transaction).all())
        assert amounts == [Decimal("-1000.00"), Decimal("500.00")]
    finally:
        top_up_session.close()


def test_top_up_rejects_non_positive_amount(db, engine, make_reseller):
    reseller = make_reseller(type="wallet", wallet_balance=Decimal("10"))

    with pytest.raises(wallet_service.WalletServiceError):
        wallet_service.top_up_wallet(db, reseller.id, Decimal("0"), engine.reactivation)

    db.refresh(reseller)
    assert reseller.wallet_balance == Decimal("10")
