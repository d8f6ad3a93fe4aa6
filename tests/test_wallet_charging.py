from datetime import timedelta
from decimal import Decimal

from reseller_engine.core.config import EngineConfig
from reseller_engine.db.models.audit_log import AuditLog
from reseller_engine.db.models.charge_lock import WalletChargeLock
from reseller_engine.db.models.reseller_config import SuspensionReason
from reseller_engine.db.models.transaction import Transaction
from reseller_engine.db.models.usage_snapshot import ResellerUsageSnapshot
from reseller_engine.services.engine import build_engine
from reseller_engine.services.wallet_charging_service import compute_cost, cycle_key_for
from reseller_engine.utils.clock import utcnow

from tests.conftest import GIB, MIB


def add_snapshot(db, reseller, total_bytes, measured_at=None):
    snapshot = ResellerUsageSnapshot(
        reseller_id=reseller.id,
        total_bytes=total_bytes,
        measured_at=measured_at or utcnow() - timedelta(hours=1),
        cycle_key="earlier",
        charge_applied=True,
        meta={"source": "test"},
    )
    db.add(snapshot)
    db.commit()
    return snapshot


def wallet_reseller(make_panel, make_reseller, make_config, balance="10000", usage=(4 * GIB, 2 * GIB), **kwargs):
    panel = make_panel()
    reseller = make_reseller(type="wallet", panels=[panel], wallet_balance=Decimal(balance), **kwargs)
    for index, used in enumerate(usage):
        make_config(reseller, panel, f"w{index}", usage_bytes=used)
    return reseller


def test_compute_cost_is_proportional():
    assert compute_cost(GIB, Decimal("1000")) == Decimal("1000.00")
    assert compute_cost(512 * MIB, Decimal("1000")) == Decimal("500.00")
    assert compute_cost(1, Decimal("780")) == Decimal("0.00")


def test_cycle_key_is_start_of_minute():
    moment = utcnow().replace(second=42, microsecond=17)
    assert cycle_key_for(moment) == moment.replace(second=0, microsecond=0).isoformat()


def test_charges_delta_since_last_snapshot(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config)
    add_snapshot(db, reseller, 5 * GIB)

    result = engine.wallet.charge_reseller(db, reseller, cycle_key="c1")

    assert result.status == "charged"
    assert result.delta_bytes == 1073741824
    assert result.cost == Decimal("1000.00")
    assert result.new_balance == Decimal("9000.00")
    db.refresh(reseller)
    assert reseller.wallet_balance == Decimal("9000.00")

    snapshot = db.query(ResellerUsageSnapshot).filter(ResellerUsageSnapshot.id == result.snapshot_id).one()
    assert snapshot.total_bytes == 6 * GIB
    assert snapshot.meta["cycle_charge_applied"] is True
    assert snapshot.meta["delta_bytes"] == GIB
    ledger = db.query(Transaction).one()
    assert ledger.amount == Decimal("-1000.00")
    assert ledger.snapshot_id == snapshot.id
    assert db.query(AuditLog).filter(AuditLog.action == "wallet_charged").count() == 1
    assert db.query(WalletChargeLock).count() == 0


def test_repeat_charges_are_idempotent(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config)
    add_snapshot(db, reseller, 5 * GIB)
    start = utcnow()

    first = engine.wallet.charge_reseller(db, reseller, cycle_key="c1", now=start)
    within_window = engine.wallet.charge_reseller(db, reseller, cycle_key="c2", now=start + timedelta(seconds=10))
    same_cycle = engine.wallet.charge_reseller(db, reseller, cycle_key="c1", now=start + timedelta(minutes=5))
    later = engine.wallet.charge_reseller(db, reseller, cycle_key="c3", now=start + timedelta(minutes=5))

    assert first.status == "charged"
    assert (within_window.status, within_window.reason) == ("skipped", "recent_snapshot")
    assert (same_cycle.status, same_cycle.reason) == ("skipped", "cycle_already_charged")
    assert (later.status, later.reason) == ("skipped", "no_usage_delta")
    db.refresh(reseller)
    assert reseller.wallet_balance == Decimal("9000.00")
    assert db.query(Transaction).count() == 1


def test_force_bypasses_window_but_only_bills_new_usage(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config)
    add_snapshot(db, reseller, 5 * GIB)
    engine.wallet.charge_reseller(db, reseller, cycle_key="c1")

    reseller.configs[0].usage_bytes += 512 * MIB
    db.commit()
    forced = engine.wallet.charge_reseller(db, reseller, cycle_key="c1", force=True)

    assert forced.status == "charged"
    assert forced.cost == Decimal("500.00")
    db.refresh(reseller)
    assert reseller.wallet_balance == Decimal("8500.00")


def test_usage_drop_never_refunds(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config)
    add_snapshot(db, reseller, 8 * GIB)

    result = engine.wallet.charge_reseller(db, reseller)

    assert (result.status, result.reason, result.delta_bytes) == ("skipped", "no_usage_delta", 0)
    assert db.query(ResellerUsageSnapshot).count() == 1
    db.refresh(reseller)
    assert reseller.wallet_balance == Decimal("10000.00")


def test_first_charge_without_baseline_bills_all_usage(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config, usage=(GIB,))

    result = engine.wallet.charge_reseller(db, reseller)

    assert result.delta_bytes == GIB
    assert result.cost == Decimal("1000.00")


def test_reseller_price_overrides_global_price(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config, usage=(GIB,), wallet_price_per_gb=Decimal("780"))

    result = engine.wallet.charge_reseller(db, reseller)

    assert result.price_per_gb == Decimal("780")
    assert result.cost == Decimal("780.00")


def test_balance_below_threshold_suspends_and_disables(db, engine, panels, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config, balance="-200")
    add_snapshot(db, reseller, 5 * GIB)

    result = engine.wallet.charge_reseller(db, reseller, cycle_key="c9")

    assert result.status == "charged"
    assert result.new_balance == Decimal("-1200.00")
    assert result.suspended is True
    assert result.disabled_configs == 2
    db.refresh(reseller)
    assert reseller.status == "suspended_wallet"
    for config in reseller.configs:
        assert config.status == "disabled"
        assert config.suspension_flags & SuspensionReason.WALLET
        assert config.meta["disabled_by_wallet_suspension_cycle_at"] == "c9"
    audit = db.query(AuditLog).filter(AuditLog.action == "reseller_suspended_wallet").one()
    assert audit.reason == "wallet_balance_exhausted"


def test_no_delta_still_evaluates_suspension(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config, balance="-1500")
    add_snapshot(db, reseller, 6 * GIB)

    result = engine.wallet.charge_reseller(db, reseller)

    assert (result.status, result.reason) == ("skipped", "no_usage_delta")
    assert result.suspended is True
    db.refresh(reseller)
    assert reseller.status == "suspended_wallet"


def test_concurrent_charge_reports_lock_failed(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config)
    now = utcnow()
    db.add(WalletChargeLock(reseller_id=reseller.id, lock_token="other", acquired_at=now, expires_at=now + timedelta(seconds=60)))
    db.commit()

    result = engine.wallet.charge_reseller(db, reseller, now=now)

    assert (result.status, result.reason) == ("lock_failed", "concurrent_execution")
    assert db.query(ResellerUsageSnapshot).count() == 0
    assert db.query(WalletChargeLock).one().lock_token == "other"


def test_stale_lock_is_taken_over(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config)
    now = utcnow()
    db.add(WalletChargeLock(reseller_id=reseller.id, lock_token="crashed", acquired_at=now - timedelta(hours=1), expires_at=now - timedelta(minutes=58)))
    db.commit()

    result = engine.wallet.charge_reseller(db, reseller, now=now)

    assert result.status == "charged"
    assert db.query(WalletChargeLock).count() == 0


def test_dry_run_changes_nothing(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config, balance="500")
    add_snapshot(db, reseller, 4 * GIB)

    result = engine.wallet.charge_reseller(db, reseller, dry_run=True)

    assert result.status == "dry_run"
    assert result.cost == Decimal("2000.00")
    assert result.new_balance == Decimal("-1500.00")
    assert result.suspended is True
    db.refresh(reseller)
    assert reseller.wallet_balance == Decimal("500.00")
    assert reseller.status == "active"
    assert db.query(ResellerUsageSnapshot).count() == 1


def test_skip_reasons(db, panels, sleeps, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config, usage=(GIB,))
    traffic = make_reseller(username="traffic-1")

    disabled = build_engine(EngineConfig(wallet_charge_enabled=False), client_factory=panels.client_for, sleep=sleeps.append)
    minimum = build_engine(EngineConfig(wallet_minimum_delta_bytes=2 * GIB), client_factory=panels.client_for, sleep=sleeps.append)

    assert disabled.wallet.charge_reseller(db, reseller).reason == "charging_disabled"
    assert minimum.wallet.charge_reseller(db, traffic).reason == "not_wallet_type"
    assert minimum.wallet.charge_reseller(db, reseller).reason == "below_minimum_delta"
    assert db.query(ResellerUsageSnapshot).count() == 0


def test_settle_config_charges_and_moves_usage(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config, usage=(2 * GIB,))
    config = reseller.configs[0]

    result = engine.wallet.settle_config(db, config, "reset_traffic")

    assert result.status == "charged"
    assert result.cost == Decimal("2000.00")
    db.refresh(config)
    assert config.usage_bytes == 0
    assert config.settled_usage_bytes == 2 * GIB
    assert config.total_usage_bytes == 2 * GIB
    snapshot = db.query(ResellerUsageSnapshot).one()
    assert snapshot.meta["source"] == "final_settlement:reset_traffic"


def test_charge_from_panel_tags_source(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config, usage=(GIB,))

    result = engine.wallet.charge_from_panel(db, reseller, "delete_user")

    assert result.status == "charged"
    assert db.query(ResellerUsageSnapshot).one().meta["source"] == "panel:delete_user"


def test_diagnosis_reports_pending_cost(db, engine, make_panel, make_reseller, make_config):
    reseller = wallet_reseller(make_panel, make_reseller, make_config)
    add_snapshot(db, reseller, 5 * GIB)

    diagnosis = engine.wallet.diagnose(db, reseller)

    assert diagnosis.pending_delta_bytes == GIB
    assert diagnosis.pending_cost == Decimal("1000.00")
    assert diagnosis.baseline_total_bytes == 5 * GIB
    assert diagnosis.lock_held is False
