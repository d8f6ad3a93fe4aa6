from decimal import Decimal

from tests.conftest import GIB


def test_usage_sync_suspends_traffic_reseller_over_quota(db, engine, panels, make_panel, make_reseller, make_config):
    panel = make_panel()
    heavy = make_reseller("heavy", panels=[panel], traffic_total_bytes=10 * GIB)
    light = make_reseller("light", panels=[panel], traffic_total_bytes=10 * GIB)
    wallet = make_reseller("wallet", type="wallet", panels=[panel], wallet_balance=Decimal("100"))
    make_reseller("paused", panels=[panel], status="suspended")
    make_config(heavy, panel, "h1")
    make_config(light, panel, "l1")
    make_config(wallet, panel, "w1")
    panels.usage.update({"h1": int(10.3 * GIB), "l1": 1 * GIB, "w1": 50 * GIB})

    summary = engine.run_usage_sync(db)

    assert summary.resellers == 3
    assert summary.suspended == 1
    verdicts = {item.reseller_id: item for item in summary.enforcement}
    assert verdicts[heavy.id].reason == "quota_exhausted"
    assert verdicts[light.id].status == "ok"
    assert wallet.id not in verdicts
    db.refresh(wallet)
    assert wallet.status == "active"
    assert wallet.traffic_used_bytes == 50 * GIB
    assert panels.enabled == {"h1": False}


def test_wallet_cycle_summary_counts(db, engine, make_panel, make_reseller, make_config):
    panel = make_panel()
    busy = make_reseller("busy", type="wallet", panels=[panel], wallet_balance=Decimal("100"))
    idle = make_reseller("idle", type="wallet", panels=[panel], wallet_balance=Decimal("100"))
    make_config(busy, panel, "b1", usage_bytes=2 * GIB)
    make_config(idle, panel, "i1")

    summary = engine.run_wallet_charge_cycle(db, cycle_key="2024-05-10T12:00:00")

    assert (summary.charged, summary.skipped, summary.suspended) == (1, 1, 1)
    assert summary.total_cost == Decimal("2000.00")
    assert {r.reseller_id: r.status for r in summary.results} == {busy.id: "charged", idle.id: "skipped"}

    again = engine.run_wallet_charge_cycle(db, cycle_key="2024-05-10T12:00:00")
    assert again.charged == 0
    assert {r.reason for r in again.results} == {"cycle_already_charged", "no_usage_delta"}


def test_dry_run_cycle_counts_previews_apart_from_skips(db, engine, make_panel, make_reseller, make_config):
    panel = make_panel()
    busy = make_reseller("busy", type="wallet", panels=[panel], wallet_balance=Decimal("100"))
    idle = make_reseller("idle", type="wallet", panels=[panel], wallet_balance=Decimal("100"))
    make_config(busy, panel, "b1", usage_bytes=2 * GIB)
    make_config(idle, panel, "i1")

    summary = engine.run_wallet_charge_cycle(db, cycle_key="2024-05-10T12:00:00", dry_run=True)

    assert (summary.charged, summary.previewed, summary.skipped, summary.suspended) == (0, 1, 1, 0)
    assert summary.total_cost == Decimal("0")
    assert summary.total_would_be_cost == Decimal("2000.00")
    db.refresh(busy)
    assert busy.wallet_balance == Decimal("100")
