import os
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Keep module-level engine creation away from the working directory
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from reseller_engine.core.config import EngineConfig  # noqa: E402
from reseller_engine.db.base import Base  # noqa: E402
from reseller_engine.db import models  # noqa: E402,F401
from reseller_engine.db.models.panel import Panel  # noqa: E402
from reseller_engine.db.models.reseller import Reseller  # noqa: E402
from reseller_engine.db.models.reseller_config import ResellerConfig  # noqa: E402
from reseller_engine.services.engine import build_engine  # noqa: E402
from reseller_engine.utils.clock import utcnow  # noqa: E402
from reseller_engine.utils.encryption import encrypt_data  # noqa: E402
from reseller_engine.utils.panel_clients import PanelAPIError, PanelClient  # noqa: E402

GIB = 1024 ** 3
MIB = 1024 ** 2


class FakePanelBackend:
    """In-memory stand-in for every panel: usage counters and enabled flags by remote id."""

    def __init__(self):
        self.usage = {}
        self.enabled = {}
        self.failing = set()
        self.unreadable = set()
        self.calls = []

    def client_for(self, panel):
        return FakePanelClient(self, panel)


class FakePanelClient(PanelClient):
    panel_type = "fake"

    def __init__(self, backend, panel):
        self.backend = backend
        self.panel = panel

    def login(self):
        return True

    def get_usage(self, remote_id):
        self.backend.calls.append(("usage", self.panel.id, remote_id))
        if remote_id in self.backend.unreadable:
            raise PanelAPIError("panel unreachable")
        return self.backend.usage.get(remote_id, 0)

    def _set(self, remote_id, enabled):
        self.backend.calls.append(("enable" if enabled else "disable", self.panel.id, remote_id))
        if remote_id in self.backend.failing:
            raise PanelAPIError("connection refused")
        self.backend.enabled[remote_id] = enabled
        return True

    def enable(self, remote_id):
        return self._set(remote_id, True)

    def disable(self, remote_id):
        return self._set(remote_id, False)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def panels():
    return FakePanelBackend()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine_config():
    return EngineConfig(wallet_price_per_gb=Decimal("1000"))


@pytest.fixture
def engine(engine_config, panels, sleeps):
    return build_engine(engine_config, client_factory=panels.client_for, sleep=sleeps.append)


@pytest.fixture
def make_panel(db):
    def _make(name="panel-1", panel_type="marzban", **kwargs):
        panel = Panel(
            name=name,
            panel_type=panel_type,
            api_url=kwargs.pop("api_url", f"https://{name}.example.com"),
            admin_username=kwargs.pop("admin_username", "admin"),
            encrypted_admin_password=kwargs.pop("encrypted_admin_password", encrypt_data("secret")),
            **kwargs,
        )
        db.add(panel)
        db.commit()
        db.refresh(panel)
        return panel
    return _make


@pytest.fixture
def make_reseller(db):
    def _make(username="reseller-1", type="traffic", panels=(), **kwargs):
        now = utcnow()
        if type == "traffic":
            kwargs.setdefault("traffic_total_bytes", 10 * GIB)
            kwargs.setdefault("window_starts_at", now - timedelta(days=1))
            kwargs.setdefault("window_ends_at", now + timedelta(days=30))
        reseller = Reseller(username=username, type=type, status=kwargs.pop("status", "active"), **kwargs)
        reseller.panels = list(panels)
        db.add(reseller)
        db.commit()
        db.refresh(reseller)
        return reseller
    return _make


@pytest.fixture
def make_config(db):
    counter = {"n": 0}

    def _make(reseller, panel, panel_user_id=None, **kwargs):
        counter["n"] += 1
        config = ResellerConfig(
            reseller_id=reseller.id,
            panel_id=panel.id if panel is not None else None,
            panel_type=panel.panel_type if panel is not None else None,
            panel_user_id=panel_user_id or f"user{counter['n']}",
            status=kwargs.pop("status", "active"),
            usage_bytes=kwargs.pop("usage_bytes", 0),
            settled_usage_bytes=kwargs.pop("settled_usage_bytes", 0),
            suspension_flags=kwargs.pop("suspension_flags", 0),
            **kwargs,
        )
        db.add(config)
        db.commit()
        db.refresh(config)
        db.refresh(reseller)
        return config
    return _make
