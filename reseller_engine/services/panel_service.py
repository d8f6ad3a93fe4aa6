import logging
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from reseller_engine.core.config import settings
from reseller_engine.db.models.panel import Panel
from reseller_engine.utils.encryption import decrypt_data
from reseller_engine.utils.panel_clients import (
    PanelClient,
    PanelConfigurationError,
    PanelCredentials,
    get_client_class,
)

logger = logging.getLogger("reseller_engine.panels")

PanelClientFactory = Callable[[Panel], PanelClient]


def get_panel(db: Session, panel_id: int) -> Optional[Panel]:
    return db.query(Panel).filter(Panel.id == panel_id).first()


def _decrypt_secret(panel: Panel, encrypted: Optional[str], label: str) -> Optional[str]:
    if not encrypted:
        return None
    try:
        return decrypt_data(encrypted)
    except ValueError as e:
        raise PanelConfigurationError(f"Could not decrypt {label} for panel {panel.id} ({panel.name}): {e}")


def get_panel_credentials(panel: Panel) -> PanelCredentials:
    """Decrypted connection details. Raises PanelConfigurationError when they are unusable."""
    if not panel.api_url:
        raise PanelConfigurationError(f"Panel {panel.id} ({panel.name}) has no api_url")

    password = _decrypt_secret(panel, panel.encrypted_admin_password, "admin password")
    api_token = _decrypt_secret(panel, panel.encrypted_api_token, "API token")

    if (panel.panel_type or "").lower() != "eylandoo" and not (panel.admin_username and password):
        raise PanelConfigurationError(f"Panel {panel.id} ({panel.name}) is missing admin credentials")

    return PanelCredentials(
        api_url=panel.api_url,
        username=panel.admin_username,
        password=password,
        api_token=api_token,
        node_hostname=panel.node_hostname,
    )


def build_panel_client(panel: Panel) -> PanelClient:
    client_cls = get_client_class(panel.panel_type)
    return client_cls(get_panel_credentials(panel), timeout=settings.PANEL_REQUEST_TIMEOUT)


class PanelClientPool:
    """Builds each panel's client once per batch so login is not repeated per config."""

    def __init__(self, factory: PanelClientFactory = build_panel_client):
        self.factory = factory
        self._clients: Dict[int, PanelClient] = {}

    def get(self, panel: Panel) -> PanelClient:
        client = self._clients.get(panel.id)
        if client is None:
            client = self.factory(panel)
            self._clients[panel.id] = client
        return client
