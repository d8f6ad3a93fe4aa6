from typing import Dict, Type

from reseller_engine.utils.panel_clients.base import PanelClient, PanelCredentials  # noqa
from reseller_engine.utils.panel_clients.errors import (  # noqa
    MalformedPanelResponse,
    PanelAPIError,
    PanelAuthError,
    PanelConfigurationError,
)
from reseller_engine.utils.panel_clients.eylandoo import EylandooClient
from reseller_engine.utils.panel_clients.marzban import MarzbanClient
from reseller_engine.utils.panel_clients.marzneshin import MarzneshinClient
from reseller_engine.utils.panel_clients.xui import XUIClient

PANEL_CLIENTS: Dict[str, Type[PanelClient]] = {
    "marzban": MarzbanClient,
    "marzneshin": MarzneshinClient,
    "xui": XUIClient,
    "3x-ui": XUIClient,
    "eylandoo": EylandooClient,
}


def get_client_class(panel_type: str) -> Type[PanelClient]:
    client_cls = PANEL_CLIENTS.get((panel_type or "").strip().lower())
    if client_cls is None:
        raise PanelConfigurationError(f"Unsupported panel type: {panel_type!r}")
    return client_cls
