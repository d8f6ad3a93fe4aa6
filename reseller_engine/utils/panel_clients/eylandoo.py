import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from reseller_engine.utils.panel_clients.base import PanelClient, PanelCredentials
from reseller_engine.utils.panel_clients.errors import MalformedPanelResponse, PanelConfigurationError
from reseller_engine.utils.panel_clients.usage_parser import parse_usage_bytes

logger = logging.getLogger("reseller_engine.panel_clients.eylandoo")

ACTIVE_STATUSES = ("active", "enabled", "on")


class EylandooClient(PanelClient):
    """Eylandoo panels authenticate every call with a static X-API-KEY header."""

    panel_type = "eylandoo"

    def __init__(self, credentials: PanelCredentials, **kwargs):
        if not credentials.api_url or not credentials.api_token:
            raise PanelConfigurationError("Eylandoo panel requires both api_url and api_token")
        super().__init__(credentials, **kwargs)
        self.session.headers["X-API-KEY"] = credentials.api_token
        self.session.headers["Accept"] = "application/json"

    def login(self) -> bool:
        return bool(self.credentials.api_token)

    def _user_path(self, remote_id: str) -> str:
        return f"api/v1/users/{quote(str(remote_id), safe='')}"

    def _get_user(self, remote_id: str) -> Optional[Dict[str, Any]]:
        action = f"read user {remote_id}"
        response = self._request("GET", self._user_path(remote_id))
        if response.status_code == 404:
            logger.warning("eylandoo user %s not found", remote_id)
            return None
        self._raise_for_status(response, action)
        payload = self._json(response, action)
        return payload if isinstance(payload, dict) else None

    def get_usage(self, remote_id: str) -> Optional[int]:
        try:
            payload = self._get_user(remote_id)
        except MalformedPanelResponse as e:
            logger.warning("%s; treating usage as 0", e)
            return 0
        if payload is None:
            return None
        return parse_usage_bytes(payload)

    @staticmethod
    def is_active(payload: Dict[str, Any]) -> Optional[bool]:
        """Read the enablement state from the payload, None when it is not reported."""
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        for source in (data, payload):
            status = source.get("status")
            if isinstance(status, str):
                return status.lower() in ACTIVE_STATUSES
        for source in (data, payload):
            flag = source.get("is_active")
            if isinstance(flag, bool):
                return flag
        return None

    def _set_enabled(self, remote_id: str, enabled: bool) -> bool:
        payload = self._get_user(remote_id)
        if payload is None or payload.get("success") is False:
            return False
        if self.is_active(payload) is enabled:
            return True
        # The panel only exposes a toggle, so it must not be called when already in the target state
        response = self._request("POST", f"{self._user_path(remote_id)}/toggle")
        self._raise_for_status(response, f"toggle user {remote_id}")
        return True

    def enable(self, remote_id: str) -> bool:
        return self._set_enabled(remote_id, True)

    def disable(self, remote_id: str) -> bool:
        return self._set_enabled(remote_id, False)
