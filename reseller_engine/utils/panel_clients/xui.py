import json
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

from reseller_engine.utils.panel_clients.base import PanelClient
from reseller_engine.utils.panel_clients.errors import MalformedPanelResponse, PanelAPIError
from reseller_engine.utils.panel_clients.usage_parser import parse_usage_bytes

logger = logging.getLogger("reseller_engine.panel_clients.xui")


class XUIClient(PanelClient):
    """3x-ui panels. Accounts are inbound clients addressed by email; auth is a session cookie."""

    panel_type = "xui"

    def login(self) -> bool:
        response = self._send(
            "POST",
            "login",
            data={"username": self.credentials.username, "password": self.credentials.password},
        )
        if not response.ok:
            logger.warning("xui login failed (HTTP %s)", response.status_code)
            return False
        try:
            return bool(response.json().get("success"))
        except (ValueError, AttributeError):
            # Older builds answer with an empty body and only set the cookie
            return bool(self.session.cookies)

    def get_usage(self, remote_id: str) -> Optional[int]:
        action = f"read usage of client {remote_id}"
        response = self._request("GET", f"panel/api/inbounds/getClientTraffics/{quote(str(remote_id), safe='')}")
        self._raise_for_status(response, action)
        try:
            payload = self._json(response, action)
        except MalformedPanelResponse as e:
            logger.warning("%s; treating usage as 0", e)
            return 0
        if isinstance(payload, dict) and payload.get("success") is not False and payload.get("obj") is None:
            logger.warning("xui client %s not found", remote_id)
            return None
        return parse_usage_bytes(payload)

    def _find_client(self, remote_id: str) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        response = self._request("GET", "panel/api/inbounds/list")
        self._raise_for_status(response, "list inbounds")
        payload = self._json(response, "list inbounds")
        for inbound in payload.get("obj") or []:
            settings = inbound.get("settings") or "{}"
            if isinstance(settings, str):
                try:
                    settings = json.loads(settings)
                except ValueError:
                    continue
            for client in settings.get("clients") or []:
                if client.get("email") == remote_id:
                    return inbound, client
        return None

    @staticmethod
    def _client_key(inbound: Dict[str, Any], client: Dict[str, Any]) -> str:
        protocol = inbound.get("protocol")
        if protocol == "trojan":
            return str(client.get("password"))
        if protocol == "shadowsocks":
            return str(client.get("email"))
        return str(client.get("id"))

    def _set_enabled(self, remote_id: str, enabled: bool) -> bool:
        found = self._find_client(remote_id)
        if found is None:
            logger.warning("xui client %s not found in any inbound", remote_id)
            return False
        inbound, client = found
        if client.get("enable") is enabled:
            return True

        client = dict(client, enable=enabled)
        response = self._request(
            "POST",
            f"panel/api/inbounds/updateClient/{quote(self._client_key(inbound, client), safe='')}",
            data={"id": inbound.get("id"), "settings": json.dumps({"clients": [client]})},
        )
        self._raise_for_status(response, f"update client {remote_id}")
        body = self._json(response, f"update client {remote_id}")
        if not body.get("success"):
            raise PanelAPIError(f"xui refused to update client {remote_id}: {body.get('msg')}")
        return True

    def enable(self, remote_id: str) -> bool:
        return self._set_enabled(remote_id, True)

    def disable(self, remote_id: str) -> bool:
        return self._set_enabled(remote_id, False)
