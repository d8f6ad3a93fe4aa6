from typing import Optional
from urllib.parse import quote

from reseller_engine.utils.panel_clients.base import BearerTokenPanelClient


class MarzbanClient(BearerTokenPanelClient):
    panel_type = "marzban"
    token_path = "api/admin/token"

    def _user_path(self, remote_id: str) -> str:
        return f"api/user/{quote(str(remote_id), safe='')}"

    def get_usage(self, remote_id: str) -> Optional[int]:
        return self._read_usage(self._user_path(remote_id), f"read usage of user {remote_id}")

    def _set_status(self, remote_id: str, status: str) -> bool:
        response = self._request("PUT", self._user_path(remote_id), json={"status": status})
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"set user {remote_id} status to {status}")
        return True

    def enable(self, remote_id: str) -> bool:
        return self._set_status(remote_id, "active")

    def disable(self, remote_id: str) -> bool:
        return self._set_status(remote_id, "disabled")
