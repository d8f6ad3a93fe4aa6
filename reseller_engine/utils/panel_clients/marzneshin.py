from typing import Optional
from urllib.parse import quote

from reseller_engine.utils.panel_clients.base import BearerTokenPanelClient


class MarzneshinClient(BearerTokenPanelClient):
    panel_type = "marzneshin"
    token_path = "api/admins/token"

    def _user_path(self, remote_id: str) -> str:
        return f"api/users/{quote(str(remote_id), safe='')}"

    def get_usage(self, remote_id: str) -> Optional[int]:
        return self._read_usage(self._user_path(remote_id), f"read usage of user {remote_id}")

    def _toggle(self, remote_id: str, action: str) -> bool:
        response = self._request("POST", f"{self._user_path(remote_id)}/{action}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"{action} user {remote_id}")
        return True

    def enable(self, remote_id: str) -> bool:
        return self._toggle(remote_id, "enable")

    def disable(self, remote_id: str) -> bool:
        return self._toggle(remote_id, "disable")
