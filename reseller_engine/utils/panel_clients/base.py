import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from reseller_engine.utils.panel_clients.usage_parser import parse_usage_bytes
from reseller_engine.utils.panel_clients.errors import (
    MalformedPanelResponse,
    PanelAPIError,
    PanelAuthError,
)

logger = logging.getLogger("reseller_engine.panel_clients")

UNAUTHORIZED_STATUSES = (401, 403)


@dataclass(frozen=True)
class PanelCredentials:
    api_url: str
    username: Optional[str] = None
    password: Optional[str] = None
    api_token: Optional[str] = None
    node_hostname: Optional[str] = None


class PanelClient:
    """Enable/disable/usage operations against one panel.

    Subclasses implement ``login`` and the three account operations. Requests
    go through ``_request`` which logs in lazily and retries exactly once
    after a 401/403 with a fresh login.
    """

    panel_type = ""

    def __init__(self, credentials: PanelCredentials, timeout: int = 15, session: Optional[requests.Session] = None):
        self.credentials = credentials
        self.base_url = credentials.api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._authenticated = False

    def login(self) -> bool:
        raise NotImplementedError

    def get_usage(self, remote_id: str) -> Optional[int]:
        """Bytes used by the remote account, or None when it cannot be read."""
        raise NotImplementedError

    def enable(self, remote_id: str) -> bool:
        raise NotImplementedError

    def disable(self, remote_id: str) -> bool:
        raise NotImplementedError

    def set_enabled(self, remote_id: str, enabled: bool) -> bool:
        return self.enable(remote_id) if enabled else self.disable(remote_id)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            return self.session.request(method, self._url(path), **kwargs)
        except requests.exceptions.RequestException as e:
            # Includes connection errors, timeouts, etc.
            raise PanelAPIError(f"Request to {self.panel_type} panel failed ({method} {path}): {str(e)}")

    def _ensure_login(self) -> None:
        if self._authenticated:
            return
        if not self.login():
            raise PanelAuthError(f"Authentication with {self.panel_type} panel at {self.base_url} failed")
        self._authenticated = True

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        self._ensure_login()
        response = self._send(method, path, **kwargs)
        if response.status_code in UNAUTHORIZED_STATUSES:
            logger.info("%s panel returned %s for %s, logging in again", self.panel_type, response.status_code, path)
            self._authenticated = False
            self._ensure_login()
            response = self._send(method, path, **kwargs)
            if response.status_code in UNAUTHORIZED_STATUSES:
                raise PanelAuthError(
                    f"{self.panel_type} panel rejected {method} {path} after re-login",
                    status_code=response.status_code,
                )
        return response

    @staticmethod
    def error_detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("msg") or body.get("message") or body)
        return str(body)

    def _raise_for_status(self, response: requests.Response, action: str) -> None:
        if response.ok:
            return
        raise PanelAPIError(
            f"Failed to {action} on {self.panel_type} panel (HTTP {response.status_code}): {self.error_detail(response)}",
            status_code=response.status_code,
        )

    def _json(self, response: requests.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError:
            raise MalformedPanelResponse(f"{self.panel_type} panel returned non-JSON body while trying to {action}")


class BearerTokenPanelClient(PanelClient):
    """Panels that hand out a bearer token for a form-encoded admin login."""

    token_path = ""

    def login(self) -> bool:
        response = self._send(
            "POST",
            self.token_path,
            data={"username": self.credentials.username, "password": self.credentials.password},
        )
        if not response.ok:
            logger.warning(
                "%s login failed (HTTP %s): %s",
                self.panel_type, response.status_code, self.error_detail(response),
            )
            return False
        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            logger.warning("%s login response carried no access_token", self.panel_type)
            return False
        self.session.headers["Authorization"] = f"Bearer {token}"
        return True

    def _read_usage(self, path: str, action: str) -> Optional[int]:
        response = self._request("GET", path)
        if response.status_code == 404:
            logger.warning("%s user not found at %s", self.panel_type, path)
            return None
        self._raise_for_status(response, action)
        try:
            payload = self._json(response, action)
        except MalformedPanelResponse as e:
            logger.warning("%s; treating usage as 0", e)
            return 0
        return parse_usage_bytes(payload)
