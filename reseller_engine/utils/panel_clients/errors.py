from typing import Optional


class PanelAPIError(Exception):
    """A panel could not be reached or answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PanelAuthError(PanelAPIError):
    """Login was rejected, or a request stayed unauthorized after re-login."""


class PanelConfigurationError(Exception):
    """The panel row cannot be used: missing credentials or unsupported type.

    Retrying does not help, so the executor fails fast on this.
    """


class MalformedPanelResponse(Exception):
    """The panel answered 2xx but the body was not the JSON we expected."""
