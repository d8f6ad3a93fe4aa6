import logging
from typing import Optional

from reseller_engine.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once for the API process or a CLI run."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # requests/urllib3 debug output leaks panel URLs with credentials in query strings
    logging.getLogger("urllib3").setLevel(logging.WARNING)
