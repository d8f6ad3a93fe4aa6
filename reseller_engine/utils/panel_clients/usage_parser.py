import logging
from typing import Any, Iterable, List, Optional

logger = logging.getLogger("reseller_engine.panel_clients.usage")

# Objects the usage counters may be nested under, besides the root itself
WRAPPER_KEYS = ("userInfo", "data", "user", "result", "stats", "obj")

SINGLE_USAGE_KEYS = (
    "used_traffic",
    "total_traffic_bytes",
    "traffic_total_bytes",
    "total_bytes",
    "usage_bytes",
    "bytes_used",
    "data_used",
    "data_used_bytes",
    "data_usage_bytes",
    "traffic_used_bytes",
    "totalDataBytes",
    "totalTrafficBytes",
    "trafficBytes",
)

UPLOAD_DOWNLOAD_PAIRS = (
    ("upload_bytes", "download_bytes"),
    ("upload", "download"),
    ("up", "down"),
    ("uploaded", "downloaded"),
    ("uplink", "downlink"),
)


def to_byte_count(value: Any) -> Optional[int]:
    """Accepts non-negative ints, floats and digit strings. Booleans are not counters."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if value >= 0 else None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if number >= 0 else None
    return None


def _containers(payload: dict) -> Iterable[dict]:
    yield payload
    for key in WRAPPER_KEYS:
        nested = payload.get(key)
        if isinstance(nested, dict):
            yield nested


def collect_usage_candidates(payload: dict) -> List[int]:
    candidates: List[int] = []
    for container in _containers(payload):
        for key in SINGLE_USAGE_KEYS:
            value = to_byte_count(container.get(key))
            if value is not None:
                candidates.append(value)
        for upload_key, download_key in UPLOAD_DOWNLOAD_PAIRS:
            if upload_key not in container and download_key not in container:
                continue
            upload = to_byte_count(container.get(upload_key))
            download = to_byte_count(container.get(download_key))
            if upload is None and download is None:
                continue
            candidates.append((upload or 0) + (download or 0))
    return candidates


def parse_usage_bytes(payload: Any) -> Optional[int]:
    """Extract the usage counter from a panel user payload.

    Returns None when the panel explicitly reports failure (``success: false``),
    the largest plausible counter when several fields are present, and 0 when
    no usage field can be found.
    """
    if not isinstance(payload, dict):
        logger.warning("Usage payload is not an object (%s); treating usage as 0", type(payload).__name__)
        return 0
    if payload.get("success") is False:
        return None

    candidates = collect_usage_candidates(payload)
    if not candidates:
        logger.info("No usage fields in panel payload (keys: %s); treating usage as 0", sorted(payload.keys()))
        return 0
    # Panels that report several counters mix per-period and lifetime values; the lifetime one is largest
    return max(candidates)
