import logging
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

MASK = "***MASKED***"

# Compared case-insensitively against payload keys.
SENSITIVE_KEYS = {
    "password",
    "terminal_password",
    "secretkey",
    "secret_key",
    "msgverifier",
    "card",
    "cardnumber",
    "pan",
    "cvv",
    "cvv2",
    "cavv",
}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_sensitive_data(data: Any) -> Any:
    """Return a copy of ``data`` with credentials and card fields masked."""
    if isinstance(data, dict):
        return {
            k: MASK if str(k).lower() in SENSITIVE_KEYS else mask_sensitive_data(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [mask_sensitive_data(v) for v in data]
    return data
