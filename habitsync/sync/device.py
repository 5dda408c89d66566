"""Stable per-installation device identity."""

import logging
import secrets
import string
import time

from ..storage import KeyValueStore

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "habitsync.device_id"

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def generate_device_id(now_ms: int | None = None) -> str:
    """Build a new device id from the current time and a random suffix."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"dev_{now_ms}_{suffix}"


def get_device_id(kv: KeyValueStore) -> str:
    """Get this installation's device id, creating it on first use."""
    device_id = kv.get(DEVICE_ID_KEY)
    if not device_id:
        device_id = generate_device_id()
        kv.set(DEVICE_ID_KEY, device_id)
        logger.info(f"Generated device id {device_id}")
    return device_id
