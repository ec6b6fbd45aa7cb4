"""Small MQTT helpers: reason code normalization and topic naming.

paho-mqtt hands callbacks either plain ints (v1 API) or ``ReasonCode``
objects (v2 API). ``reason_code_value`` reduces both to an int so callbacks
can compare against 0.
"""

import re
from typing import Any, Optional

_INVALID_TOPIC_CHARS = re.compile(r"[^a-z0-9_]+")


def reason_code_value(reason_code: Any) -> Optional[int]:
    """Return the integer value of a paho reason code, or None if unknown."""
    if reason_code is None:
        return None
    if isinstance(reason_code, bool):
        return None
    if isinstance(reason_code, int):
        return reason_code
    # paho v2 ReasonCode exposes .value; older result objects expose .rc
    for attr in ("value", "rc"):
        val = getattr(reason_code, attr, None)
        if isinstance(val, int) and not isinstance(val, bool):
            return val
    try:
        return int(reason_code)
    except (TypeError, ValueError):
        return None


def sanitize_name(name: str) -> str:
    """Lowercase a display name into a topic/object-id safe token.

    "Lock Screen!" -> "lock_screen"
    """
    token = _INVALID_TOPIC_CHARS.sub("_", str(name).strip().lower())
    return token.strip("_") or "unnamed"


def entity_topic_base(prefix: str, component: str, device: str, object_id: str) -> str:
    """Base topic shared by an entity's config/state/set/action topics."""
    return f"{prefix}/{component}/{sanitize_name(device)}/{object_id}"


def availability_topic(prefix: str, device: str) -> str:
    return f"{prefix}/sensor/{sanitize_name(device)}/availability"


__all__ = [
    "availability_topic",
    "entity_topic_base",
    "reason_code_value",
    "sanitize_name",
]
