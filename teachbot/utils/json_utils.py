"""
JSON utilities for values held in the keyed store.
"""

import json
from typing import Any, Dict, Optional


def dump_value(value: Any) -> str:
    """Serialize a value for storage.

    Args:
        value: JSON-compatible value

    Returns:
        Compact JSON string with stable key order
    """
    return json.dumps(value, separators=(',', ':'), sort_keys=True)


def load_object(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a stored JSON object.

    Args:
        raw: Stored string, or None when the key is absent

    Returns:
        The decoded dict, or None for absent, blank or non-object values

    Raises:
        ValueError: If the value is not valid JSON
    """
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None

    data = json.loads(raw)
    if not isinstance(data, dict):
        return None
    return data
