"""
Text helpers for action payloads.
"""

import re
from typing import Tuple

_FIRST_TOKEN = re.compile(r'\s*(\S+)(?:\s(.*))?\Z', re.DOTALL)


def split_payload(payload: str) -> Tuple[str, str]:
    """Split an action payload into its target name and argument string.

    The target is the first whitespace-delimited token. The arguments are
    everything after that token and exactly one separator, kept verbatim.

    Args:
        payload: Raw action payload, e.g. 'lookupWeather city=Seattle'

    Returns:
        Tuple of (target_name, args); both empty for a blank payload
    """
    match = _FIRST_TOKEN.match(payload or '')
    if not match:
        return '', ''
    return match.group(1), match.group(2) or ''
