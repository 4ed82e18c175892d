"""
Retry-After header parsing.
"""

import time
from email.utils import parsedate_to_datetime
from typing import Mapping, Optional


def parse_retry_headers(headers: Optional[Mapping[str, str]]) -> Optional[float]:
    """
    Delay requested by the provider, in milliseconds.

    Checks `retry-after-ms` first, then `retry-after` as seconds or as an
    HTTP date. Header names are matched case-insensitively.

    Returns:
        The delay in milliseconds, or None if no usable header is present
    """
    if not headers:
        return None
    lowered = {k.lower(): v for k, v in headers.items()}

    retry_after_ms = lowered.get("retry-after-ms")
    if retry_after_ms:
        try:
            delay_ms = float(retry_after_ms)
        except ValueError:
            delay_ms = None
        if delay_ms is not None and delay_ms >= 0:
            return delay_ms

    retry_after = lowered.get("retry-after")
    if retry_after:
        try:
            return float(retry_after) * 1000
        except ValueError:
            pass

        try:
            date = parsedate_to_datetime(retry_after)
        except (TypeError, ValueError):
            return None
        return max(0.0, (date.timestamp() - time.time()) * 1000)

    return None
