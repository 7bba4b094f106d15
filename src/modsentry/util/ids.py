"""Identifier helpers."""

import time
import uuid


def new_id() -> str:
    """Return a 32-char hex id whose prefix sorts by creation time.

    The first 12 hex digits are the creation time in milliseconds, the rest
    is random, so ids sort chronologically like ULIDs do.
    """
    millis = int(time.time() * 1000)
    return f"{millis:012x}{uuid.uuid4().hex[:20]}"
