"""Time-ordered identifiers (RFC 9562 UUID v7).

Submissions, evaluations and audit events all take v7 ids so that they
sort by creation time in storage and in listings.
"""

from __future__ import annotations

import os
import time
import uuid


def uuid7() -> str:
    """Return a UUID v7 string.

    Layout: 48-bit unix_ts_ms | ver(7) | 12 random bits | var(10) | 62 random bits
    """
    ts_ms = int(time.time() * 1000)

    raw = bytearray(ts_ms.to_bytes(6, byteorder="big") + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80

    return str(uuid.UUID(bytes=bytes(raw)))
