from __future__ import annotations

import os
import time
import uuid
from datetime import datetime


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    Used as the primary key of documents and subjects so that ids sort
    roughly by creation time across tenants.
    """
    ts_ms = int(time.time() * 1000)
    raw = bytearray(ts_ms.to_bytes(6, "big", signed=False) + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def format_document_number(value: int, width: int) -> str:
    """Zero-pad a sequence value, e.g. 7 -> '000007' for width 6."""
    if value < 1:
        raise ValueError("Document numbers start at 1")
    return str(value).zfill(width)


def adjustment_reference(now: datetime) -> str:
    return f"ADJ-{int(now.timestamp() * 1000)}"
