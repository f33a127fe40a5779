from __future__ import annotations

import re
from typing import Any, FrozenSet

from ledgerscan.core.errors import InvalidAddressError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEAD_ADDRESS = "0x000000000000000000000000000000000000dead"

BURN_SENTINELS: FrozenSet[str] = frozenset({ZERO_ADDRESS, DEAD_ADDRESS})

_ADDRESS_RE = re.compile(r"^0x[a-f0-9]{40}$")


def normalize_address(address: Any) -> str:
    return str(address or "").strip().lower()


def require_address(address: Any) -> str:
    addr = normalize_address(address)
    if not _ADDRESS_RE.match(addr):
        raise InvalidAddressError(f"Bad address: {address!r}")
    return addr


def topic_to_address(topic: Any) -> str:
    # indexed address topics are 32-byte words; the address is the low 20 bytes
    return ("0x" + str(topic or "")[-40:]).lower()


def parse_int(value: Any, default: int = 0) -> int:
    """
    Parse an explorer numeric field (decimal or 0x-hex string) as an int.

    Never goes through float, so 18-decimal supplies keep every digit.
    """
    if value is None:
        return default
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if not s:
        return default
    try:
        if s.lower().startswith("0x"):
            return int(s, 16) if len(s) > 2 else 0
        return int(s)
    except ValueError:
        return default
