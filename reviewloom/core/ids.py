"""Identifier generation.

Ids are 25-character strings shaped like a CUID: a literal "c" followed by
24 lowercase base36 characters (8 timestamp, 4 counter, 12 random). The
timestamp prefix makes ids sort by creation time; the counter and random
tail keep them unique across processes.
"""

import re
import secrets
import threading
import time

from .constants import ID_PATTERN

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_ID_RE = re.compile(ID_PATTERN)

_counter = secrets.randbelow(36 ** 4)
_counter_lock = threading.Lock()


def _base36(value: int, width: int) -> str:
    chars = []
    while value:
        value, rem = divmod(value, 36)
        chars.append(_ALPHABET[rem])
    encoded = "".join(reversed(chars)) or "0"
    return encoded.rjust(width, "0")[-width:]


def _next_count() -> int:
    global _counter
    with _counter_lock:
        _counter = (_counter + 1) % (36 ** 4)
        return _counter


def new_id() -> str:
    """Generate a new creation-sortable identifier."""
    timestamp = _base36(int(time.time() * 1000), 8)
    counter = _base36(_next_count(), 4)
    tail = "".join(secrets.choice(_ALPHABET) for _ in range(12))
    return f"c{timestamp}{counter}{tail}"


def is_valid_id(value: str) -> bool:
    return isinstance(value, str) and bool(_ID_RE.match(value))
