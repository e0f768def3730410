# laundry_server/app/utils.py
import random
import string
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

ORDER_PREFIX = "ORD-"
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
CENTS = Decimal("0.01")

def format_order_number(timestamp_ms: int, suffix: str, prefix: str = ORDER_PREFIX) -> str:
    return f"{prefix}{str(timestamp_ms)[-6:]}{suffix}"

def new_order_number(timestamp_ms: int | None = None, rng: random.Random | None = None) -> str:
    """
    ORD- + last 6 digits of the epoch-millis timestamp + 4 uppercase alphanumerics.
    Uniqueness is enforced by the orders table; callers regenerate on conflict.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return format_order_number(timestamp_ms, suffix)

def to_money(value) -> Decimal:
    # floats go through str() so 0.1 stays 0.1
    if isinstance(value, float):
        value = str(value)
    return Decimal(value if value is not None else 0).quantize(CENTS, rounding=ROUND_HALF_UP)

def round_half_up(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)

def utcnow() -> datetime:
    # naive UTC, matching what DateTime columns hand back on sqlite
    return datetime.now(timezone.utc).replace(tzinfo=None)

def as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


class KeyedLocks:
    """One lock per key (e.g. order id) so writers on the same row queue up.

    Entries are reference counted and dropped once the last holder leaves.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict = {}  # key -> [RLock, holders]

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]
