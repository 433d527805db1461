"""
Collision-resistant identifiers for audit rows and record sets.

Layout (25 characters):
    'c' + timestamp(8) + counter(4) + host(2) + pid(2) + random(4) + random(4)

The timestamp is the current time in milliseconds, the counter wraps at
36**4 and both are base-36 encoded. The random blocks are hex.
"""
import os
import random
import socket
import time
from typing import Optional

BASE = 36
BLOCK_SIZE = 4
TIMESTAMP_SIZE = 8
FINGERPRINT_BLOCK_SIZE = 2
DISCRETE_VALUES = BASE ** BLOCK_SIZE
CUID_LENGTH = 1 + TIMESTAMP_SIZE + BLOCK_SIZE + 2 * FINGERPRINT_BLOCK_SIZE + 2 * BLOCK_SIZE

_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("negative values cannot be encoded")
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, BASE)
        out.append(_DIGITS[rem])
    return "".join(reversed(out))


def _fit(value: str, size: int) -> str:
    """Left-pad with zeros, keeping the least significant digits."""
    return value.rjust(size, "0")[-size:]


def host_fingerprint(hostname: str, pid: int) -> str:
    checksum = len(hostname) + BASE + sum(ord(ch) for ch in hostname)
    return _fit(to_base36(checksum), FINGERPRINT_BLOCK_SIZE) + _fit(to_base36(pid), FINGERPRINT_BLOCK_SIZE)


class CuidGenerator:
    """Stateful generator; the counter is per instance."""

    def __init__(self, hostname: Optional[str] = None, pid: Optional[int] = None, rng: Optional[random.Random] = None):
        self.fingerprint = host_fingerprint(hostname or socket.gethostname(), os.getpid() if pid is None else pid)
        self._counter = 0
        self._rng = rng or random.Random()

    def _next_counter(self) -> int:
        value = self._counter
        self._counter = (self._counter + 1) % DISCRETE_VALUES
        return value

    def _random_block(self) -> str:
        return format(self._rng.getrandbits(16), "04x")

    def new(self, now_ms: Optional[int] = None) -> str:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return "".join(
            (
                "c",
                _fit(to_base36(now_ms), TIMESTAMP_SIZE),
                _fit(to_base36(self._next_counter()), BLOCK_SIZE),
                self.fingerprint,
                self._random_block(),
                self._random_block(),
            )
        )


_generator = CuidGenerator()


def new_cuid() -> str:
    """Return a fresh identifier from the process-wide generator."""
    return _generator.new()
