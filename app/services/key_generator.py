import secrets
from typing import Callable

from app.services.errors import KeyExhausted

KEY_MIN = 100_000
KEY_MAX = 999_999
MAX_KEY_ATTEMPTS = 10

_system_rng = secrets.SystemRandom()


def generate_transfer_key(
    exists: Callable[[int], bool],
    *,
    max_attempts: int = MAX_KEY_ATTEMPTS,
    rng=None,
) -> int:
    """Pick a 6-digit key that ``exists`` does not report as taken.

    The key space holds only 900,000 values, so the search is capped at
    ``max_attempts`` samples and raises ``KeyExhausted`` beyond that.
    """
    rng = rng or _system_rng
    for _ in range(max_attempts):
        candidate = rng.randint(KEY_MIN, KEY_MAX)
        if not exists(candidate):
            return candidate
    raise KeyExhausted(f"No free transfer key after {max_attempts} attempts")
