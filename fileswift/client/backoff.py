"""Retry delay schedule shared by the uploaders."""

import random

BASE_DELAY_MS = 1000
MAX_JITTER_MS = 500
MAX_DELAY_MS = 30000


def compute_backoff(attempt: int, rng: random.Random = random) -> float:
    """
    Delay in milliseconds before retry number ``attempt`` (1-based).

    Exponential base of 1s, 2s, 4s... plus up to 500ms of uniform jitter,
    capped at 30s.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    base = BASE_DELAY_MS * 2 ** (attempt - 1)
    jitter = rng.uniform(0, MAX_JITTER_MS)
    return min(base + jitter, MAX_DELAY_MS)
