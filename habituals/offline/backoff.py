"""Retry delay for the offline queue."""

import random

JITTER_MS = 300


def next_delay_ms(attempt, base=500, max_delay=10_000, rng=random):
    """Exponential delay base * 2**attempt plus up to 300ms jitter, capped at max_delay.

    rng is anything with .random(); pass random.Random(seed) for a
    deterministic sequence.
    """
    exp = min(max_delay, int(base * 2 ** attempt))
    jitter = int(rng.random() * JITTER_MS)
    return min(max_delay, exp + jitter)
