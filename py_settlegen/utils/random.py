"""
Random number generation utilities.

Every stochastic stage draws from a numpy ``Generator`` derived from the run
seed. Per-item streams (one per cell) are spawned from ``(seed, key)`` so that
results do not depend on processing order or on worker scheduling.
"""

from typing import Optional, Sequence, Union

import numpy as np

SeedLike = Union[int, Sequence[int], None]

# Stream tags keep the stages independent of each other
STREAM_SAMPLING = 0
STREAM_SUBDIVISION = 1
STREAM_HEIGHTS = 2
STREAM_BOUNDARY = 3


def make_rng(seed: SeedLike, stream: Optional[int] = None) -> np.random.Generator:
    """
    Create a reproducible generator.

    Args:
        seed: Run seed (non-negative int), or None for OS entropy
        stream: Optional stage tag mixed into the seed

    Returns:
        numpy Generator
    """
    if seed is None:
        return np.random.default_rng()
    entropy = _as_entropy(seed)
    if stream is not None:
        entropy = entropy + [int(stream)]
    return np.random.default_rng(np.random.SeedSequence(entropy))


def spawn_rng(seed: SeedLike, stream: int, key: int) -> np.random.Generator:
    """Generator for a single item (e.g. one cell) inside a stage stream."""
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng(
        np.random.SeedSequence(_as_entropy(seed) + [int(stream), int(key)])
    )


def _as_entropy(seed: SeedLike) -> list:
    if isinstance(seed, (int, np.integer)):
        if seed < 0:
            raise ValueError(f"Random seed must be non-negative, got {seed}")
        return [int(seed)]
    return [int(s) for s in seed]
