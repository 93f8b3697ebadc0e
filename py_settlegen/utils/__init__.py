"""
Utility helpers.
"""

from .random import make_rng, spawn_rng

__all__ = ["make_rng", "spawn_rng"]
