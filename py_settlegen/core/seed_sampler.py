"""
Seed sampling and the seed arena.

Seeds are generator points for the Voronoi diagram. They live in a
:class:`SeedArena` keyed by a stable integer id: the CVT relaxer moves seeds
in place and occasionally drops one, but ids are never reused, so cells,
roads and plots can refer back to their seed across iterations.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional

import numpy as np
import structlog

from .boundary import Boundary
from .errors import InputError, SamplingExhausted
from .geometry import Point2

logger = structlog.get_logger()


class SamplingMethod(str, Enum):
    """Initial seed placement strategies."""

    UNIFORM = "uniform"
    JITTERED = "jittered"
    SPIRAL = "spiral"


@dataclass
class Seed:
    """A Voronoi generator with a stable identity."""

    id: int
    x: float
    y: float

    @property
    def position(self) -> Point2:
        return (self.x, self.y)


class SeedArena:
    """Seeds indexed by stable integer id."""

    def __init__(self):
        self._seeds: Dict[int, Seed] = {}
        self._next_id = 0

    @classmethod
    def from_points(cls, points) -> "SeedArena":
        arena = cls()
        for x, y in points:
            arena.add(x, y)
        return arena

    def add(self, x: float, y: float) -> int:
        seed_id = self._next_id
        self._seeds[seed_id] = Seed(seed_id, float(x), float(y))
        self._next_id += 1
        return seed_id

    def get(self, seed_id: int) -> Seed:
        return self._seeds[seed_id]

    def move(self, seed_id: int, x: float, y: float) -> None:
        seed = self._seeds[seed_id]
        seed.x = float(x)
        seed.y = float(y)

    def drop(self, seed_id: int) -> None:
        del self._seeds[seed_id]

    def ids(self) -> List[int]:
        return sorted(self._seeds)

    def positions(self) -> np.ndarray:
        """Positions as an ``(n, 2)`` array ordered by seed id."""
        if not self._seeds:
            return np.zeros((0, 2), dtype=np.float64)
        return np.array(
            [self._seeds[i].position for i in self.ids()], dtype=np.float64
        )

    def copy(self) -> "SeedArena":
        clone = SeedArena()
        clone._seeds = {i: Seed(s.id, s.x, s.y) for i, s in self._seeds.items()}
        clone._next_id = self._next_id
        return clone

    def __len__(self) -> int:
        return len(self._seeds)

    def __iter__(self) -> Iterator[Seed]:
        for seed_id in self.ids():
            yield self._seeds[seed_id]

    def __contains__(self, seed_id: int) -> bool:
        return seed_id in self._seeds


def sample_seeds(
    boundary: Boundary,
    count: int,
    rng: np.random.Generator,
    method: SamplingMethod = SamplingMethod.JITTERED,
    max_attempts: Optional[int] = None,
) -> SeedArena:
    """
    Place *count* seeds strictly inside the boundary.

    Args:
        boundary: Validated site boundary (holes are excluded)
        count: Number of seeds to place
        rng: Random generator
        method: Placement strategy
        max_attempts: Cap on rejection-sampling draws, defaults to
            ``max(1000, 200 * count)``

    Returns:
        SeedArena with ids ``0..count-1``

    Raises:
        InputError: If count is not positive
        SamplingExhausted: If the attempt cap is hit before all seeds are placed
    """
    if count <= 0:
        raise InputError(f"Seed count must be positive, got {count}")

    method = SamplingMethod(method)
    if max_attempts is None:
        max_attempts = max(1000, 200 * count)

    if method == SamplingMethod.JITTERED:
        points = _jittered_candidates(boundary, count, rng)
    elif method == SamplingMethod.SPIRAL:
        points = _spiral_candidates(boundary, count, rng)
    else:
        points = []

    if len(points) > count:
        keep = np.sort(rng.choice(len(points), size=count, replace=False))
        points = [points[i] for i in keep]

    attempts = 0
    if len(points) < count:
        extra, attempts = _rejection_sample(
            boundary, count - len(points), rng, max_attempts
        )
        points.extend(extra)
        if len(points) < count:
            logger.warning(
                "Seed sampling exhausted",
                requested=count,
                placed=len(points),
                attempts=attempts,
            )
            raise SamplingExhausted(count, len(points), attempts)

    logger.info(
        "Seeds sampled",
        method=method.value,
        count=count,
        rejection_attempts=attempts,
    )
    return SeedArena.from_points(points)


def _rejection_sample(
    boundary: Boundary, needed: int, rng: np.random.Generator, max_attempts: int
):
    """Uniform draws in the bounding box, tested against the boundary in batches."""
    minx, miny, maxx, maxy = boundary.bounds
    points: List[Point2] = []
    attempts = 0
    while len(points) < needed and attempts < max_attempts:
        missing = needed - len(points)
        batch = min(max(4 * missing, 64), max_attempts - attempts)
        draws = np.column_stack(
            [rng.uniform(minx, maxx, batch), rng.uniform(miny, maxy, batch)]
        )
        inside = np.flatnonzero(boundary.contains_many(draws))[:missing]
        # Draws after the last accepted one were never needed
        attempts += int(inside[-1]) + 1 if len(inside) == missing else batch
        points.extend((float(x), float(y)) for x, y in draws[inside])
    return points, attempts


def _jittered_candidates(
    boundary: Boundary, count: int, rng: np.random.Generator
) -> List[Point2]:
    """Jittered square grid over the bounding box, clipped to the boundary."""
    minx, miny, maxx, maxy = boundary.bounds
    spacing = math.sqrt(boundary.area / count)
    radius = spacing / 2
    jittering = radius * 0.9  # max deviation

    grid = []
    y = miny + radius
    while y < maxy:
        x = minx + radius
        while x < maxx:
            grid.append((x, y))
            x += spacing
        y += spacing

    candidates = np.asarray(grid, dtype=np.float64).reshape(-1, 2)
    candidates = candidates + rng.uniform(-jittering, jittering, size=candidates.shape)
    inside = boundary.contains_many(candidates)
    return [(float(x), float(y)) for x, y in candidates[inside]]


def _spiral_candidates(
    boundary: Boundary, count: int, rng: np.random.Generator
) -> List[Point2]:
    """Jittered Archimedean spiral around the boundary's interior point."""
    cx, cy = boundary.representative_point()
    fit_radius = math.sqrt(boundary.area / math.pi)
    spread = fit_radius / max(count - 1, 1)

    t = np.arange(count, dtype=np.float64)
    angle = t * 0.5 + rng.uniform(-0.3, 0.3, size=count)
    radius = t * spread + rng.uniform(-spread * 0.2, spread * 0.2, size=count)
    candidates = np.column_stack([cx + np.cos(angle) * radius, cy + np.sin(angle) * radius])
    inside = boundary.contains_many(candidates)
    return [(float(x), float(y)) for x, y in candidates[inside]]
