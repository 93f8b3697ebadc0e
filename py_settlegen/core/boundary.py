"""
Boundary model: the validated, immutable site polygon.

A boundary is checked once (simple rings, holes inside the shell, positive
area) and then shared read-only by every stage of a generation run.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import structlog
import shapely
from shapely.geometry import LinearRing
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.validation import explain_validity

from .errors import InputError
from .geometry import Point2, Polygon, clean_ring

logger = structlog.get_logger()


@dataclass(frozen=True)
class Boundary:
    """Buildable site envelope.

    Use :meth:`create` rather than the constructor; it validates the rings.
    """

    polygon: Polygon
    _shape: ShapelyPolygon = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        shape = self.polygon.to_shapely()
        # Prepared once up front; containment queries are read-only afterwards
        shapely.prepare(shape)
        object.__setattr__(self, "_shape", shape)

    @classmethod
    def create(
        cls,
        exterior: Iterable[Point2],
        holes: Iterable[Iterable[Point2]] = (),
    ) -> "Boundary":
        """
        Validate raw rings and build a boundary.

        Args:
            exterior: Outer ring vertices, either winding, no closing duplicate needed
            holes: Optional hole rings

        Returns:
            Validated Boundary

        Raises:
            InputError: If any ring is degenerate or self-intersecting, holes
                escape the shell, or the enclosed area is zero
        """
        raw_exterior = [tuple(map(float, p)) for p in exterior]
        raw_holes = [[tuple(map(float, p)) for p in hole] for hole in holes]

        _validate_ring(raw_exterior, "exterior")
        for idx, hole in enumerate(raw_holes):
            _validate_ring(hole, f"hole {idx}")

        polygon = Polygon.from_points(raw_exterior, raw_holes)
        if len(polygon.exterior) < 3:
            raise InputError("Boundary exterior collapses to fewer than 3 distinct vertices")

        shape = polygon.to_shapely()
        if not shape.is_valid:
            raise InputError(f"Boundary polygon is invalid: {explain_validity(shape)}")
        if shape.area <= 0.0:
            raise InputError("Boundary polygon has zero area")

        boundary = cls(polygon=polygon)
        logger.debug(
            "Boundary validated",
            vertices=polygon.vertex_count,
            holes=len(polygon.holes),
            area=round(boundary.area, 6),
        )
        return boundary

    @classmethod
    def from_shapely(cls, geom: ShapelyPolygon) -> "Boundary":
        """Validate an existing shapely polygon as a boundary."""
        if not isinstance(geom, ShapelyPolygon):
            raise InputError(f"Boundary must be a Polygon, got {geom.geom_type}")
        return cls.create(
            list(geom.exterior.coords), [list(i.coords) for i in geom.interiors]
        )

    @property
    def shape(self) -> ShapelyPolygon:
        return self._shape

    @property
    def area(self) -> float:
        return self._shape.area

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self._shape.bounds

    @property
    def extent(self) -> float:
        """Length of the bounding-box diagonal."""
        minx, miny, maxx, maxy = self.bounds
        return math.hypot(maxx - minx, maxy - miny)

    @property
    def is_simply_connected(self) -> bool:
        return not self.polygon.holes

    def contains(self, point: Point2) -> bool:
        """Strict interior test; points on the boundary or in holes are outside."""
        return bool(shapely.contains_xy(self._shape, point[0], point[1]))

    def contains_many(self, points: np.ndarray) -> np.ndarray:
        """Vectorised :meth:`contains` for an ``(n, 2)`` array."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if len(points) == 0:
            return np.zeros(0, dtype=bool)
        return shapely.contains_xy(self._shape, points[:, 0], points[:, 1])

    def representative_point(self) -> Point2:
        """A point guaranteed to lie inside the boundary."""
        p = self._shape.representative_point()
        return (p.x, p.y)


def _validate_ring(ring: Sequence[Point2], label: str) -> None:
    cleaned = clean_ring(ring)
    if len(cleaned) < 3:
        raise InputError(f"Boundary {label} needs at least 3 distinct vertices, got {len(cleaned)}")
    if not all(math.isfinite(c) for p in cleaned for c in p):
        raise InputError(f"Boundary {label} contains non-finite coordinates")
    if not LinearRing(cleaned).is_simple:
        raise InputError(f"Boundary {label} is self-intersecting")


def generate_boundary_polygon(
    num_vertices: int,
    base_radius: float,
    rng: np.random.Generator,
    radius_variation: float = 0.2,
    center: Optional[Point2] = None,
) -> Boundary:
    """
    Generate a random star-shaped settlement boundary.

    Vertices are spaced evenly in angle around *center*; each radius is
    perturbed by up to ``±radius_variation`` of *base_radius*. The result is
    always simple because the angular order is preserved.

    Args:
        num_vertices: Number of boundary vertices (>= 3)
        base_radius: Mean distance of vertices from the center
        rng: Random generator
        radius_variation: Relative radius jitter in [0, 1)
        center: Polygon center, defaults to the origin

    Returns:
        Validated Boundary
    """
    if num_vertices < 3:
        raise InputError(f"A boundary needs at least 3 vertices, got {num_vertices}")
    if base_radius <= 0:
        raise InputError(f"Boundary radius must be positive, got {base_radius}")
    if not 0.0 <= radius_variation < 1.0:
        raise InputError(f"radius_variation must be in [0, 1), got {radius_variation}")

    cx, cy = center if center is not None else (0.0, 0.0)
    vertices = []
    for i in range(num_vertices):
        angle = (i / num_vertices) * 2.0 * math.pi
        radius = base_radius * (1.0 + rng.uniform(-radius_variation, radius_variation))
        vertices.append((cx + math.cos(angle) * radius, cy + math.sin(angle) * radius))

    return Boundary.create(vertices)
