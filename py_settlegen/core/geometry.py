"""
Planar geometry primitives shared by every pipeline stage.

Points are plain ``(x, y)`` tuples. :class:`Polygon` keeps an outer ring in
counter-clockwise order and zero or more hole rings in clockwise order, without
the closing duplicate vertex. Heavy lifting (boolean operations, validity) is
delegated to shapely; the small shoelace helpers below are used on hot paths
where building a shapely object would be wasteful.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

import numpy as np
from shapely.geometry import GeometryCollection, MultiPolygon
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

Point2 = Tuple[float, float]
Ring = Tuple[Point2, ...]

# Coordinates closer than this are treated as the same vertex when cleaning rings
VERTEX_EPSILON = 1e-9


def ring_signed_area(ring: Sequence[Point2]) -> float:
    """Signed shoelace area; positive for counter-clockwise rings."""
    n = len(ring)
    if n < 3:
        return 0.0
    area = 0.0
    for i in range(n):
        x1, y1 = ring[i]
        x2, y2 = ring[(i + 1) % n]
        area += x1 * y2 - x2 * y1
    return area / 2.0


def ring_centroid(ring: Sequence[Point2]) -> Point2:
    """Compute the centroid of a simple ring.

    Falls back to the vertex mean for rings with (near) zero area.

    Args:
        ring: Ring vertices, either winding

    Returns:
        (x, y) centroid
    """
    n = len(ring)
    if n == 0:
        raise ValueError("Cannot take the centroid of an empty ring")
    if n < 3:
        return (
            sum(p[0] for p in ring) / n,
            sum(p[1] for p in ring) / n,
        )

    area = 0.0
    cx = 0.0
    cy = 0.0
    for i in range(n):
        x1, y1 = ring[i]
        x2, y2 = ring[(i + 1) % n]
        a = x1 * y2 - x2 * y1
        area += a
        cx += (x1 + x2) * a
        cy += (y1 + y2) * a

    if abs(area) < 1e-12:
        return (
            sum(p[0] for p in ring) / n,
            sum(p[1] for p in ring) / n,
        )

    area *= 0.5
    return (cx / (6.0 * area), cy / (6.0 * area))


def point_in_ring(point: Point2, ring: Sequence[Point2]) -> bool:
    """Ray-casting point-in-polygon test against a single ring."""
    if len(ring) < 3:
        return False
    x, y = point
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def clean_ring(ring: Iterable[Point2], epsilon: float = VERTEX_EPSILON) -> List[Point2]:
    """Drop the closing duplicate, repeated vertices and collinear vertices."""
    pts = [(float(x), float(y)) for x, y in ring]
    if len(pts) > 1 and _close(pts[0], pts[-1], epsilon):
        pts.pop()

    deduped: List[Point2] = []
    for p in pts:
        if not deduped or not _close(deduped[-1], p, epsilon):
            deduped.append(p)
    if len(deduped) > 1 and _close(deduped[0], deduped[-1], epsilon):
        deduped.pop()

    # Remove collinear vertices until stable
    changed = True
    while changed and len(deduped) >= 3:
        changed = False
        n = len(deduped)
        for i in range(n):
            a = deduped[i - 1]
            b = deduped[i]
            c = deduped[(i + 1) % n]
            cross = (b[0] - a[0]) * (c[1] - b[1]) - (b[1] - a[1]) * (c[0] - b[0])
            scale = max(math.dist(a, b) * math.dist(b, c), 1e-300)
            if abs(cross) / scale < 1e-10:
                deduped.pop(i)
                changed = True
                break
    return deduped


def _close(a: Point2, b: Point2, epsilon: float) -> bool:
    return abs(a[0] - b[0]) <= epsilon and abs(a[1] - b[1]) <= epsilon


@dataclass(frozen=True)
class Polygon:
    """A simple polygon with optional holes.

    The exterior is stored counter-clockwise, holes clockwise. Use
    :meth:`from_points` or :meth:`from_shapely` to get normalised winding.
    """

    exterior: Ring
    holes: Tuple[Ring, ...] = field(default_factory=tuple)

    @classmethod
    def from_points(
        cls, exterior: Iterable[Point2], holes: Iterable[Iterable[Point2]] = ()
    ) -> "Polygon":
        """Build a polygon from raw rings, fixing winding and cleaning vertices."""
        shell = clean_ring(exterior)
        if ring_signed_area(shell) < 0:
            shell.reverse()
        hole_rings = []
        for hole in holes:
            h = clean_ring(hole)
            if ring_signed_area(h) > 0:
                h.reverse()
            hole_rings.append(tuple(h))
        return cls(exterior=tuple(shell), holes=tuple(hole_rings))

    @classmethod
    def from_shapely(cls, geom: ShapelyPolygon) -> "Polygon":
        """Convert a shapely polygon, normalising ring orientation."""
        oriented = orient(geom, sign=1.0)
        return cls.from_points(
            oriented.exterior.coords,
            [interior.coords for interior in oriented.interiors],
        )

    def to_shapely(self) -> ShapelyPolygon:
        return ShapelyPolygon(self.exterior, [list(h) for h in self.holes])

    @property
    def area(self) -> float:
        """Unsigned area with holes subtracted."""
        outer = abs(ring_signed_area(self.exterior))
        return outer - sum(abs(ring_signed_area(h)) for h in self.holes)

    @property
    def centroid(self) -> Point2:
        """Area centroid, holes accounted for."""
        if not self.holes:
            return ring_centroid(self.exterior)
        outer_area = abs(ring_signed_area(self.exterior))
        ox, oy = ring_centroid(self.exterior)
        sx, sy, total = ox * outer_area, oy * outer_area, outer_area
        for hole in self.holes:
            ha = abs(ring_signed_area(hole))
            hx, hy = ring_centroid(hole)
            sx -= hx * ha
            sy -= hy * ha
            total -= ha
        if total <= 1e-12:
            return (ox, oy)
        return (sx / total, sy / total)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        xs = [p[0] for p in self.exterior]
        ys = [p[1] for p in self.exterior]
        return (min(xs), min(ys), max(xs), max(ys))

    @property
    def vertex_count(self) -> int:
        return len(self.exterior) + sum(len(h) for h in self.holes)

    def contains_point(self, point: Point2) -> bool:
        """True when *point* is inside the exterior and outside every hole."""
        if not point_in_ring(point, self.exterior):
            return False
        return not any(point_in_ring(point, hole) for hole in self.holes)

    def edges(self) -> List[Tuple[Point2, Point2]]:
        """All ring edges (exterior first, then holes) as point pairs."""
        result = []
        for ring in (self.exterior,) + tuple(self.holes):
            n = len(ring)
            for i in range(n):
                result.append((ring[i], ring[(i + 1) % n]))
        return result

    def as_array(self) -> np.ndarray:
        """Exterior ring as an ``(n, 2)`` float array."""
        return np.asarray(self.exterior, dtype=np.float64)


def polygon_parts(geom: BaseGeometry, min_area: float = 0.0) -> List[Polygon]:
    """Flatten a shapely geometry into polygon parts, largest first.

    Points, lines and parts with area ``<= min_area`` are discarded.

    Args:
        geom: Any shapely geometry (Polygon, MultiPolygon, GeometryCollection)
        min_area: Parts at or below this area are dropped

    Returns:
        List of :class:`Polygon` sorted by descending area
    """
    if geom is None or geom.is_empty:
        return []

    if isinstance(geom, ShapelyPolygon):
        candidates = [geom]
    elif isinstance(geom, (MultiPolygon, GeometryCollection)):
        candidates = []
        for sub in geom.geoms:
            if isinstance(sub, ShapelyPolygon):
                candidates.append(sub)
            elif isinstance(sub, (MultiPolygon, GeometryCollection)):
                candidates.extend(
                    p for p in sub.geoms if isinstance(p, ShapelyPolygon)
                )
    else:
        return []

    parts = []
    for candidate in candidates:
        if candidate.is_empty or candidate.area <= min_area:
            continue
        poly = Polygon.from_shapely(candidate)
        if len(poly.exterior) >= 3:
            parts.append(poly)

    parts.sort(key=lambda p: p.area, reverse=True)
    return parts


def multipart_centroid(parts: Sequence[Polygon]) -> Point2:
    """Area-weighted centroid of several disjoint polygons."""
    total = 0.0
    sx = 0.0
    sy = 0.0
    for part in parts:
        a = part.area
        cx, cy = part.centroid
        sx += cx * a
        sy += cy * a
        total += a
    if total <= 0.0:
        raise ValueError("Cannot take the centroid of zero-area parts")
    return (sx / total, sy / total)
