"""
Ear-clipping triangulation for plot footprints.

Holes are bridged into the outer ring first (rightmost hole vertex joined to
a visible outer vertex), then the resulting weakly simple ring is clipped.
Bridged rings repeat vertex positions, so containment tests ignore points
coincident with the candidate ear's corners.
"""

import math
from typing import List, Optional, Sequence, Tuple

from .errors import TriangulationError
from .geometry import Point2, clean_ring, ring_signed_area

Triangle = Tuple[int, int, int]

# Relative tolerance for orientation tests
ORIENT_EPSILON = 1e-12


def _cross(o: Point2, a: Point2, b: Point2) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def _same(a: Point2, b: Point2) -> bool:
    return a[0] == b[0] and a[1] == b[1]


def _point_in_triangle(p: Point2, a: Point2, b: Point2, c: Point2) -> bool:
    """Inside or on the edge of a counter-clockwise triangle."""
    return _cross(a, b, p) >= 0 and _cross(b, c, p) >= 0 and _cross(c, a, p) >= 0


def _is_ear(ring: Sequence[Point2], indices: List[int], i: int, tolerance: float) -> bool:
    n = len(indices)
    a = ring[indices[i - 1]]
    b = ring[indices[i]]
    c = ring[indices[(i + 1) % n]]
    if _cross(a, b, c) <= tolerance:
        return False
    for idx in indices:
        p = ring[idx]
        if _same(p, a) or _same(p, b) or _same(p, c):
            continue
        if _point_in_triangle(p, a, b, c):
            return False
    return True


def triangulate_ring(ring: Sequence[Point2]) -> List[Triangle]:
    """
    Triangulate a counter-clockwise (weakly) simple ring by ear clipping.

    Args:
        ring: Vertices in CCW order, no closing duplicate

    Returns:
        Index triples into *ring*, each wound counter-clockwise

    Raises:
        TriangulationError: If fewer than 3 vertices or no ear can be found
    """
    n = len(ring)
    if n < 3:
        raise TriangulationError(f"Ring must have at least 3 vertices, got {n}")

    xs = [p[0] for p in ring]
    ys = [p[1] for p in ring]
    scale = max(max(xs) - min(xs), max(ys) - min(ys), 1e-300)
    tolerance = ORIENT_EPSILON * scale * scale

    indices = list(range(n))
    triangles: List[Triangle] = []

    while len(indices) > 3:
        for i in range(len(indices)):
            if _is_ear(ring, indices, i, tolerance):
                break
        else:
            # Drop a flat vertex if one is left, otherwise give up
            i = _find_flat_vertex(ring, indices, tolerance)
            if i is None:
                raise TriangulationError(
                    f"No ear found with {len(indices)} vertices remaining"
                )
            indices.pop(i)
            continue

        prev_idx = indices[i - 1]
        next_idx = indices[(i + 1) % len(indices)]
        triangles.append((prev_idx, indices[i], next_idx))
        indices.pop(i)

    a, b, c = indices
    if _cross(ring[a], ring[b], ring[c]) > tolerance:
        triangles.append((a, b, c))
    return triangles


def _find_flat_vertex(
    ring: Sequence[Point2], indices: List[int], tolerance: float
) -> Optional[int]:
    n = len(indices)
    for i in range(n):
        a = ring[indices[i - 1]]
        b = ring[indices[i]]
        c = ring[indices[(i + 1) % n]]
        if abs(_cross(a, b, c)) <= tolerance:
            return i
    return None


def _segments_cross(p1: Point2, p2: Point2, q1: Point2, q2: Point2) -> bool:
    """Proper intersection of two segments (shared endpoints do not count)."""
    if _same(p1, q1) or _same(p1, q2) or _same(p2, q1) or _same(p2, q2):
        return False
    d1 = _cross(q1, q2, p1)
    d2 = _cross(q1, q2, p2)
    d3 = _cross(p1, p2, q1)
    d4 = _cross(p1, p2, q2)
    return d1 * d2 < 0 and d3 * d4 < 0


def _visible(
    origin: Point2, target: Point2, rings: Sequence[Sequence[Point2]]
) -> bool:
    for ring in rings:
        n = len(ring)
        for i in range(n):
            if _segments_cross(origin, target, ring[i], ring[(i + 1) % n]):
                return False
    return True


def bridge_hole(
    outer: List[Point2], hole: Sequence[Point2], blockers: Sequence[Sequence[Point2]]
) -> List[Point2]:
    """
    Splice a clockwise hole into the outer ring through a bridge edge.

    The bridge joins the hole's rightmost vertex to the nearest outer vertex
    it can see without crossing *outer*, the hole or any ring in *blockers*.
    """
    if len(hole) < 3:
        raise TriangulationError("Hole must have at least 3 vertices")

    right = max(range(len(hole)), key=lambda i: (hole[i][0], hole[i][1]))
    anchor = hole[right]
    rings = [outer, hole] + list(blockers)

    candidates = sorted(range(len(outer)), key=lambda i: math.dist(outer[i], anchor))
    for idx in candidates:
        if _visible(anchor, outer[idx], rings):
            break
    else:
        raise TriangulationError(
            f"No visible outer vertex for hole vertex ({anchor[0]:.6g}, {anchor[1]:.6g})"
        )

    rotated = [hole[(right + k) % len(hole)] for k in range(len(hole))]
    return outer[: idx + 1] + rotated + [anchor, outer[idx]] + outer[idx + 1:]


def triangulate_polygon(
    exterior: Sequence[Point2], holes: Sequence[Sequence[Point2]] = ()
) -> Tuple[List[Point2], List[Triangle]]:
    """
    Triangulate a polygon with optional holes.

    Args:
        exterior: Outer ring (either winding)
        holes: Hole rings (either winding)

    Returns:
        (vertices, triangles): triangles index into vertices and are wound
        counter-clockwise seen from +Z

    Raises:
        TriangulationError: If a ring collapses or clipping fails
    """
    outer = clean_ring(exterior)
    if len(outer) < 3:
        raise TriangulationError("Exterior has fewer than 3 usable vertices")
    if ring_signed_area(outer) < 0:
        outer.reverse()

    hole_rings = []
    for hole in holes:
        h = clean_ring(hole)
        if len(h) < 3:
            continue
        if ring_signed_area(h) > 0:
            h.reverse()
        hole_rings.append(h)

    # Rightmost holes first so earlier bridges never block later ones
    hole_rings.sort(key=lambda h: max(p[0] for p in h), reverse=True)
    merged = list(outer)
    for k, hole in enumerate(hole_rings):
        merged = bridge_hole(merged, hole, hole_rings[k + 1:])

    return merged, triangulate_ring(merged)
