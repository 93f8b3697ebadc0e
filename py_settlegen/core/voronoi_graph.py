"""
Voronoi diagram construction.

Cell rings come from GEOS (shapely) extended to a large frame; adjacency comes
from the scipy Delaunay triangulation of the same seeds.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

import numpy as np
import structlog
import shapely
from scipy.spatial import Delaunay, QhullError, cKDTree
from shapely.geometry import MultiPoint
from shapely.geometry import Polygon as ShapelyPolygon

from .errors import InsufficientSeeds
from .geometry import Point2, polygon_parts
from .seed_sampler import SeedArena

logger = structlog.get_logger()

# Seeds closer than this are considered coincident
COINCIDENT_EPSILON = 1e-9


@dataclass(frozen=True)
class VoronoiCell:
    """Unclipped Voronoi cell of one seed, bounded by the frame polygon."""

    seed_id: int
    ring: Tuple[Point2, ...]
    neighbor_ids: FrozenSet[int]


@dataclass
class VoronoiDiagram:
    """Voronoi diagram keyed by seed id.

    ``adjacency`` is the Delaunay edge set: two seeds are neighbours iff they
    share a Delaunay edge. ``frame`` is the large square that stands in for
    infinity on hull cells.
    """

    seed_ids: List[int]
    points: np.ndarray
    cells: Dict[int, VoronoiCell]
    adjacency: Dict[int, List[int]]
    triangles: List[Tuple[int, int, int]]
    frame: Tuple[Point2, ...]
    hull_ids: FrozenSet[int] = field(default_factory=frozenset)

    def __len__(self) -> int:
        return len(self.cells)


def check_seed_configuration(points: np.ndarray) -> None:
    """
    Reject seed sets the Delaunay triangulation cannot handle.

    Raises:
        InsufficientSeeds: Fewer than 3 seeds, coincident seeds, or all
            seeds on one line
    """
    n = len(points)
    if n < 3:
        raise InsufficientSeeds(
            f"At least 3 seeds are required to build a Voronoi diagram, got {n}",
            seed_count=n,
        )

    pairs = cKDTree(points).query_pairs(COINCIDENT_EPSILON)
    if pairs:
        raise InsufficientSeeds(
            f"{len(pairs)} pairs of coincident seeds", seed_count=n
        )

    centered = points - points.mean(axis=0)
    singular = np.linalg.svd(centered, compute_uv=False)
    if singular[0] == 0.0 or singular[1] <= 1e-9 * singular[0]:
        raise InsufficientSeeds("All seeds are collinear", seed_count=n)


def build_cell_connectivity(tri: Delaunay, seed_ids: Sequence[int]) -> Dict[int, List[int]]:
    """
    Build seed adjacency from the Delaunay triangulation.

    Args:
        tri: scipy Delaunay triangulation of the seed positions
        seed_ids: Seed id for each triangulation input point

    Returns:
        Mapping seed id -> sorted list of neighbouring seed ids
    """
    indptr, indices = tri.vertex_neighbor_vertices
    adjacency: Dict[int, List[int]] = {}
    for local, seed_id in enumerate(seed_ids):
        neighbours = indices[indptr[local]:indptr[local + 1]]
        adjacency[seed_id] = sorted(seed_ids[j] for j in neighbours)
    return adjacency


def compute_frame(
    points: np.ndarray,
    include_bounds: Optional[Tuple[float, float, float, float]] = None,
    scale: float = 4.0,
) -> Tuple[Point2, ...]:
    """
    Square that bounds every finite Voronoi vertex of interest.

    The square is centred on the seeds' bounding box and its side is *scale*
    times the larger of the seed extent and the extent of *include_bounds*.
    """
    minx, miny = points.min(axis=0)
    maxx, maxy = points.max(axis=0)
    if include_bounds is not None:
        bminx, bminy, bmaxx, bmaxy = include_bounds
        minx, miny = min(minx, bminx), min(miny, bminy)
        maxx, maxy = max(maxx, bmaxx), max(maxy, bmaxy)

    cx = (minx + maxx) / 2
    cy = (miny + maxy) / 2
    half = max(maxx - minx, maxy - miny, 1.0) * scale / 2
    return (
        (cx - half, cy - half),
        (cx + half, cy - half),
        (cx + half, cy + half),
        (cx - half, cy + half),
    )


def build_cell_rings(points: np.ndarray, frame: Sequence[Point2]) -> List[Tuple[Point2, ...]]:
    """
    Voronoi cell ring of every point, bounded by the frame.

    Args:
        points: ``(n, 2)`` seed positions
        frame: Convex polygon standing in for infinity

    Returns:
        One counter-clockwise ring per input point, in input order
    """
    frame_poly = ShapelyPolygon(frame)
    regions = shapely.voronoi_polygons(
        MultiPoint([tuple(p) for p in points]), extend_to=frame_poly, ordered=True
    )
    if len(regions.geoms) != len(points):
        raise InsufficientSeeds(
            f"Voronoi diagram has {len(regions.geoms)} cells for {len(points)} seeds",
            seed_count=len(points),
        )

    rings = []
    for region in regions.geoms:
        parts = polygon_parts(region.intersection(frame_poly))
        rings.append(parts[0].exterior if parts else tuple())
    return rings


def build_voronoi(
    arena: SeedArena,
    include_bounds: Optional[Tuple[float, float, float, float]] = None,
    frame_scale: float = 4.0,
) -> VoronoiDiagram:
    """
    Build the Voronoi diagram of the current seed set.

    Args:
        arena: Seeds to triangulate
        include_bounds: Extra bounds the frame must cover (usually the site)
        frame_scale: Frame size relative to the covered extent

    Returns:
        VoronoiDiagram with one convex cell per seed

    Raises:
        InsufficientSeeds: If the seed set is too small or degenerate
    """
    seed_ids = arena.ids()
    points = arena.positions()
    check_seed_configuration(points)

    try:
        tri = Delaunay(points)
    except QhullError as exc:
        raise InsufficientSeeds(
            f"Delaunay triangulation failed: {exc}", seed_count=len(points)
        ) from exc

    if len(tri.coplanar):
        raise InsufficientSeeds(
            f"{len(tri.coplanar)} seeds were dropped by the triangulation as coincident",
            seed_count=len(points),
        )

    adjacency = build_cell_connectivity(tri, seed_ids)
    frame = compute_frame(points, include_bounds, frame_scale)
    rings = build_cell_rings(points, frame)

    cells: Dict[int, VoronoiCell] = {}
    for sid, ring in zip(seed_ids, rings):
        cells[sid] = VoronoiCell(
            seed_id=sid, ring=ring, neighbor_ids=frozenset(adjacency[sid])
        )

    triangles = [
        tuple(seed_ids[int(v)] for v in simplex) for simplex in tri.simplices
    ]
    hull_ids = frozenset(seed_ids[int(v)] for v in np.unique(tri.convex_hull))

    logger.debug(
        "Voronoi diagram built",
        seeds=len(seed_ids),
        triangles=len(triangles),
        hull_cells=len(hull_ids),
    )

    return VoronoiDiagram(
        seed_ids=seed_ids,
        points=points,
        cells=cells,
        adjacency=adjacency,
        triangles=triangles,
        frame=frame,
        hull_ids=hull_ids,
    )
