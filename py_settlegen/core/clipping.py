"""
Boundary clipping of Voronoi cells.

Each frame-bounded Voronoi cell is intersected with the (possibly concave,
possibly holed) site boundary. Concave sites can cut one cell into several
disjoint parts; the fragment policy decides whether all of them survive.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

import structlog
from shapely.geometry import MultiPolygon
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry

from .boundary import Boundary
from .geometry import Point2, Polygon, multipart_centroid, polygon_parts
from .voronoi_graph import VoronoiCell, VoronoiDiagram

logger = structlog.get_logger()


class FragmentPolicy(str, Enum):
    """What to do when clipping splits one cell into disjoint parts."""

    KEEP_LARGEST = "keep_largest"
    KEEP_ALL = "keep_all"


@dataclass(frozen=True)
class ClippedCell:
    """A Voronoi cell restricted to the boundary.

    ``parts`` is sorted by descending area; with the keep-largest policy it
    holds at most one polygon. A degenerate cell has no usable area and is
    excluded from every downstream stage.
    """

    seed_id: int
    parts: Tuple[Polygon, ...]
    neighbor_ids: FrozenSet[int]
    degenerate: bool = False
    discarded_fragments: int = 0
    discarded_area: float = 0.0

    @property
    def area(self) -> float:
        return sum(p.area for p in self.parts)

    @property
    def polygon(self) -> Optional[Polygon]:
        """Largest part, or None for degenerate cells."""
        return self.parts[0] if self.parts else None

    @property
    def centroid(self) -> Point2:
        return multipart_centroid(self.parts)

    def shape(self) -> BaseGeometry:
        """Shapely geometry of all parts."""
        if len(self.parts) == 1:
            return self.parts[0].to_shapely()
        return MultiPolygon([p.to_shapely() for p in self.parts])


@dataclass
class ClipResult:
    """Clipped cells of one diagram, keyed by seed id."""

    cells: Dict[int, ClippedCell]
    degenerate_ids: List[int] = field(default_factory=list)
    discarded_fragments: int = 0
    discarded_area: float = 0.0

    def usable(self) -> Dict[int, ClippedCell]:
        """Non-degenerate cells only."""
        return {sid: c for sid, c in self.cells.items() if not c.degenerate}

    @property
    def covered_area(self) -> float:
        return sum(c.area for c in self.cells.values() if not c.degenerate)


def clip_cell(
    cell: VoronoiCell,
    boundary: Boundary,
    policy: FragmentPolicy = FragmentPolicy.KEEP_LARGEST,
    area_epsilon: float = 1e-9,
) -> ClippedCell:
    """
    Intersect one Voronoi cell with the boundary.

    Args:
        cell: Frame-bounded Voronoi cell
        boundary: Site boundary
        policy: Fragment policy for multi-part results
        area_epsilon: Total area below which the cell is degenerate

    Returns:
        ClippedCell, flagged degenerate when nothing usable remains
    """
    if len(cell.ring) < 3:
        return ClippedCell(cell.seed_id, tuple(), frozenset(), degenerate=True)

    clipped = ShapelyPolygon(cell.ring).intersection(boundary.shape)
    parts = polygon_parts(clipped, min_area=0.0)
    total_area = sum(p.area for p in parts)

    if total_area < area_epsilon:
        return ClippedCell(cell.seed_id, tuple(), frozenset(), degenerate=True)

    discarded = 0
    discarded_area = 0.0
    if policy == FragmentPolicy.KEEP_LARGEST and len(parts) > 1:
        discarded = len(parts) - 1
        discarded_area = sum(p.area for p in parts[1:])
        logger.info(
            "Discarded clipped fragments",
            seed_id=cell.seed_id,
            fragments=discarded,
            discarded_area=round(discarded_area, 6),
            kept_area=round(parts[0].area, 6),
        )
        parts = parts[:1]
    elif policy == FragmentPolicy.KEEP_ALL:
        parts = [p for p in parts if p.area >= area_epsilon] or parts[:1]

    return ClippedCell(
        seed_id=cell.seed_id,
        parts=tuple(parts),
        neighbor_ids=cell.neighbor_ids,
        discarded_fragments=discarded,
        discarded_area=discarded_area,
    )


def clip_diagram(
    diagram: VoronoiDiagram,
    boundary: Boundary,
    policy: FragmentPolicy = FragmentPolicy.KEEP_LARGEST,
    area_epsilon: float = 1e-9,
    workers: int = 1,
    shared_edge_epsilon: Optional[float] = None,
) -> ClipResult:
    """
    Clip every cell of a diagram and refine adjacency to shared edges.

    Cells are independent, so clipping fans out over a thread pool when
    *workers* > 1. Results are keyed and ordered by seed id.

    Args:
        diagram: Voronoi diagram to clip
        boundary: Site boundary
        policy: Fragment policy
        area_epsilon: Degeneracy threshold on cell area
        workers: Thread pool size (1 = run inline)
        shared_edge_epsilon: Minimum shared boundary length for adjacency,
            defaults to a millionth of the boundary extent

    Returns:
        ClipResult
    """
    if shared_edge_epsilon is None:
        shared_edge_epsilon = boundary.extent * 1e-6
    ordered = [diagram.cells[sid] for sid in diagram.seed_ids]

    def _clip(cell: VoronoiCell) -> ClippedCell:
        return clip_cell(cell, boundary, policy, area_epsilon)

    if workers > 1 and len(ordered) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            clipped_list = list(pool.map(_clip, ordered))
    else:
        clipped_list = [_clip(cell) for cell in ordered]

    clipped = {c.seed_id: c for c in clipped_list}
    neighbours = refine_adjacency(
        clipped,
        diagram.adjacency,
        epsilon=shared_edge_epsilon,
        tolerance=snap_tolerance(boundary),
    )

    cells: Dict[int, ClippedCell] = {}
    degenerate_ids: List[int] = []
    fragments = 0
    fragment_area = 0.0
    for sid in diagram.seed_ids:
        cell = clipped[sid]
        if cell.degenerate:
            degenerate_ids.append(sid)
            cells[sid] = cell
            continue
        fragments += cell.discarded_fragments
        fragment_area += cell.discarded_area
        cells[sid] = ClippedCell(
            seed_id=sid,
            parts=cell.parts,
            neighbor_ids=frozenset(neighbours.get(sid, ())),
            discarded_fragments=cell.discarded_fragments,
            discarded_area=cell.discarded_area,
        )

    if degenerate_ids:
        logger.info("Degenerate cells after clipping", seed_ids=degenerate_ids)

    return ClipResult(
        cells=cells,
        degenerate_ids=degenerate_ids,
        discarded_fragments=fragments,
        discarded_area=fragment_area,
    )


def refine_adjacency(
    cells: Dict[int, ClippedCell],
    adjacency: Dict[int, List[int]],
    epsilon: float = 1e-6,
    tolerance: float = 1e-9,
) -> Dict[int, List[int]]:
    """
    Keep only Delaunay neighbours whose clipped cells share an edge.

    Delaunay neighbours can lose contact after clipping (the shared bisector
    falls outside the site) or touch at a single point (co-circular seeds).
    """
    shapes = {sid: c.shape() for sid, c in cells.items() if not c.degenerate}
    refined: Dict[int, List[int]] = {sid: [] for sid in shapes}
    for sid in sorted(shapes):
        for other in adjacency.get(sid, ()):
            if other <= sid or other not in shapes:
                continue
            shared = shared_boundary(shapes[sid], shapes[other], tolerance)
            if shared.length > epsilon:
                refined[sid].append(other)
                refined[other].append(sid)
    return {sid: sorted(ns) for sid, ns in refined.items()}


def snap_tolerance(boundary: Boundary) -> float:
    """Distance under which two independently computed edges coincide."""
    return max(boundary.extent * 1e-9, 1e-12)


def shared_boundary(a: BaseGeometry, b: BaseGeometry, tolerance: float = 1e-9) -> BaseGeometry:
    """
    Part of *a*'s boundary that lies on *b*'s boundary.

    Both cells compute the common bisector independently, so their vertices
    differ by rounding noise; *b* is grown by *tolerance* before intersecting.
    """
    return a.boundary.intersection(b.buffer(tolerance, join_style="mitre"))
