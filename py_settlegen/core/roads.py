"""
Road network extraction from the converged cell set.

Process:
1. collect_candidates() - merged shared edges of adjacent cells (and, optionally,
   cell edge runs on the site perimeter) as polylines
2. merge_junctions() - polyline vertices merged by proximity (KDTree +
   union-find); a polyline no longer than the minimum collapses into a
   single junction, longer ones keep their inner vertices as degree-2 nodes
3. build the RoadGraph and check connectivity
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog
from pydantic import BaseModel, Field
from shapely.geometry import GeometryCollection, LineString, MultiLineString
from shapely.geometry.base import BaseGeometry
from shapely.ops import linemerge, unary_union
from sklearn.neighbors import KDTree

from .boundary import Boundary
from .clipping import ClippedCell, shared_boundary, snap_tolerance
from .errors import FragmentedRoadNetwork
from .geometry import Point2

logger = structlog.get_logger()

# Cell id recorded for the outside of the site on perimeter roads
PERIMETER = -1


class RoadOptions(BaseModel):
    """Road extraction parameters."""

    road_min_width: float = Field(default=4.0, gt=0, description="Width assigned to every road edge")
    road_min_length: float = Field(
        default=0.5, ge=0, description="Shared edges at or below this length collapse into a junction"
    )
    merge_epsilon: Optional[float] = Field(
        default=None,
        gt=0,
        description="Junction merge radius; defaults to a millionth of the boundary extent",
    )
    perimeter_roads: bool = Field(
        default=True, description="Also promote cell edges lying on the site boundary"
    )
    strict: bool = Field(default=False, description="Raise FragmentedRoadNetwork instead of warning")


@dataclass(frozen=True)
class RoadEdge:
    """Road segment between two junctions.

    ``cells`` names the two seeds whose shared edge produced the road;
    perimeter roads use ``PERIMETER`` for the outside.
    """

    a: int
    b: int
    width: float
    length: float
    cells: Tuple[int, int]


@dataclass
class RoadGraph:
    """Planar road graph: junction positions and width-tagged edges."""

    nodes: Dict[int, Point2] = field(default_factory=dict)
    edges: List[RoadEdge] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    @property
    def total_length(self) -> float:
        return sum(e.length for e in self.edges)

    def adjacency(self) -> Dict[int, List[int]]:
        adj: Dict[int, List[int]] = {n: [] for n in self.nodes}
        for edge in self.edges:
            adj[edge.a].append(edge.b)
            adj[edge.b].append(edge.a)
        return {n: sorted(ns) for n, ns in adj.items()}

    def connected_components(self) -> List[List[int]]:
        """Node ids per component, largest component first."""
        adj = self.adjacency()
        seen = set()
        components = []
        for start in sorted(adj):
            if start in seen:
                continue
            queue = deque([start])
            seen.add(start)
            component = []
            while queue:
                node = queue.popleft()
                component.append(node)
                for other in adj[node]:
                    if other not in seen:
                        seen.add(other)
                        queue.append(other)
            components.append(sorted(component))
        components.sort(key=lambda c: (-len(c), c[0]))
        return components

    def is_connected(self) -> bool:
        return len(self.connected_components()) <= 1


@dataclass
class RoadExtraction:
    """Road graph plus extraction tallies."""

    graph: RoadGraph
    candidates: int = 0
    collapsed_candidates: int = 0
    duplicate_edges: int = 0
    warnings: List[FragmentedRoadNetwork] = field(default_factory=list)


@dataclass(frozen=True)
class _Candidate:
    """One merged shared edge (or perimeter run) between two cells."""

    coords: Tuple[Point2, ...]
    cells: Tuple[int, int]

    @property
    def start(self) -> Point2:
        return self.coords[0]

    @property
    def end(self) -> Point2:
        return self.coords[-1]

    @property
    def length(self) -> float:
        pts = np.asarray(self.coords, dtype=np.float64)
        return float(np.hypot(*np.diff(pts, axis=0).T).sum())


class _UnionFind:
    def __init__(self, n: int):
        self.parent = list(range(n))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, i: int, j: int) -> None:
        ri, rj = self.find(i), self.find(j)
        if ri != rj:
            # Smaller index wins so roots are stable
            if rj < ri:
                ri, rj = rj, ri
            self.parent[rj] = ri


def line_pieces(geom: BaseGeometry) -> List[LineString]:
    """Flatten and merge the line parts of a shapely geometry."""
    lines = _flatten_lines(geom)
    if len(lines) <= 1:
        return lines
    merged = linemerge(lines)
    if isinstance(merged, LineString):
        return [merged]
    return list(merged.geoms)


def _flatten_lines(geom: BaseGeometry) -> List[LineString]:
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, LineString):
        return [geom]
    if isinstance(geom, (MultiLineString, GeometryCollection)):
        lines = []
        for sub in geom.geoms:
            lines.extend(_flatten_lines(sub))
        return lines
    # Points where cells only touch
    return []


def _polylines(lines: Sequence[LineString], cells: Tuple[int, int]) -> List[_Candidate]:
    return [
        _Candidate(tuple((float(x), float(y)) for x, y in line.coords), cells)
        for line in lines
        if len(line.coords) >= 2
    ]


def collect_candidates(
    cells: Dict[int, ClippedCell],
    boundary: Boundary,
    perimeter_roads: bool = True,
) -> List[_Candidate]:
    """
    Road candidates from the clipped cell set.

    Each candidate is one merged polyline: the whole common edge of two
    cells, or one run of a cell's edge along the site boundary. Curved sites
    give perimeter runs with many short segments.

    Args:
        cells: Clipped cells keyed by seed id (degenerate cells are ignored)
        boundary: Site boundary
        perimeter_roads: Include cell edges lying on the site boundary

    Returns:
        Candidates ordered by seed pair
    """
    tolerance = snap_tolerance(boundary)
    usable = {sid: c for sid, c in cells.items() if not c.degenerate}
    shapes = {sid: c.shape() for sid, c in usable.items()}

    candidates: List[_Candidate] = []
    for sid in sorted(usable):
        for other in sorted(usable[sid].neighbor_ids):
            if other <= sid or other not in shapes:
                continue
            shared = shared_boundary(shapes[sid], shapes[other], tolerance)
            candidates.extend(_polylines(line_pieces(shared), (sid, other)))

    if perimeter_roads:
        site_edge = boundary.shape.boundary.buffer(tolerance, join_style="mitre")
        for sid in sorted(usable):
            on_edge = shapes[sid].boundary.intersection(site_edge)
            candidates.extend(_polylines(line_pieces(on_edge), (sid, PERIMETER)))

    return candidates


def merge_junctions(
    candidates: Sequence[_Candidate],
    merge_epsilon: float,
    min_length: float,
) -> Tuple[np.ndarray, List[List[int]], int]:
    """
    Cluster candidate vertices into junctions.

    Vertices within *merge_epsilon* of each other join one cluster. A
    candidate whose whole polyline is no longer than *min_length* is
    contracted into a single junction, so short bisector stubs vanish instead
    of breaking the network. Vertices inside longer polylines stay separate
    junctions of degree two.

    Returns:
        (node positions ordered by node id, node ids per candidate vertex,
        collapsed count)
    """
    offsets = np.cumsum([0] + [len(c.coords) for c in candidates])
    vertices = np.array(
        [p for c in candidates for p in c.coords], dtype=np.float64
    ).reshape(-1, 2)
    uf = _UnionFind(len(vertices))

    tree = KDTree(vertices)
    for i, neighbours in enumerate(tree.query_radius(vertices, r=merge_epsilon)):
        for j in neighbours:
            uf.union(i, int(j))

    collapsed = 0
    for k, candidate in enumerate(candidates):
        if candidate.length <= min_length:
            for i in range(offsets[k] + 1, offsets[k + 1]):
                uf.union(int(offsets[k]), i)
            collapsed += 1

    roots = np.array([uf.find(i) for i in range(len(vertices))])
    unique_roots = np.unique(roots)
    means = np.array([vertices[roots == r].mean(axis=0) for r in unique_roots])

    # Node ids follow position order so they do not depend on candidate order
    order = np.lexsort((means[:, 1], means[:, 0]))
    node_of_root = {int(unique_roots[idx]): node for node, idx in enumerate(order)}
    vertex_nodes = [
        [node_of_root[int(r)] for r in roots[offsets[k]:offsets[k + 1]]]
        for k in range(len(candidates))
    ]
    return means[order], vertex_nodes, collapsed


def extract_road_network(
    cells: Dict[int, ClippedCell],
    boundary: Boundary,
    options: Optional[RoadOptions] = None,
) -> RoadExtraction:
    """
    Build the road graph from the converged cell set.

    Args:
        cells: Clipped cells keyed by seed id
        boundary: Site boundary
        options: Road extraction options

    Returns:
        RoadExtraction with the graph, tallies and fragmentation warnings

    Raises:
        FragmentedRoadNetwork: Only when ``options.strict`` is set
    """
    options = options or RoadOptions()
    merge_epsilon = options.merge_epsilon or boundary.extent * 1e-6

    candidates = collect_candidates(cells, boundary, options.perimeter_roads)
    if not candidates:
        logger.warning("No road candidates found", cells=len(cells))
        return RoadExtraction(graph=RoadGraph())

    positions, vertex_nodes, collapsed = merge_junctions(
        candidates, merge_epsilon, options.road_min_length
    )

    edges: List[RoadEdge] = []
    seen_pairs = set()
    duplicates = 0
    for candidate, nodes in zip(candidates, vertex_nodes):
        if candidate.length <= options.road_min_length:
            continue
        for a, b in zip(nodes[:-1], nodes[1:]):
            if a == b:
                continue
            key = (min(a, b), max(a, b))
            if key in seen_pairs:
                duplicates += 1
                continue
            seen_pairs.add(key)
            length = float(np.hypot(*(positions[b] - positions[a])))
            edges.append(RoadEdge(key[0], key[1], options.road_min_width, length, candidate.cells))

    # Junctions that only served collapsed stubs are not part of the graph
    used = sorted({n for e in edges for n in (e.a, e.b)})
    renumber = {old: new for new, old in enumerate(used)}
    graph = RoadGraph(
        nodes={renumber[n]: (float(positions[n][0]), float(positions[n][1])) for n in used},
        edges=[
            RoadEdge(renumber[e.a], renumber[e.b], e.width, e.length, e.cells)
            for e in edges
        ],
    )

    extraction = RoadExtraction(
        graph=graph,
        candidates=len(candidates),
        collapsed_candidates=collapsed,
        duplicate_edges=duplicates,
    )

    components = graph.connected_components()
    if len(components) > 1:
        warning = FragmentedRoadNetwork(components)
        logger.warning(
            "Road network is fragmented",
            fragments=len(components),
            sizes=[len(c) for c in components],
            simply_connected=boundary.is_simply_connected,
        )
        if options.strict:
            raise warning
        extraction.warnings.append(warning)

    logger.info(
        "Road network extracted",
        nodes=graph.node_count,
        edges=graph.edge_count,
        total_length=round(graph.total_length, 3),
        collapsed=collapsed,
    )
    return extraction


def road_corridors(graph: RoadGraph) -> BaseGeometry:
    """Union of the road surfaces, each edge widened by half its width per side."""
    surfaces = [
        LineString([graph.nodes[e.a], graph.nodes[e.b]]).buffer(e.width / 2, cap_style="flat")
        for e in graph.edges
    ]
    if not surfaces:
        return GeometryCollection()
    return unary_union(surfaces)
