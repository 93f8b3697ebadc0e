"""
Mesh data model and assembly.

:class:`PlotMesh` is the mutable per-plot buffer the extrusion engine writes
into (0-based indices, one normal per vertex). :class:`MeshAssembler` merges
plot meshes and road surfaces into one immutable, indexed :class:`Mesh`,
welding vertices whose position and normal agree within an epsilon.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import structlog

from .errors import MeshIntegrityError
from .roads import RoadGraph

logger = structlog.get_logger()

Vec3 = Tuple[float, float, float]

UP: Vec3 = (0.0, 0.0, 1.0)
DOWN: Vec3 = (0.0, 0.0, -1.0)


@dataclass
class PlotMesh:
    """
    Triangle soup for one plot.

    Attributes:
        positions: (x, y, z) per vertex
        normals: Unit normal per vertex
        triangles: Index triples, counter-clockwise seen from the normal side
        plot_id: Source plot, if any
    """

    positions: List[Vec3] = field(default_factory=list)
    normals: List[Vec3] = field(default_factory=list)
    triangles: List[Tuple[int, int, int]] = field(default_factory=list)
    plot_id: Optional[int] = None

    def vertex_count(self) -> int:
        return len(self.positions)

    def triangle_count(self) -> int:
        return len(self.triangles)

    def add_vertex(self, position: Vec3, normal: Vec3) -> int:
        """Add a vertex and return its 0-based index."""
        self.positions.append(position)
        self.normals.append(normal)
        return len(self.positions) - 1

    def add_triangle(self, v1: int, v2: int, v3: int) -> None:
        self.triangles.append((v1, v2, v3))

    def add_quad(self, v1: int, v2: int, v3: int, v4: int) -> None:
        """
        Add a quad as two triangles: (v1, v2, v3) and (v1, v3, v4).

        Args:
            v1, v2, v3, v4: Vertex indices in counter-clockwise order
        """
        self.triangles.append((v1, v2, v3))
        self.triangles.append((v1, v3, v4))


def triangle_areas(positions: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """Area of every triangle in an indexed mesh."""
    if len(indices) == 0:
        return np.zeros(0, dtype=np.float64)
    a = positions[indices[:, 0]]
    b = positions[indices[:, 1]]
    c = positions[indices[:, 2]]
    return 0.5 * np.linalg.norm(np.cross(b - a, c - a), axis=1)


@dataclass(frozen=True)
class Mesh:
    """Immutable indexed triangle mesh.

    ``positions`` and ``normals`` are ``(n, 3)`` float64 arrays, ``indices``
    an ``(m, 3)`` int64 array. The arrays are made read-only on creation.
    """

    positions: np.ndarray
    normals: np.ndarray
    indices: np.ndarray

    def __post_init__(self):
        for arr in (self.positions, self.normals, self.indices):
            arr.setflags(write=False)

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])

    @property
    def triangle_count(self) -> int:
        return int(self.indices.shape[0])

    def validate(self, min_area: float = 0.0) -> None:
        """
        Check the mesh invariants.

        Raises:
            MeshIntegrityError: On malformed arrays, out-of-range indices,
                non-finite values or triangles with area <= *min_area*
        """
        if self.positions.ndim != 2 or self.positions.shape[1] != 3:
            raise MeshIntegrityError(f"positions must be (n, 3), got {self.positions.shape}")
        if self.normals.shape != self.positions.shape:
            raise MeshIntegrityError(
                f"normals shape {self.normals.shape} does not match positions {self.positions.shape}"
            )
        if self.indices.ndim != 2 or self.indices.shape[1] != 3:
            raise MeshIntegrityError(f"indices must be (m, 3), got {self.indices.shape}")
        if not np.all(np.isfinite(self.positions)) or not np.all(np.isfinite(self.normals)):
            raise MeshIntegrityError("Mesh contains non-finite coordinates")
        if self.triangle_count == 0:
            return

        if self.indices.min() < 0 or self.indices.max() >= self.vertex_count:
            raise MeshIntegrityError(
                f"Index out of range [0, {self.vertex_count}): "
                f"min={int(self.indices.min())}, max={int(self.indices.max())}"
            )
        areas = triangle_areas(self.positions, self.indices)
        bad = np.flatnonzero(areas <= min_area)
        if len(bad):
            raise MeshIntegrityError(
                f"{len(bad)} degenerate triangles, first at index {int(bad[0])}"
            )


class MeshAssembler:
    """
    Welds plot meshes and road quads into one indexed mesh.

    Args:
        epsilon: Weld distance for positions and normals; triangles with area
            below ``epsilon ** 2`` after welding are dropped
        road_surface_height: Z of road quads
    """

    def __init__(self, epsilon: float = 1e-6, road_surface_height: float = 0.0):
        if epsilon <= 0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")
        self.epsilon = epsilon
        self.road_surface_height = road_surface_height
        self._positions: List[Vec3] = []
        self._normals: List[Vec3] = []
        self._lookup: Dict[Tuple[int, ...], int] = {}
        self._triangles: List[Tuple[int, int, int]] = []
        self.dropped_triangles = 0
        self.welded_vertices = 0
        self.road_quads = 0

    def _key(self, position: Vec3, normal: Vec3) -> Tuple[int, ...]:
        inv = 1.0 / self.epsilon
        return tuple(int(round(v * inv)) for v in position + normal)

    def _vertex(self, position: Vec3, normal: Vec3) -> int:
        key = self._key(position, normal)
        index = self._lookup.get(key)
        if index is not None:
            self.welded_vertices += 1
            return index
        index = len(self._positions)
        self._lookup[key] = index
        self._positions.append(position)
        self._normals.append(normal)
        return index

    def _add_triangle(self, a: int, b: int, c: int) -> None:
        if a == b or b == c or a == c:
            self.dropped_triangles += 1
            return
        pa, pb, pc = self._positions[a], self._positions[b], self._positions[c]
        ux, uy, uz = pb[0] - pa[0], pb[1] - pa[1], pb[2] - pa[2]
        vx, vy, vz = pc[0] - pa[0], pc[1] - pa[1], pc[2] - pa[2]
        cross = (uy * vz - uz * vy, uz * vx - ux * vz, ux * vy - uy * vx)
        if 0.5 * math.sqrt(sum(c * c for c in cross)) < self.epsilon ** 2:
            self.dropped_triangles += 1
            return
        self._triangles.append((a, b, c))

    def add_plot_mesh(self, plot_mesh: PlotMesh) -> None:
        remap = [
            self._vertex(p, n) for p, n in zip(plot_mesh.positions, plot_mesh.normals)
        ]
        for a, b, c in plot_mesh.triangles:
            self._add_triangle(remap[a], remap[b], remap[c])

    def add_road_graph(self, road_graph: RoadGraph) -> None:
        """One flat quad per road edge, centred on the edge, facing +Z."""
        z = self.road_surface_height
        for edge in road_graph.edges:
            ax, ay = road_graph.nodes[edge.a]
            bx, by = road_graph.nodes[edge.b]
            dx, dy = bx - ax, by - ay
            length = math.hypot(dx, dy)
            if length < self.epsilon:
                continue
            ox = -dy / length * edge.width / 2
            oy = dx / length * edge.width / 2

            v1 = self._vertex((ax - ox, ay - oy, z), UP)
            v2 = self._vertex((bx - ox, by - oy, z), UP)
            v3 = self._vertex((bx + ox, by + oy, z), UP)
            v4 = self._vertex((ax + ox, ay + oy, z), UP)
            self._add_triangle(v1, v2, v3)
            self._add_triangle(v1, v3, v4)
            self.road_quads += 1

    def build(self) -> Mesh:
        """
        Freeze the accumulated geometry.

        Raises:
            MeshIntegrityError: If the result violates the mesh invariants
        """
        mesh = Mesh(
            positions=np.array(self._positions, dtype=np.float64).reshape(-1, 3),
            normals=np.array(self._normals, dtype=np.float64).reshape(-1, 3),
            indices=np.array(self._triangles, dtype=np.int64).reshape(-1, 3),
        )
        mesh.validate()
        logger.info(
            "Mesh assembled",
            vertices=mesh.vertex_count,
            triangles=mesh.triangle_count,
            welded=self.welded_vertices,
            dropped_triangles=self.dropped_triangles,
            road_quads=self.road_quads,
        )
        return mesh
