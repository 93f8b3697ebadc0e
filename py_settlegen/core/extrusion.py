"""
Extrusion of plot footprints into building massing.

Each plot becomes a closed prism: a bottom cap at z=0 facing down, one wall
quad per ring edge facing away from the solid, and a top cap at the plot
height. Convex footprints without holes may instead get a pyramid cap.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from .errors import DegeneratePlotError, TriangulationError
from .geometry import Point2, clean_ring, ring_signed_area
from .mesh import DOWN, UP, PlotMesh, Vec3
from .subdivision import Plot
from .triangulation import triangulate_polygon

logger = structlog.get_logger()


class RoofStyle(str, Enum):
    """Roof cap geometry."""

    FLAT = "flat"
    PYRAMID = "pyramid"


class ExtrusionOptions(BaseModel):
    """Extrusion parameters."""

    roof_style: RoofStyle = Field(default=RoofStyle.FLAT, description="Cap geometry")
    area_epsilon: float = Field(
        default=1e-6, gt=0, description="Footprints below this area are skipped"
    )
    workers: int = Field(default=1, ge=1, description="Thread pool size for per-plot work")


@dataclass
class ExtrusionResult:
    """Per-plot meshes plus the ids of plots that were skipped."""

    meshes: List[PlotMesh] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def _is_convex(ring: Sequence[Point2]) -> bool:
    n = len(ring)
    for i in range(n):
        ax, ay = ring[i - 1]
        bx, by = ring[i]
        cx, cy = ring[(i + 1) % n]
        if (bx - ax) * (cy - by) - (by - ay) * (cx - bx) < 0:
            return False
    return True


def _unit(x: float, y: float, z: float) -> Vec3:
    length = math.sqrt(x * x + y * y + z * z)
    return (x / length, y / length, z / length)


def _add_walls(mesh: PlotMesh, ring: Sequence[Point2], height: float) -> None:
    """
    Wall quads for one ring.

    Outer rings are counter-clockwise and holes clockwise, so the right-hand
    normal of each edge always points away from the solid.
    """
    n = len(ring)
    for i in range(n):
        x0, y0 = ring[i]
        x1, y1 = ring[(i + 1) % n]
        dx, dy = x1 - x0, y1 - y0
        length = math.hypot(dx, dy)
        if length == 0.0:
            continue
        normal = (dy / length, -dx / length, 0.0)

        bl = mesh.add_vertex((x0, y0, 0.0), normal)
        br = mesh.add_vertex((x1, y1, 0.0), normal)
        tr = mesh.add_vertex((x1, y1, height), normal)
        tl = mesh.add_vertex((x0, y0, height), normal)
        mesh.add_quad(bl, br, tr, tl)


def _add_caps(
    mesh: PlotMesh,
    vertices: Sequence[Point2],
    triangles,
    height: float,
    include_top: bool = True,
) -> None:
    bottom = [mesh.add_vertex((x, y, 0.0), DOWN) for x, y in vertices]
    for a, b, c in triangles:
        # Reversed so the face is counter-clockwise seen from below
        mesh.add_triangle(bottom[a], bottom[c], bottom[b])

    if include_top:
        top = [mesh.add_vertex((x, y, height), UP) for x, y in vertices]
        for a, b, c in triangles:
            mesh.add_triangle(top[a], top[b], top[c])


def _add_pyramid(
    mesh: PlotMesh, ring: Sequence[Point2], height: float, apex_height: float, apex: Point2
) -> None:
    ax, ay = apex
    n = len(ring)
    for i in range(n):
        x0, y0 = ring[i]
        x1, y1 = ring[(i + 1) % n]
        # Face normal = (p1 - p0) x (apex - p0)
        ux, uy, uz = x1 - x0, y1 - y0, 0.0
        vx, vy, vz = ax - x0, ay - y0, apex_height - height
        normal = _unit(uy * vz - uz * vy, uz * vx - ux * vz, ux * vy - uy * vx)
        v0 = mesh.add_vertex((x0, y0, height), normal)
        v1 = mesh.add_vertex((x1, y1, height), normal)
        v2 = mesh.add_vertex((ax, ay, apex_height), normal)
        mesh.add_triangle(v0, v1, v2)


def extrude_plot(plot: Plot, options: Optional[ExtrusionOptions] = None) -> PlotMesh:
    """
    Extrude one plot into a closed prism.

    Args:
        plot: Plot with footprint and height
        options: Extrusion options

    Returns:
        PlotMesh for the plot

    Raises:
        DegeneratePlotError: If the footprint is too small, has fewer than
            3 usable vertices, has no height, or cannot be triangulated
    """
    options = options or ExtrusionOptions()

    if plot.height <= 0 or not math.isfinite(plot.height):
        raise DegeneratePlotError(plot.id, f"non-positive height {plot.height}")
    if plot.polygon.area < options.area_epsilon:
        raise DegeneratePlotError(plot.id, f"area {plot.polygon.area:.3g} below epsilon")

    outer = clean_ring(plot.polygon.exterior)
    if len(outer) < 3:
        raise DegeneratePlotError(plot.id, "fewer than 3 usable vertices")
    if ring_signed_area(outer) < 0:
        outer.reverse()

    holes = []
    for hole in plot.polygon.holes:
        h = clean_ring(hole)
        if len(h) < 3:
            continue
        if ring_signed_area(h) > 0:
            h.reverse()
        holes.append(h)

    try:
        vertices, triangles = triangulate_polygon(outer, holes)
    except TriangulationError as exc:
        raise DegeneratePlotError(plot.id, str(exc)) from exc
    if not triangles:
        raise DegeneratePlotError(plot.id, "triangulation produced no triangles")

    pyramid = (
        options.roof_style == RoofStyle.PYRAMID
        and plot.roof_height > 0
        and not holes
        and _is_convex(outer)
    )

    mesh = PlotMesh(plot_id=plot.id)
    _add_caps(mesh, vertices, triangles, plot.height, include_top=not pyramid)
    _add_walls(mesh, outer, plot.height)
    for hole in holes:
        _add_walls(mesh, hole, plot.height)
    if pyramid:
        _add_pyramid(
            mesh, outer, plot.height, plot.height + plot.roof_height, plot.polygon.centroid
        )
    return mesh


def extrude_plots(plots: Sequence[Plot], options: Optional[ExtrusionOptions] = None) -> ExtrusionResult:
    """
    Extrude every plot, skipping and counting degenerate ones.

    Plots are independent; with ``options.workers > 1`` they are extruded on
    a thread pool. Output order follows input order.
    """
    options = options or ExtrusionOptions()

    def _work(plot: Plot):
        try:
            return extrude_plot(plot, options)
        except DegeneratePlotError as exc:
            logger.warning("Skipping degenerate plot", plot_id=exc.plot_id, reason=exc.reason)
            return exc

    if options.workers > 1 and len(plots) > 1:
        with ThreadPoolExecutor(max_workers=options.workers) as pool:
            outcomes = list(pool.map(_work, plots))
    else:
        outcomes = [_work(plot) for plot in plots]

    result = ExtrusionResult()
    for outcome in outcomes:
        if isinstance(outcome, DegeneratePlotError):
            result.skipped.append(outcome.plot_id)
        else:
            result.meshes.append(outcome)

    logger.info(
        "Plots extruded",
        extruded=len(result.meshes),
        skipped=result.skipped_count,
        triangles=sum(m.triangle_count() for m in result.meshes),
    )
    return result
