"""
Plot subdivision.

Splits oversized cells into building plots by recursive cuts across the long
axis of each part's oriented bounding rectangle. Randomness (cut ratio, cut
angle, alleys, empty plots, heights) comes from per-cell streams, so the
plots of one cell never depend on how the other cells were processed.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import structlog
from pydantic import BaseModel, Field, model_validator
from shapely.geometry import LineString
from shapely.geometry.base import BaseGeometry
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.ops import split

from ..utils.random import STREAM_HEIGHTS, STREAM_SUBDIVISION, SeedLike, spawn_rng
from .clipping import ClippedCell
from .geometry import Polygon, polygon_parts
from .roads import RoadGraph, road_corridors

logger = structlog.get_logger()

# Split pieces smaller than this are cutting noise
MIN_PIECE_AREA = 1e-9


class HeightRange(BaseModel):
    """Closed interval heights are drawn from."""

    min: float = Field(default=2.0, ge=0, description="Lower bound")
    max: float = Field(default=6.0, ge=0, description="Upper bound")

    @model_validator(mode="after")
    def check_order(self) -> "HeightRange":
        if self.min > self.max:
            raise ValueError(f"Height range min ({self.min}) exceeds max ({self.max})")
        return self

    def sample(self, rng: np.random.Generator) -> float:
        if self.min == self.max:
            return float(self.min)
        return float(rng.uniform(self.min, self.max))


class SubdivisionOptions(BaseModel):
    """Plot subdivision parameters."""

    plot_area_threshold: float = Field(
        default=40.0, gt=0, description="Parts above this area are split further"
    )
    max_recursion_depth: int = Field(
        default=10, ge=0, description="Depth at which oversized parts are accepted as-is"
    )
    grid_chaos: float = Field(
        default=0.35, ge=0, le=1, description="Irregularity of cut position and angle"
    )
    size_chaos: float = Field(
        default=0.25, ge=0, le=1, description="Per-part variation of the area threshold"
    )
    empty_probability: float = Field(
        default=0.0, ge=0, lt=1, description="Chance that a final plot stays empty"
    )
    alley_width: float = Field(default=0.8, ge=0, description="Gap left by an alley cut")
    alley_chance: float = Field(
        default=0.0, ge=0, le=1, description="Chance of an alley at depth 0, decays linearly"
    )
    plot_setback: float = Field(default=0.0, ge=0, description="Inset applied to final plots")
    road_setback: bool = Field(
        default=False, description="Keep plots out of the road corridors (half the road width each side)"
    )
    height_distribution: HeightRange = Field(
        default_factory=HeightRange, description="Building height range"
    )
    roof_height: Optional[HeightRange] = Field(
        default=None, description="Roof rise range; None for flat roofs"
    )
    workers: int = Field(default=1, ge=1, description="Thread pool size for per-cell work")


@dataclass(frozen=True)
class Plot:
    """A building footprint with its extrusion height and source cell."""

    id: int
    polygon: Polygon
    height: float
    source_cell_id: int
    roof_height: float = 0.0

    @property
    def area(self) -> float:
        return self.polygon.area


@dataclass
class SubdivisionResult:
    """Final plots plus subdivision tallies."""

    plots: List[Plot] = field(default_factory=list)
    empty_plots: int = 0
    collapsed_plots: int = 0
    oversized_plots: int = 0
    cells_subdivided: int = 0
    corridor_area: float = 0.0

    @property
    def total_area(self) -> float:
        return sum(p.area for p in self.plots)


@dataclass
class _CellPlots:
    seed_id: int
    footprints: List[Tuple[Polygon, float, float]]
    empty: int = 0
    collapsed: int = 0
    oversized: int = 0
    split: bool = False
    corridor_area: float = 0.0


def long_axis(rect: ShapelyPolygon) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Long axis of a rectangle.

    Returns:
        (start corner, unit direction, axis length)
    """
    corners = np.asarray(rect.exterior.coords)[:4]
    first = corners[1] - corners[0]
    second = corners[2] - corners[1]
    if np.hypot(*first) >= np.hypot(*second):
        start, axis = corners[0], first
    else:
        start, axis = corners[1], second
    length = float(np.hypot(*axis))
    return start, axis / length, length


def cut_line(
    poly: ShapelyPolygon, ratio: float, angle_offset: float
) -> Optional[LineString]:
    """
    Cutting line across the long axis of the part's bounding rectangle.

    Args:
        poly: Part to cut
        ratio: Position of the cut along the long axis, 0..1
        angle_offset: Rotation of the cut away from perpendicular (radians)

    Returns:
        LineString spanning the part, or None for degenerate parts
    """
    rect = poly.minimum_rotated_rectangle
    if not isinstance(rect, ShapelyPolygon) or rect.area <= MIN_PIECE_AREA:
        return None

    start, direction, length = long_axis(rect)
    point = start + direction * length * ratio
    normal = np.array([-direction[1], direction[0]])
    cos_a, sin_a = math.cos(angle_offset), math.sin(angle_offset)
    rotated = np.array(
        [normal[0] * cos_a - normal[1] * sin_a, normal[0] * sin_a + normal[1] * cos_a]
    )

    minx, miny, maxx, maxy = poly.bounds
    reach = math.hypot(maxx - minx, maxy - miny)
    return LineString([tuple(point - rotated * reach), tuple(point + rotated * reach)])


def split_polygon(poly: ShapelyPolygon, line: LineString, alley_width: float = 0.0):
    """Split a part along a line, optionally leaving an alley gap."""
    if alley_width > 0:
        gap = line.buffer(alley_width / 2, cap_style="flat")
        pieces = poly.difference(gap)
    else:
        pieces = split(poly, line)
    return [p.to_shapely() for p in polygon_parts(pieces, min_area=MIN_PIECE_AREA)]


def subdivide_polygon(
    poly: ShapelyPolygon,
    options: SubdivisionOptions,
    rng: np.random.Generator,
    depth: int = 0,
) -> Tuple[List[ShapelyPolygon], int]:
    """
    Recursively split a part until every piece is under the threshold.

    Args:
        poly: Part to subdivide
        options: Subdivision options
        rng: Per-cell generator
        depth: Current recursion depth

    Returns:
        (final pieces, number accepted oversized at the depth cap)
    """
    area = poly.area
    threshold = options.plot_area_threshold
    if options.size_chaos > 0:
        threshold *= 2.0 ** (4.0 * options.size_chaos * (rng.random() - 0.5))

    if area <= threshold:
        return [poly], 0
    if depth >= options.max_recursion_depth:
        return [poly], 1

    spread = 0.8 * options.grid_chaos
    ratio = 0.5 + (rng.random() - 0.5) * spread
    # Small parts are cut straight so they stay regular
    angle_spread = 0.0 if area < threshold * 4.0 else math.pi / 3.0 * options.grid_chaos
    angle_offset = (rng.random() - 0.5) * angle_spread

    alley_width = 0.0
    if options.alley_chance > 0 and options.max_recursion_depth > 0:
        decay = 1.0 - depth / options.max_recursion_depth
        if rng.random() < options.alley_chance * decay:
            alley_width = options.alley_width

    line = cut_line(poly, ratio, angle_offset)
    pieces = split_polygon(poly, line, alley_width) if line is not None else []
    if len(pieces) < 2:
        # Cut failed, accept the part as a plot
        return [poly], 1

    result: List[ShapelyPolygon] = []
    oversized = 0
    for piece in pieces:
        sub, over = subdivide_polygon(piece, options, rng, depth + 1)
        result.extend(sub)
        oversized += over
    return result, oversized


def subdivide_cell(
    cell: ClippedCell,
    options: SubdivisionOptions,
    seed: SeedLike,
    corridors: Optional[BaseGeometry] = None,
) -> _CellPlots:
    """Plots of one cell, drawn from that cell's random streams.

    With *corridors* each cell part is trimmed by the road surfaces before
    it is cut; a part the roads split becomes several parts.
    """
    cut_rng = spawn_rng(seed, STREAM_SUBDIVISION, cell.seed_id)
    height_rng = spawn_rng(seed, STREAM_HEIGHTS, cell.seed_id)
    outcome = _CellPlots(seed_id=cell.seed_id, footprints=[])

    parts = [part.to_shapely() for part in cell.parts]
    if corridors is not None and not corridors.is_empty:
        trimmed = []
        for part in parts:
            remaining = polygon_parts(part.difference(corridors), min_area=MIN_PIECE_AREA)
            outcome.corridor_area += part.area - sum(p.area for p in remaining)
            trimmed.extend(p.to_shapely() for p in remaining)
        parts = trimmed

    for part in parts:
        pieces, oversized = subdivide_polygon(part, options, cut_rng)
        outcome.oversized += oversized
        outcome.split = outcome.split or len(pieces) > 1

        for piece in pieces:
            if options.empty_probability > 0 and cut_rng.random() < options.empty_probability:
                outcome.empty += 1
                continue
            if options.plot_setback > 0:
                # A narrow waist can split the inset; every part is a plot
                footprints = polygon_parts(
                    piece.buffer(-options.plot_setback, join_style="mitre"),
                    min_area=MIN_PIECE_AREA,
                )
                if not footprints:
                    outcome.collapsed += 1
                    continue
            else:
                footprints = [Polygon.from_shapely(piece)]

            for footprint in footprints:
                height = options.height_distribution.sample(height_rng)
                roof = options.roof_height.sample(height_rng) if options.roof_height else 0.0
                outcome.footprints.append((footprint, height, roof))

    return outcome


def subdivide_cells(
    cells: Dict[int, ClippedCell],
    options: Optional[SubdivisionOptions] = None,
    seed: SeedLike = None,
    roads: Optional[RoadGraph] = None,
) -> SubdivisionResult:
    """
    Turn the converged cell set into building plots.

    Args:
        cells: Clipped cells keyed by seed id; degenerate cells are skipped
        options: Subdivision options
        seed: Run seed the per-cell streams derive from
        roads: Road graph, needed for ``road_setback``

    Returns:
        SubdivisionResult with plot ids assigned in seed-id order
    """
    options = options or SubdivisionOptions()
    usable = [cells[sid] for sid in sorted(cells) if not cells[sid].degenerate]

    corridors = None
    if options.road_setback:
        if roads is None:
            logger.warning("Road setback requested without a road graph")
        else:
            corridors = road_corridors(roads)

    def _work(cell: ClippedCell) -> _CellPlots:
        return subdivide_cell(cell, options, seed, corridors)

    if options.workers > 1 and len(usable) > 1:
        with ThreadPoolExecutor(max_workers=options.workers) as pool:
            outcomes = list(pool.map(_work, usable))
    else:
        outcomes = [_work(cell) for cell in usable]

    result = SubdivisionResult()
    for outcome in outcomes:
        for footprint, height, roof in outcome.footprints:
            result.plots.append(
                Plot(
                    id=len(result.plots),
                    polygon=footprint,
                    height=height,
                    source_cell_id=outcome.seed_id,
                    roof_height=roof,
                )
            )
        result.empty_plots += outcome.empty
        result.collapsed_plots += outcome.collapsed
        result.oversized_plots += outcome.oversized
        result.cells_subdivided += int(outcome.split)
        result.corridor_area += outcome.corridor_area

    logger.info(
        "Cells subdivided into plots",
        cells=len(usable),
        plots=len(result.plots),
        empty=result.empty_plots,
        oversized=result.oversized_plots,
        collapsed=result.collapsed_plots,
        corridor_area=round(result.corridor_area, 3),
    )
    return result
