"""
End-to-end settlement generation.

Process:
1. validate the boundary (InputError before any work)
2. sample_seeds() - initial seeds inside the boundary
3. CVTRelaxer.relax() - Lloyd relaxation with boundary clipping
4. extract_road_network() and subdivide_cells() - both read the converged cells
5. extrude_plots() - per-plot massing
6. MeshAssembler - one welded mesh with road surfaces

Every run works on private copies of its entities; the caller receives
either a complete GenerationResult or a single exception.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from shapely.geometry import Polygon as ShapelyPolygon

from ..config import Settings, get_settings
from ..utils.random import STREAM_SAMPLING, SeedLike, make_rng
from .boundary import Boundary
from .clipping import ClippedCell, FragmentPolicy
from .cvt import CancelHook, CVTRelaxer, RelaxationOptions, RelaxationResult, RelaxationState
from .errors import FragmentedRoadNetwork, GenerationCancelled, InputError
from .extrusion import ExtrusionOptions, RoofStyle, extrude_plots
from .geometry import Point2
from .mesh import Mesh, MeshAssembler
from .roads import RoadGraph, RoadOptions, extract_road_network
from .seed_sampler import SamplingMethod, SeedArena, sample_seeds
from .subdivision import HeightRange, Plot, SubdivisionOptions, subdivide_cells

logger = structlog.get_logger()

BoundaryLike = Union[Boundary, ShapelyPolygon, Sequence[Point2]]


class GenerationOptions(BaseModel):
    """Per-run generation options.

    Field names are snake_case; the camelCase names (``seedCount``,
    ``relaxationEpsilon``, ...) are accepted as aliases.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Core options
    seed_count: int = Field(default=30, ge=1, description="Number of seeds (cells)")
    relaxation_epsilon: float = Field(
        default=1e-2, gt=0, description="Convergence threshold on max seed displacement"
    )
    max_iterations: int = Field(default=100, ge=0, description="Relaxation iteration cap")
    road_min_width: float = Field(default=4.0, gt=0, description="Road width")
    road_min_length: float = Field(
        default=0.5, ge=0, description="Shared edges at or below this length are not roads"
    )
    plot_area_threshold: float = Field(
        default=40.0, gt=0, description="Cells above this area are subdivided"
    )
    height_distribution: HeightRange = Field(
        default_factory=HeightRange, description="Building height range"
    )
    damping_factor: float = Field(
        default=1.0, gt=0, le=1.0, description="Lloyd step fraction (1.0 = full step)"
    )

    # Sampling and relaxation
    sampling_method: SamplingMethod = Field(
        default=SamplingMethod.JITTERED, description="Initial seed placement"
    )
    fragment_policy: FragmentPolicy = Field(
        default=FragmentPolicy.KEEP_LARGEST, description="Multi-part clipping policy"
    )
    degenerate_drop_after: int = Field(
        default=3, ge=1, description="Consecutive degenerate iterations before a seed is dropped"
    )
    area_epsilon: float = Field(default=1e-6, gt=0, description="Degenerate area threshold")

    # Roads
    merge_epsilon: Optional[float] = Field(
        default=None, gt=0, description="Junction merge radius (default relative to site size)"
    )
    perimeter_roads: bool = Field(default=True, description="Roads along the site boundary")
    strict_roads: bool = Field(
        default=False, description="Raise FragmentedRoadNetwork instead of warning"
    )

    # Subdivision
    max_recursion_depth: int = Field(default=10, ge=0, description="Subdivision depth cap")
    grid_chaos: float = Field(default=0.35, ge=0, le=1, description="Cut irregularity")
    size_chaos: float = Field(default=0.25, ge=0, le=1, description="Plot size variation")
    empty_probability: float = Field(default=0.0, ge=0, lt=1, description="Empty plot chance")
    alley_width: float = Field(default=0.8, ge=0, description="Alley gap width")
    alley_chance: float = Field(default=0.0, ge=0, le=1, description="Alley chance at depth 0")
    plot_setback: float = Field(default=0.0, ge=0, description="Inset of final plots")
    road_setback: bool = Field(default=False, description="Keep plots clear of road surfaces")

    # Extrusion and assembly
    roof_style: RoofStyle = Field(default=RoofStyle.FLAT, description="Roof cap geometry")
    roof_height: HeightRange = Field(
        default_factory=lambda: HeightRange(min=0.7, max=1.0),
        description="Pyramid roof rise range",
    )
    weld_epsilon: float = Field(default=1e-6, gt=0, description="Vertex weld distance")
    road_surface_height: float = Field(default=0.0, description="Z of road quads")

    workers: Optional[int] = Field(
        default=None, ge=1, description="Worker pool size (default from settings)"
    )

    @classmethod
    def coerce(cls, value: Union["GenerationOptions", Mapping[str, Any], None]) -> "GenerationOptions":
        """Build options from a mapping, turning validation failures into InputError."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        try:
            return cls.model_validate(dict(value))
        except ValidationError as exc:
            raise InputError(f"Invalid generation options: {exc}") from exc

    def relaxation_options(self, workers: int = 1) -> RelaxationOptions:
        return RelaxationOptions(
            relaxation_epsilon=self.relaxation_epsilon,
            max_iterations=self.max_iterations,
            damping_factor=self.damping_factor,
            degenerate_drop_after=self.degenerate_drop_after,
            fragment_policy=self.fragment_policy,
            area_epsilon=self.area_epsilon,
            workers=workers,
        )

    def road_options(self) -> RoadOptions:
        return RoadOptions(
            road_min_width=self.road_min_width,
            road_min_length=self.road_min_length,
            merge_epsilon=self.merge_epsilon,
            perimeter_roads=self.perimeter_roads,
            strict=self.strict_roads,
        )

    def subdivision_options(self, workers: int = 1) -> SubdivisionOptions:
        return SubdivisionOptions(
            plot_area_threshold=self.plot_area_threshold,
            max_recursion_depth=self.max_recursion_depth,
            grid_chaos=self.grid_chaos,
            size_chaos=self.size_chaos,
            empty_probability=self.empty_probability,
            alley_width=self.alley_width,
            alley_chance=self.alley_chance,
            plot_setback=self.plot_setback,
            road_setback=self.road_setback,
            height_distribution=self.height_distribution,
            roof_height=self.roof_height if self.roof_style == RoofStyle.PYRAMID else None,
            workers=workers,
        )

    def extrusion_options(self, workers: int = 1) -> ExtrusionOptions:
        return ExtrusionOptions(
            roof_style=self.roof_style, area_epsilon=self.area_epsilon, workers=workers
        )


@dataclass
class Diagnostics:
    """Tallies and status of one generation run."""

    status: str = RelaxationState.INITIALIZED.value
    converged: bool = False
    iterations: int = 0
    final_displacement: Optional[float] = None
    displacement_history: List[float] = field(default_factory=list)
    seeds: int = 0
    dropped_seed_ids: List[int] = field(default_factory=list)
    degenerate_cells: int = 0
    discarded_fragments: int = 0
    discarded_fragment_area: float = 0.0
    road_nodes: int = 0
    road_edges: int = 0
    road_candidates: int = 0
    collapsed_road_candidates: int = 0
    plots: int = 0
    skipped_plots: int = 0
    empty_plots: int = 0
    oversized_plots: int = 0
    collapsed_plots: int = 0
    corridor_area: float = 0.0
    vertex_count: int = 0
    triangle_count: int = 0
    dropped_triangles: int = 0
    warnings: List[FragmentedRoadNetwork] = field(default_factory=list)
    elapsed: Dict[str, float] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        """Plain, JSON-serialisable view."""
        return {
            "status": self.status,
            "converged": self.converged,
            "iterations": self.iterations,
            "final_displacement": self.final_displacement,
            "seeds": self.seeds,
            "dropped_seeds": len(self.dropped_seed_ids),
            "degenerate_cells": self.degenerate_cells,
            "discarded_fragments": self.discarded_fragments,
            "road_nodes": self.road_nodes,
            "road_edges": self.road_edges,
            "collapsed_road_candidates": self.collapsed_road_candidates,
            "plots": self.plots,
            "skipped_plots": self.skipped_plots,
            "empty_plots": self.empty_plots,
            "oversized_plots": self.oversized_plots,
            "corridor_area": self.corridor_area,
            "vertex_count": self.vertex_count,
            "triangle_count": self.triangle_count,
            "dropped_triangles": self.dropped_triangles,
            "warnings": [str(w) for w in self.warnings],
            "elapsed": {k: round(v, 6) for k, v in self.elapsed.items()},
        }


@dataclass
class GenerationResult:
    """Outputs of a completed run."""

    boundary: Boundary
    seeds: SeedArena
    cells: Dict[int, ClippedCell]
    road_graph: RoadGraph
    plots: List[Plot]
    mesh: Mesh
    diagnostics: Diagnostics
    relaxation: RelaxationResult


def as_boundary(boundary: BoundaryLike) -> Boundary:
    """Accept a Boundary, a shapely polygon, or a sequence of exterior points."""
    if isinstance(boundary, Boundary):
        return boundary
    if isinstance(boundary, ShapelyPolygon):
        return Boundary.from_shapely(boundary)
    return Boundary.create(boundary)


class SettlementGenerator:
    """
    Runs the full settlement pipeline.

    Args:
        options: GenerationOptions or a mapping of (camelCase or snake_case) options
        settings: Process settings, defaults to the environment settings
    """

    def __init__(
        self,
        options: Union[GenerationOptions, Mapping[str, Any], None] = None,
        settings: Optional[Settings] = None,
    ):
        self.options = GenerationOptions.coerce(options)
        self.settings = settings or get_settings()

    @property
    def workers(self) -> int:
        return self.options.workers or self.settings.workers

    def generate(
        self,
        boundary: BoundaryLike,
        seed: SeedLike = None,
        should_cancel: Optional[CancelHook] = None,
    ) -> GenerationResult:
        """
        Generate a settlement inside *boundary*.

        Args:
            boundary: Site boundary (validated before any other work)
            seed: Random seed; defaults to ``settings.default_seed``
            should_cancel: Hook polled between relaxation iterations

        Returns:
            GenerationResult

        Raises:
            InputError: Invalid boundary or options
            SamplingExhausted: Seeds could not be placed
            InsufficientSeeds: Seed set unusable for a Voronoi diagram
            FragmentedRoadNetwork: Only with ``strict_roads``
            GenerationCancelled: The cancel hook fired
        """
        opts = self.options
        diagnostics = Diagnostics()
        if seed is None:
            seed = self.settings.default_seed

        @contextmanager
        def stage(name: str):
            start = time.perf_counter()
            yield
            diagnostics.elapsed[name] = time.perf_counter() - start

        with stage("boundary"):
            site = as_boundary(boundary)

        logger.info(
            "Generating settlement",
            seed=seed,
            seed_count=opts.seed_count,
            area=round(site.area, 3),
            holes=len(site.polygon.holes),
            workers=self.workers,
        )

        with stage("sampling"):
            arena = sample_seeds(
                site, opts.seed_count, make_rng(seed, STREAM_SAMPLING), opts.sampling_method
            )

        with stage("relaxation"):
            relaxer = CVTRelaxer(site, opts.relaxation_options(self.workers))
            relaxation = relaxer.relax(arena, should_cancel=should_cancel)
        if relaxation.state == RelaxationState.CANCELLED:
            raise GenerationCancelled(relaxation)

        cells = relaxation.clip.cells

        with stage("roads"):
            roads = extract_road_network(cells, site, opts.road_options())

        with stage("subdivision"):
            subdivision = subdivide_cells(
                cells, opts.subdivision_options(self.workers), seed, roads.graph
            )

        with stage("extrusion"):
            extrusion = extrude_plots(subdivision.plots, opts.extrusion_options(self.workers))

        with stage("assembly"):
            assembler = MeshAssembler(opts.weld_epsilon, opts.road_surface_height)
            for plot_mesh in extrusion.meshes:
                assembler.add_plot_mesh(plot_mesh)
            assembler.add_road_graph(roads.graph)
            mesh = assembler.build()

        diagnostics.status = relaxation.state.value
        diagnostics.converged = relaxation.converged
        diagnostics.iterations = relaxation.iterations
        diagnostics.final_displacement = relaxation.final_displacement
        diagnostics.displacement_history = list(relaxation.displacement_history)
        diagnostics.seeds = len(relaxation.arena)
        diagnostics.dropped_seed_ids = list(relaxation.dropped_ids)
        diagnostics.degenerate_cells = len(relaxation.clip.degenerate_ids)
        diagnostics.discarded_fragments = relaxation.clip.discarded_fragments
        diagnostics.discarded_fragment_area = relaxation.clip.discarded_area
        diagnostics.road_nodes = roads.graph.node_count
        diagnostics.road_edges = roads.graph.edge_count
        diagnostics.road_candidates = roads.candidates
        diagnostics.collapsed_road_candidates = roads.collapsed_candidates
        diagnostics.plots = len(subdivision.plots) - extrusion.skipped_count
        diagnostics.skipped_plots = extrusion.skipped_count
        diagnostics.empty_plots = subdivision.empty_plots
        diagnostics.oversized_plots = subdivision.oversized_plots
        diagnostics.collapsed_plots = subdivision.collapsed_plots
        diagnostics.corridor_area = subdivision.corridor_area
        diagnostics.vertex_count = mesh.vertex_count
        diagnostics.triangle_count = mesh.triangle_count
        diagnostics.dropped_triangles = assembler.dropped_triangles
        diagnostics.warnings = list(roads.warnings)

        skipped = set(extrusion.skipped)
        plots = [p for p in subdivision.plots if p.id not in skipped]

        logger.info(
            "Settlement generated",
            status=diagnostics.status,
            iterations=diagnostics.iterations,
            plots=diagnostics.plots,
            road_edges=diagnostics.road_edges,
            triangles=diagnostics.triangle_count,
            warnings=len(diagnostics.warnings),
        )

        return GenerationResult(
            boundary=site,
            seeds=relaxation.arena,
            cells=cells,
            road_graph=roads.graph,
            plots=plots,
            mesh=mesh,
            diagnostics=diagnostics,
            relaxation=relaxation,
        )


def generate_settlement(
    boundary: BoundaryLike,
    seed: SeedLike = None,
    options: Union[GenerationOptions, Mapping[str, Any], None] = None,
    should_cancel: Optional[CancelHook] = None,
    **overrides: Any,
) -> GenerationResult:
    """
    Convenience wrapper: ``generate_settlement(square, 42, seedCount=9)``.

    Keyword overrides are merged over *options* (either naming style).
    """
    if overrides:
        base = GenerationOptions.coerce(options).model_dump(by_alias=True)
        base.update({to_camel(k) if "_" in k else k: v for k, v in overrides.items()})
        options = base
    return SettlementGenerator(options).generate(boundary, seed, should_cancel)
