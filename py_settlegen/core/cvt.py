"""
Centroidal Voronoi tessellation by damped Lloyd relaxation.

Each iteration moves every seed toward the centroid of its boundary-clipped
cell, then rebuilds and reclips the whole diagram. The rebuild is a barrier:
an iteration never starts before the previous diagram is complete, which is
also the only point where cancellation is honoured.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field

from .boundary import Boundary
from .clipping import ClipResult, FragmentPolicy, clip_diagram
from .errors import InsufficientSeeds
from .seed_sampler import SeedArena
from .voronoi_graph import VoronoiDiagram, build_voronoi

logger = structlog.get_logger()

CancelHook = Callable[[], bool]

# A rejected Lloyd step is retried with half the step this many times
MAX_STEP_HALVINGS = 6


class RelaxationOptions(BaseModel):
    """Lloyd relaxation parameters."""

    model_config = ConfigDict(use_enum_values=False)

    relaxation_epsilon: float = Field(
        default=1e-2, gt=0, description="Convergence threshold on max seed displacement (site units)"
    )
    max_iterations: int = Field(default=100, ge=0, description="Iteration cap")
    damping_factor: float = Field(
        default=1.0, gt=0, le=1.0, description="Fraction of the Lloyd step applied (1.0 = full step)"
    )
    degenerate_drop_after: int = Field(
        default=3, ge=1, description="Consecutive degenerate iterations before a seed is dropped"
    )
    fragment_policy: FragmentPolicy = Field(
        default=FragmentPolicy.KEEP_LARGEST, description="Multi-part clipping policy"
    )
    area_epsilon: float = Field(
        default=1e-6, gt=0, description="Clipped cells below this area are degenerate"
    )
    workers: int = Field(default=1, ge=1, description="Thread pool size for per-cell clipping")


class RelaxationState(str, Enum):
    """Relaxer lifecycle."""

    INITIALIZED = "initialized"
    RELAXING = "relaxing"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    RelaxationState.INITIALIZED: {RelaxationState.RELAXING},
    RelaxationState.RELAXING: {
        RelaxationState.CONVERGED,
        RelaxationState.MAX_ITERATIONS_REACHED,
        RelaxationState.CANCELLED,
    },
    RelaxationState.CONVERGED: set(),
    RelaxationState.MAX_ITERATIONS_REACHED: set(),
    RelaxationState.CANCELLED: set(),
}


@dataclass
class RelaxationResult:
    """Outcome of one relaxation run.

    ``diagram`` and ``clip`` always describe ``arena`` exactly, including
    after cancellation (best-so-far).
    """

    state: RelaxationState
    iterations: int
    displacement_history: List[float]
    arena: SeedArena
    diagram: VoronoiDiagram
    clip: ClipResult
    dropped_ids: List[int] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.state == RelaxationState.CONVERGED

    @property
    def final_displacement(self) -> Optional[float]:
        return self.displacement_history[-1] if self.displacement_history else None

    @property
    def degenerate_ids(self) -> List[int]:
        return list(self.clip.degenerate_ids)


class CVTRelaxer:
    """
    Drives Lloyd's algorithm under a boundary constraint.

    The relaxer never mutates the caller's arena: :meth:`relax` works on a
    private copy and returns it in the result.
    """

    def __init__(self, boundary: Boundary, options: Optional[RelaxationOptions] = None):
        self.boundary = boundary
        self.options = options or RelaxationOptions()
        self.state = RelaxationState.INITIALIZED

    def _transition(self, new_state: RelaxationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid relaxation transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def build(self, arena: SeedArena) -> Tuple[VoronoiDiagram, ClipResult]:
        """Build and clip the diagram for the arena's current positions."""
        diagram = build_voronoi(arena, include_bounds=self.boundary.bounds)
        clip = clip_diagram(
            diagram,
            self.boundary,
            policy=self.options.fragment_policy,
            area_epsilon=self.options.area_epsilon,
            workers=self.options.workers,
        )
        return diagram, clip

    def relax(
        self, arena: SeedArena, should_cancel: Optional[CancelHook] = None
    ) -> RelaxationResult:
        """
        Run relaxation to convergence, the iteration cap, or cancellation.

        Args:
            arena: Initial seeds (not modified)
            should_cancel: Optional hook polled before every iteration; returning
                True stops relaxation and returns the best-so-far diagram

        Returns:
            RelaxationResult

        Raises:
            InsufficientSeeds: If the seed set is, or becomes, unusable
        """
        opts = self.options
        self.state = RelaxationState.INITIALIZED
        arena = arena.copy()

        logger.info(
            "Starting Lloyd's relaxation",
            seeds=len(arena),
            max_iterations=opts.max_iterations,
            epsilon=opts.relaxation_epsilon,
            damping=opts.damping_factor,
        )

        diagram, clip = self.build(arena)
        self._transition(RelaxationState.RELAXING)

        history: List[float] = []
        streaks: Dict[int, int] = {}
        dropped: List[int] = []
        iterations = 0

        while True:
            if should_cancel is not None and should_cancel():
                self._transition(RelaxationState.CANCELLED)
                logger.info("Relaxation cancelled", iterations=iterations)
                break
            if iterations >= opts.max_iterations:
                self._transition(RelaxationState.MAX_ITERATIONS_REACHED)
                logger.warning(
                    "Relaxation hit iteration cap",
                    iterations=iterations,
                    displacement=history[-1] if history else None,
                )
                break

            max_displacement = self._step(arena, clip, streaks)
            newly_dropped = self._drop_degenerate(arena, streaks)
            dropped.extend(newly_dropped)

            iterations += 1
            history.append(max_displacement)

            if len(arena) < 3:
                raise InsufficientSeeds(
                    f"Only {len(arena)} seeds left after dropping degenerate cells",
                    seed_count=len(arena),
                )

            diagram, clip = self.build(arena)
            logger.debug(
                "Relaxation iteration complete",
                iteration=iterations,
                max_displacement=max_displacement,
                degenerate=len(clip.degenerate_ids),
            )

            if max_displacement < opts.relaxation_epsilon and not newly_dropped:
                self._transition(RelaxationState.CONVERGED)
                logger.info(
                    "Relaxation converged",
                    iterations=iterations,
                    displacement=max_displacement,
                )
                break

        return RelaxationResult(
            state=self.state,
            iterations=iterations,
            displacement_history=history,
            arena=arena,
            diagram=diagram,
            clip=clip,
            dropped_ids=dropped,
        )

    def _step(self, arena: SeedArena, clip: ClipResult, streaks: Dict[int, int]) -> float:
        """Move every non-degenerate seed toward its cell centroid."""
        damping = self.options.damping_factor
        max_displacement = 0.0

        for seed in list(arena):
            cell = clip.cells[seed.id]
            if cell.degenerate:
                # Held fixed to avoid oscillation
                streaks[seed.id] = streaks.get(seed.id, 0) + 1
                continue
            streaks[seed.id] = 0

            cx, cy = cell.centroid
            dx = (cx - seed.x) * damping
            dy = (cy - seed.y) * damping

            # Concave sites can put the centroid outside the boundary
            for _ in range(MAX_STEP_HALVINGS):
                if self.boundary.contains((seed.x + dx, seed.y + dy)):
                    break
                dx *= 0.5
                dy *= 0.5
            else:
                dx = dy = 0.0

            if dx or dy:
                arena.move(seed.id, seed.x + dx, seed.y + dy)
                max_displacement = max(max_displacement, math.hypot(dx, dy))

        return max_displacement

    def _drop_degenerate(self, arena: SeedArena, streaks: Dict[int, int]) -> List[int]:
        limit = self.options.degenerate_drop_after
        dropped = [sid for sid, count in sorted(streaks.items()) if count >= limit and sid in arena]
        for sid in dropped:
            arena.drop(sid)
            streaks.pop(sid, None)
            logger.warning(
                "Dropped persistently degenerate seed",
                seed_id=sid,
                iterations_degenerate=limit,
            )
        return dropped


def relax_seeds(
    boundary: Boundary,
    arena: SeedArena,
    options: Optional[RelaxationOptions] = None,
    should_cancel: Optional[CancelHook] = None,
) -> RelaxationResult:
    """Convenience wrapper around :class:`CVTRelaxer`."""
    return CVTRelaxer(boundary, options).relax(arena, should_cancel=should_cancel)
