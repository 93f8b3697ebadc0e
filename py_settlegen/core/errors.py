"""
Error taxonomy for settlement generation.

Structural failures (bad boundary, unusable seed set) are raised and abort the
run. Stage-local conditions (fragmented roads, unusable plots) are represented
by the same classes but collected into the run diagnostics instead of raised.
"""

from typing import List, Optional


class SettlementError(Exception):
    """Base class for all settlement generation errors."""


class InputError(SettlementError, ValueError):
    """Invalid input: malformed boundary, non-positive seed count, bad options."""


class SamplingExhausted(SettlementError):
    """The seed sampler ran out of attempts before placing every seed."""

    def __init__(self, requested: int, placed: int, attempts: int):
        self.requested = requested
        self.placed = placed
        self.attempts = attempts
        super().__init__(
            f"Placed {placed} of {requested} seeds after {attempts} attempts; "
            "boundary area is too small for the requested seed count"
        )


class InsufficientSeeds(SettlementError):
    """Fewer than three usable seeds, or all seeds collinear/coincident."""

    def __init__(self, message: str, seed_count: Optional[int] = None):
        self.seed_count = seed_count
        super().__init__(message)


class FragmentedRoadNetwork(SettlementError):
    """
    The extracted road graph has more than one connected component.

    Reported as a warning in the run diagnostics; only raised when the caller
    asks for strict road extraction.
    """

    def __init__(self, fragments: List[List[int]]):
        self.fragments = fragments
        sizes = [len(f) for f in fragments]
        super().__init__(
            f"Road network split into {len(fragments)} fragments (node counts: {sizes})"
        )


class TriangulationError(SettlementError):
    """Ear clipping could not triangulate a footprint."""


class DegeneratePlotError(SettlementError):
    """A plot footprint is too small or too thin to extrude."""

    def __init__(self, plot_id: int, reason: str):
        self.plot_id = plot_id
        self.reason = reason
        super().__init__(f"Plot {plot_id} is degenerate: {reason}")


class MeshIntegrityError(SettlementError):
    """An assembled mesh references missing vertices or contains degenerate faces."""


class GenerationCancelled(SettlementError):
    """The cancellation hook fired during relaxation."""

    def __init__(self, relaxation=None):
        self.relaxation = relaxation
        iterations = relaxation.iterations if relaxation is not None else 0
        super().__init__(f"Generation cancelled after {iterations} relaxation iterations")
