"""
Procedural settlement layouts from centroidal Voronoi tessellations.
"""

from .core import (
    Boundary,
    GenerationOptions,
    GenerationResult,
    SettlementGenerator,
    generate_settlement,
)

__version__ = "0.1.0"

__all__ = [
    "Boundary",
    "GenerationOptions",
    "GenerationResult",
    "SettlementGenerator",
    "generate_settlement",
]
