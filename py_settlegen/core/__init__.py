"""
Core settlement generation functionality.
"""

from .boundary import Boundary, generate_boundary_polygon
from .seed_sampler import SamplingMethod, SeedArena, sample_seeds
from .voronoi_graph import VoronoiDiagram, build_voronoi
from .clipping import FragmentPolicy, clip_diagram
from .cvt import CVTRelaxer, RelaxationOptions, RelaxationState
from .roads import RoadGraph, extract_road_network
from .subdivision import HeightRange, Plot, subdivide_cells
from .extrusion import RoofStyle, extrude_plot, extrude_plots
from .mesh import Mesh, MeshAssembler
from .generator import GenerationOptions, GenerationResult, SettlementGenerator, generate_settlement

__all__ = ['Boundary', 'generate_boundary_polygon', 'SamplingMethod', 'SeedArena', 'sample_seeds',
           'VoronoiDiagram', 'build_voronoi', 'FragmentPolicy', 'clip_diagram',
           'CVTRelaxer', 'RelaxationOptions', 'RelaxationState', 'RoadGraph', 'extract_road_network',
           'HeightRange', 'Plot', 'subdivide_cells', 'RoofStyle', 'extrude_plot', 'extrude_plots',
           'Mesh', 'MeshAssembler', 'GenerationOptions', 'GenerationResult', 'SettlementGenerator',
           'generate_settlement']
