"""Tests for road network extraction."""

import pytest
import numpy as np
from shapely.geometry import Point

from py_settlegen.core.boundary import Boundary
from py_settlegen.core.clipping import clip_diagram
from py_settlegen.core.cvt import CVTRelaxer, RelaxationOptions
from py_settlegen.core.errors import FragmentedRoadNetwork
from py_settlegen.core.roads import (
    PERIMETER, RoadEdge, RoadGraph, RoadOptions, _Candidate,
    extract_road_network, merge_junctions,
)
from py_settlegen.core.seed_sampler import SeedArena, sample_seeds
from py_settlegen.core.voronoi_graph import build_voronoi


def clipped_cells(boundary, arena):
    diagram = build_voronoi(arena, include_bounds=boundary.bounds)
    return clip_diagram(diagram, boundary).cells


class TestRoadGraph:
    """Test the graph container."""

    def test_components(self):
        """Components are found and ordered largest first."""
        graph = RoadGraph(
            nodes={0: (0, 0), 1: (1, 0), 2: (2, 0), 3: (5, 5), 4: (6, 5)},
            edges=[
                RoadEdge(0, 1, 1.0, 1.0, (0, 1)),
                RoadEdge(1, 2, 1.0, 1.0, (1, 2)),
                RoadEdge(3, 4, 1.0, 1.0, (3, 4)),
            ],
        )
        assert graph.connected_components() == [[0, 1, 2], [3, 4]]
        assert not graph.is_connected()
        assert graph.total_length == pytest.approx(3.0)
        assert graph.adjacency()[1] == [0, 2]

    def test_empty_graph_is_connected(self):
        """An empty graph has no fragments."""
        assert RoadGraph().connected_components() == []
        assert RoadGraph().is_connected()


class TestJunctionMerging:
    """Test vertex clustering."""

    def test_noisy_endpoints_merge(self):
        """Endpoints within epsilon become one junction."""
        candidates = [
            _Candidate(((0.0, 0.0), (5.0, 0.0)), (0, 1)),
            _Candidate(((5.0 + 1e-12, 1e-12), (5.0, 5.0)), (1, 2)),
        ]
        positions, nodes, collapsed = merge_junctions(candidates, 1e-9, 0.5)
        assert len(positions) == 3
        assert nodes[0][1] == nodes[1][0]
        assert collapsed == 0

    def test_short_candidates_collapse(self):
        """Both ends of a short candidate join one junction."""
        candidates = [
            _Candidate(((0.0, 0.0), (5.0, 0.0)), (0, 1)),
            _Candidate(((5.0, 0.0), (5.1, 0.0)), (1, 2)),
            _Candidate(((5.1, 0.0), (10.0, 0.0)), (2, 3)),
        ]
        positions, nodes, collapsed = merge_junctions(candidates, 1e-9, 0.5)
        assert collapsed == 1
        assert nodes[0][1] == nodes[1][0] == nodes[1][1] == nodes[2][0]
        assert len(positions) == 3

    def test_long_polyline_keeps_inner_vertices(self):
        """Short segments of a long polyline stay separate junctions."""
        arc = tuple((float(np.cos(t)), float(np.sin(t))) for t in np.linspace(0, np.pi, 40))
        candidates = [_Candidate(arc, (0, PERIMETER))]
        positions, nodes, collapsed = merge_junctions(candidates, 1e-9, 0.5)
        assert collapsed == 0
        assert len(positions) == 40
        assert len(set(nodes[0])) == 40

    def test_short_polyline_collapses_whole(self):
        """A polyline at or below the minimum length becomes one junction."""
        hook = ((0.0, 0.0), (0.1, 0.0), (0.1, 0.1))
        candidates = [_Candidate(hook, (0, 1))]
        positions, nodes, collapsed = merge_junctions(candidates, 1e-9, 0.5)
        assert collapsed == 1
        assert len(positions) == 1
        assert set(nodes[0]) == {0}

    def test_node_ids_follow_position(self):
        """Node ids do not depend on candidate order."""
        a = [
            _Candidate(((0.0, 0.0), (3.0, 0.0)), (0, 1)),
            _Candidate(((3.0, 0.0), (3.0, 4.0)), (1, 2)),
        ]
        pos_a, _, _ = merge_junctions(a, 1e-9, 0.1)
        pos_b, _, _ = merge_junctions(a[::-1], 1e-9, 0.1)
        np.testing.assert_array_equal(pos_a, pos_b)


class TestCurvedSite:
    """Road extraction on a site with a finely segmented boundary."""

    @pytest.fixture
    def disc_cells(self):
        boundary = Boundary.from_shapely(Point(0, 0).buffer(10, quad_segs=64))
        arena = sample_seeds(boundary, 12, np.random.default_rng(1))
        result = CVTRelaxer(boundary, RelaxationOptions(max_iterations=50)).relax(arena)
        return boundary, result.clip.cells

    def test_nodes_lie_on_cell_edges(self, disc_cells):
        """Every junction sits on the boundary of some cell."""
        boundary, cells = disc_cells
        graph = extract_road_network(cells, boundary).graph
        outlines = [c.shape().boundary for c in cells.values() if not c.degenerate]
        for x, y in graph.nodes.values():
            assert min(o.distance(Point(x, y)) for o in outlines) < 1e-3

    def test_perimeter_follows_arc(self, disc_cells):
        """Perimeter roads trace the whole curved boundary."""
        boundary, cells = disc_cells
        extraction = extract_road_network(cells, boundary)
        graph = extraction.graph
        assert graph.is_connected()
        perimeter = sum(e.length for e in graph.edges if PERIMETER in e.cells)
        assert perimeter == pytest.approx(boundary.shape.exterior.length, rel=0.02)

    def test_no_phantom_hub(self, disc_cells):
        """Perimeter segments are not contracted into one interior junction."""
        boundary, cells = disc_cells
        graph = extract_road_network(cells, boundary).graph
        degrees = [len(ns) for ns in graph.adjacency().values()]
        assert max(degrees) <= 6
        assert graph.node_count > 64



class TestExtractRoadNetwork:
    """Test extraction from clipped cells."""

    @pytest.fixture
    def square_cells(self):
        boundary = Boundary.create([(0, 0), (10, 0), (10, 10), (0, 10)])
        arena = sample_seeds(boundary, 9, np.random.default_rng(42))
        result = CVTRelaxer(boundary, RelaxationOptions(max_iterations=50)).relax(arena)
        return boundary, result.clip.cells

    def test_single_component(self, square_cells):
        """A simply connected site yields one connected road graph."""
        boundary, cells = square_cells
        extraction = extract_road_network(cells, boundary)
        graph = extraction.graph
        assert graph.is_connected()
        assert graph.node_count >= 4
        assert not extraction.warnings

    def test_edge_properties(self, square_cells):
        """Edges carry the configured width and are never loops or repeats."""
        boundary, cells = square_cells
        options = RoadOptions(road_min_width=1.5, road_min_length=0.25)
        graph = extract_road_network(cells, boundary, options).graph
        pairs = set()
        for edge in graph.edges:
            assert edge.width == 1.5
            assert edge.length > 0
            assert edge.a != edge.b
            assert edge.a in graph.nodes and edge.b in graph.nodes
            pairs.add((edge.a, edge.b))
        assert len(pairs) == graph.edge_count

    def test_interior_roads_only(self, square_cells):
        """Without perimeter roads every edge separates two cells."""
        boundary, cells = square_cells
        graph = extract_road_network(
            cells, boundary, RoadOptions(perimeter_roads=False)
        ).graph
        assert graph.edge_count > 0
        assert all(PERIMETER not in edge.cells for edge in graph.edges)

    def test_nodes_inside_or_on_site(self, square_cells):
        """Junctions never leave the site."""
        boundary, cells = square_cells
        graph = extract_road_network(cells, boundary).graph
        grown = boundary.shape.buffer(1e-6)
        for x, y in graph.nodes.values():
            assert grown.contains(Point(x, y))


class TestFragmentation:
    """Detection of disconnected road fragments."""

    @pytest.fixture
    def strip(self):
        # Three cells in a row: their shared edges never meet
        boundary = Boundary.create([(0, 0), (30, 0), (30, 2), (0, 2)])
        arena = SeedArena.from_points([(5, 0.8), (15, 1.2), (25, 0.8)])
        return boundary, clipped_cells(boundary, arena)

    def test_fragment_reported(self, strip):
        """Fragmentation is returned as a warning, not raised."""
        boundary, cells = strip
        extraction = extract_road_network(cells, boundary, RoadOptions(perimeter_roads=False))
        assert len(extraction.warnings) == 1
        warning = extraction.warnings[0]
        assert isinstance(warning, FragmentedRoadNetwork)
        assert len(warning.fragments) == 2
        assert extraction.graph.edge_count == 2

    def test_strict_raises(self, strip):
        """Strict extraction raises the fragmentation error."""
        boundary, cells = strip
        with pytest.raises(FragmentedRoadNetwork):
            extract_road_network(
                cells, boundary, RoadOptions(perimeter_roads=False, strict=True)
            )

    def test_perimeter_roads_connect(self, strip):
        """Perimeter roads join the fragments."""
        boundary, cells = strip
        extraction = extract_road_network(cells, boundary)
        assert not extraction.warnings
        assert extraction.graph.is_connected()
