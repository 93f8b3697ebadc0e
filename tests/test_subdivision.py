"""Tests for plot subdivision."""

import pytest
from pydantic import ValidationError
from shapely.geometry import box

from py_settlegen.core.clipping import ClippedCell
from py_settlegen.core.geometry import Polygon
from py_settlegen.core.roads import RoadEdge, RoadGraph, road_corridors
from py_settlegen.core.subdivision import (
    HeightRange, SubdivisionOptions, cut_line, split_polygon, subdivide_cells,
)


def square_cell(seed_id, x0, y0, size):
    poly = Polygon.from_points([(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)])
    return ClippedCell(seed_id=seed_id, parts=(poly,), neighbor_ids=frozenset())


class TestHeightRange:
    """Test the height interval model."""

    def test_order_enforced(self):
        """min above max is rejected."""
        with pytest.raises(ValidationError):
            HeightRange(min=5.0, max=2.0)

    def test_fixed_value(self):
        """A zero-width range always yields its value."""
        import numpy as np
        assert HeightRange(min=3.0, max=3.0).sample(np.random.default_rng(0)) == 3.0


class TestCutting:
    """Test single cuts."""

    def test_cut_across_long_axis(self):
        """A centred cut halves a long rectangle across its length."""
        rect = box(0, 0, 20, 4)
        line = cut_line(rect, 0.5, 0.0)
        pieces = split_polygon(rect, line)
        assert len(pieces) == 2
        assert sorted(round(p.area, 6) for p in pieces) == [40.0, 40.0]
        for piece in pieces:
            minx, miny, maxx, maxy = piece.bounds
            assert maxx - minx == pytest.approx(10.0)
            assert maxy - miny == pytest.approx(4.0)

    def test_alley_leaves_gap(self):
        """Alley cuts remove a strip of the given width."""
        rect = box(0, 0, 20, 4)
        pieces = split_polygon(rect, cut_line(rect, 0.5, 0.0), alley_width=1.0)
        assert len(pieces) == 2
        assert sum(p.area for p in pieces) == pytest.approx(80.0 - 4.0)


class TestSubdivideCells:
    """Test recursive subdivision into plots."""

    def test_small_cell_single_plot(self):
        """Cells under the threshold become one plot."""
        result = subdivide_cells({0: square_cell(0, 0, 0, 5)}, SubdivisionOptions(), seed=1)
        assert len(result.plots) == 1
        plot = result.plots[0]
        assert plot.area == pytest.approx(25.0)
        assert plot.source_cell_id == 0
        assert plot.id == 0

    def test_large_cell_split_under_threshold(self):
        """All plots end under the threshold and cover the cell."""
        options = SubdivisionOptions(plot_area_threshold=40.0, size_chaos=0.0)
        result = subdivide_cells({3: square_cell(3, 0, 0, 20)}, options, seed=2)
        assert len(result.plots) >= 10
        assert result.oversized_plots == 0
        assert result.cells_subdivided == 1
        assert all(p.area <= 40.0 + 1e-9 for p in result.plots)
        assert result.total_area == pytest.approx(400.0, rel=1e-9)
        cell = box(0, 0, 20, 20).buffer(1e-9)
        assert all(cell.contains(p.polygon.to_shapely()) for p in result.plots)

    def test_depth_cap_accepts_oversized(self):
        """At the depth cap oversized parts are kept as plots."""
        options = SubdivisionOptions(plot_area_threshold=10.0, max_recursion_depth=0)
        result = subdivide_cells({0: square_cell(0, 0, 0, 20)}, options, seed=3)
        assert len(result.plots) == 1
        assert result.oversized_plots == 1

    def test_heights_in_range(self):
        """Heights come from the configured distribution."""
        options = SubdivisionOptions(height_distribution=HeightRange(min=3.0, max=4.0))
        result = subdivide_cells({0: square_cell(0, 0, 0, 30)}, options, seed=4)
        assert all(3.0 <= p.height <= 4.0 for p in result.plots)
        assert all(p.roof_height == 0.0 for p in result.plots)

    def test_roof_heights_sampled(self):
        """Roof rises are drawn when a range is configured."""
        options = SubdivisionOptions(roof_height=HeightRange(min=0.7, max=1.0))
        result = subdivide_cells({0: square_cell(0, 0, 0, 10)}, options, seed=4)
        assert all(0.7 <= p.roof_height <= 1.0 for p in result.plots)

    def test_deterministic(self):
        """Same seed gives the same plots."""
        cells = {0: square_cell(0, 0, 0, 25), 1: square_cell(1, 25, 0, 25)}
        a = subdivide_cells(cells, seed=7)
        b = subdivide_cells(cells, seed=7)
        assert [p.polygon for p in a.plots] == [p.polygon for p in b.plots]
        assert [p.height for p in a.plots] == [p.height for p in b.plots]

    def test_cells_independent(self):
        """A cell's plots do not depend on the other cells."""
        cell = square_cell(5, 0, 0, 25)
        alone = subdivide_cells({5: cell}, seed=7)
        together = subdivide_cells({2: square_cell(2, 30, 0, 25), 5: cell}, seed=7)
        from_cell = [p.polygon for p in together.plots if p.source_cell_id == 5]
        assert from_cell == [p.polygon for p in alone.plots]

    def test_threaded_matches_inline(self):
        """Worker pools do not change the result."""
        cells = {i: square_cell(i, 30 * i, 0, 25) for i in range(4)}
        inline = subdivide_cells(cells, SubdivisionOptions(workers=1), seed=9)
        threaded = subdivide_cells(cells, SubdivisionOptions(workers=3), seed=9)
        assert [p.polygon for p in inline.plots] == [p.polygon for p in threaded.plots]
        assert [p.id for p in threaded.plots] == list(range(len(threaded.plots)))

    def test_empty_plots_counted(self):
        """Empty plots are tallied, not emitted."""
        cells = {0: square_cell(0, 0, 0, 40)}
        full = subdivide_cells(cells, SubdivisionOptions(size_chaos=0.0), seed=5)
        sparse = subdivide_cells(
            cells, SubdivisionOptions(size_chaos=0.0, empty_probability=0.5), seed=5
        )
        assert sparse.empty_plots > 0
        assert len(sparse.plots) + sparse.empty_plots == len(full.plots)

    def test_setback_shrinks_plots(self):
        """Setback insets every plot."""
        cells = {0: square_cell(0, 0, 0, 6)}
        result = subdivide_cells(cells, SubdivisionOptions(plot_setback=0.5, size_chaos=0.0), seed=1)
        assert result.plots[0].area == pytest.approx(25.0)

    def test_setback_collapse_counted(self):
        """Plots consumed by the setback are counted."""
        cells = {0: square_cell(0, 0, 0, 1)}
        result = subdivide_cells(cells, SubdivisionOptions(plot_setback=1.0), seed=1)
        assert result.plots == []
        assert result.collapsed_plots == 1

    def test_degenerate_cells_skipped(self):
        """Degenerate cells produce no plots."""
        degenerate = ClippedCell(seed_id=1, parts=(), neighbor_ids=frozenset(), degenerate=True)
        result = subdivide_cells({0: square_cell(0, 0, 0, 5), 1: degenerate}, seed=1)
        assert [p.source_cell_id for p in result.plots] == [0]

    def test_setback_keeps_every_inset_part(self):
        """A setback that pinches a plot in two keeps both halves."""
        dumbbell = Polygon.from_points([
            (0, 0), (4, 0), (4, 1.7), (6, 1.7), (6, 0), (10, 0),
            (10, 4), (6, 4), (6, 2.3), (4, 2.3), (4, 4), (0, 4),
        ])
        cells = {0: ClippedCell(seed_id=0, parts=(dumbbell,), neighbor_ids=frozenset())}
        options = SubdivisionOptions(plot_setback=0.5, size_chaos=0.0, plot_area_threshold=40.0)
        result = subdivide_cells(cells, options, seed=1)
        assert len(result.plots) == 2
        assert result.collapsed_plots == 0
        assert [p.id for p in result.plots] == [0, 1]
        assert all(p.source_cell_id == 0 for p in result.plots)
        for plot in result.plots:
            assert plot.area == pytest.approx(9.0, rel=0.05)


class TestRoadSetback:
    """Plots kept clear of the road surfaces."""

    @pytest.fixture
    def two_cells(self):
        cells = {0: square_cell(0, 0, 0, 10), 1: square_cell(1, 10, 0, 10)}
        graph = RoadGraph(
            nodes={0: (10.0, 0.0), 1: (10.0, 10.0)},
            edges=[RoadEdge(0, 1, 2.0, 10.0, (0, 1))],
        )
        return cells, graph

    def test_off_by_default(self, two_cells):
        """Without the option plots cover the whole cells."""
        cells, graph = two_cells
        options = SubdivisionOptions(plot_area_threshold=1000.0, size_chaos=0.0)
        result = subdivide_cells(cells, options, seed=1, roads=graph)
        assert result.total_area == pytest.approx(200.0)
        assert result.corridor_area == 0.0

    def test_plots_clear_of_roads(self, two_cells):
        """Half the road width is removed on each side of the road."""
        cells, graph = two_cells
        options = SubdivisionOptions(
            plot_area_threshold=1000.0, size_chaos=0.0, road_setback=True
        )
        result = subdivide_cells(cells, options, seed=1, roads=graph)
        corridor = road_corridors(graph)
        assert [round(p.area, 6) for p in result.plots] == [90.0, 90.0]
        assert result.corridor_area == pytest.approx(20.0)
        for plot in result.plots:
            assert plot.polygon.to_shapely().intersection(corridor).area < 1e-9

    def test_missing_graph_leaves_cells(self, two_cells):
        """Without a road graph there is nothing to trim."""
        cells, _ = two_cells
        options = SubdivisionOptions(
            plot_area_threshold=1000.0, size_chaos=0.0, road_setback=True
        )
        result = subdivide_cells(cells, options, seed=1)
        assert result.total_area == pytest.approx(200.0)
