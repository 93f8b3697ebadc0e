"""Tests for the boundary model."""

import pytest
import numpy as np
from shapely.geometry import Polygon as ShapelyPolygon

from py_settlegen.core.boundary import Boundary, generate_boundary_polygon
from py_settlegen.core.errors import InputError
from py_settlegen.core.geometry import ring_signed_area


SQUARE = [(0, 0), (10, 0), (10, 10), (0, 10)]


class TestBoundaryValidation:
    """Test boundary construction and validation."""

    def test_valid_square(self):
        """A square is accepted with the expected measures."""
        boundary = Boundary.create(SQUARE)
        assert boundary.area == pytest.approx(100.0)
        assert boundary.bounds == (0.0, 0.0, 10.0, 10.0)
        assert boundary.extent == pytest.approx(np.sqrt(200.0))
        assert boundary.is_simply_connected

    def test_clockwise_input_is_normalised(self):
        """CW exterior rings are reoriented."""
        boundary = Boundary.create(SQUARE[::-1])
        assert ring_signed_area(boundary.polygon.exterior) > 0

    def test_self_intersecting_rejected(self):
        """A bowtie raises InputError."""
        with pytest.raises(InputError):
            Boundary.create([(0, 0), (10, 10), (10, 0), (0, 10)])

    def test_too_few_vertices(self):
        """Fewer than 3 distinct vertices raises InputError."""
        with pytest.raises(InputError):
            Boundary.create([(0, 0), (1, 1)])
        with pytest.raises(InputError):
            Boundary.create([(0, 0), (1, 1), (1, 1), (0, 0)])

    def test_zero_area_rejected(self):
        """Collinear vertices collapse and are rejected."""
        with pytest.raises(InputError):
            Boundary.create([(0, 0), (1, 0), (2, 0)])

    def test_non_finite_rejected(self):
        """NaN coordinates are rejected."""
        with pytest.raises(InputError):
            Boundary.create([(0, 0), (float("nan"), 0), (1, 1)])

    def test_hole_outside_shell_rejected(self):
        """Holes must lie inside the exterior."""
        with pytest.raises(InputError):
            Boundary.create(SQUARE, holes=[[(20, 20), (22, 20), (22, 22), (20, 22)]])

    def test_input_error_is_value_error(self):
        """InputError can be caught as ValueError."""
        with pytest.raises(ValueError):
            Boundary.create([(0, 0), (10, 10), (10, 0), (0, 10)])

    def test_from_shapely(self):
        """Shapely polygons are validated the same way."""
        boundary = Boundary.from_shapely(ShapelyPolygon(SQUARE))
        assert boundary.area == pytest.approx(100.0)


class TestBoundaryQueries:
    """Test containment queries."""

    @pytest.fixture
    def holed(self):
        """Square with a central hole."""
        return Boundary.create(SQUARE, holes=[[(4, 4), (6, 4), (6, 6), (4, 6)]])

    def test_contains_is_strict(self, holed):
        """Points on the boundary are outside."""
        assert holed.contains((1, 1))
        assert not holed.contains((0, 5))
        assert not holed.contains((11, 5))

    def test_holes_excluded(self, holed):
        """Points inside a hole are outside."""
        assert not holed.contains((5, 5))
        assert not holed.is_simply_connected
        assert holed.area == pytest.approx(96.0)

    def test_contains_many(self, holed):
        """Vectorised containment matches the scalar test."""
        result = holed.contains_many(np.array([[1, 1], [5, 5], [20, 20]]))
        np.testing.assert_array_equal(result, [True, False, False])

    def test_contains_many_empty(self, holed):
        """An empty batch gives an empty mask."""
        result = holed.contains_many(np.empty((0, 2)))
        assert result.shape == (0,)
        assert result.dtype == bool

    def test_representative_point_inside(self, holed):
        """Representative point is inside."""
        assert holed.contains(holed.representative_point())


class TestRandomBoundary:
    """Test random star-shaped boundary generation."""

    def test_vertex_count_and_validity(self):
        """Generated boundaries are valid with the requested vertices."""
        rng = np.random.default_rng(3)
        boundary = generate_boundary_polygon(12, 50.0, rng)
        assert len(boundary.polygon.exterior) == 12
        assert boundary.shape.is_valid
        assert boundary.contains((0.0, 0.0))

    def test_radius_bounds(self):
        """Vertices stay within the radius variation."""
        rng = np.random.default_rng(4)
        boundary = generate_boundary_polygon(20, 10.0, rng, radius_variation=0.2, center=(5, 5))
        radii = [np.hypot(x - 5, y - 5) for x, y in boundary.polygon.exterior]
        assert min(radii) >= 8.0 - 1e-9
        assert max(radii) <= 12.0 + 1e-9

    def test_deterministic(self):
        """Same generator state gives the same boundary."""
        a = generate_boundary_polygon(8, 30.0, np.random.default_rng(9))
        b = generate_boundary_polygon(8, 30.0, np.random.default_rng(9))
        assert a.polygon == b.polygon

    def test_invalid_arguments(self):
        """Bad parameters raise InputError."""
        rng = np.random.default_rng(0)
        with pytest.raises(InputError):
            generate_boundary_polygon(2, 10.0, rng)
        with pytest.raises(InputError):
            generate_boundary_polygon(6, 0.0, rng)
        with pytest.raises(InputError):
            generate_boundary_polygon(6, 10.0, rng, radius_variation=1.0)
