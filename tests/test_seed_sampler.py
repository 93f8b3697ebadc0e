"""Tests for seed sampling and the seed arena."""

import pytest
import numpy as np

from py_settlegen.core.boundary import Boundary
from py_settlegen.core.errors import InputError, SamplingExhausted
from py_settlegen.core.seed_sampler import SamplingMethod, SeedArena, sample_seeds


class TestSeedArena:
    """Test the id-keyed seed store."""

    def test_ids_are_sequential(self):
        """Seeds get ids in insertion order."""
        arena = SeedArena.from_points([(0, 0), (1, 0), (0, 1)])
        assert arena.ids() == [0, 1, 2]
        assert len(arena) == 3

    def test_ids_never_reused(self):
        """Dropping a seed does not free its id."""
        arena = SeedArena.from_points([(0, 0), (1, 0), (0, 1)])
        arena.drop(2)
        new_id = arena.add(5, 5)
        assert new_id == 3
        assert 2 not in arena
        assert arena.ids() == [0, 1, 3]

    def test_move_updates_position(self):
        """Moving a seed keeps its identity."""
        arena = SeedArena.from_points([(0, 0), (1, 0), (0, 1)])
        arena.move(1, 4.0, 2.0)
        assert arena.get(1).position == (4.0, 2.0)
        np.testing.assert_array_equal(arena.positions()[1], [4.0, 2.0])

    def test_copy_is_independent(self):
        """Copies do not share seeds."""
        arena = SeedArena.from_points([(0, 0), (1, 0), (0, 1)])
        clone = arena.copy()
        clone.move(0, 9, 9)
        clone.drop(1)
        assert arena.get(0).position == (0.0, 0.0)
        assert 1 in arena
        assert clone.add(3, 3) == arena.add(3, 3)

    def test_empty_positions(self):
        """Empty arenas give a (0, 2) array."""
        assert SeedArena().positions().shape == (0, 2)


class TestSampleSeeds:
    """Test seed placement."""

    @pytest.fixture
    def square(self):
        return Boundary.create([(0, 0), (10, 0), (10, 10), (0, 10)])

    @pytest.mark.parametrize("method", list(SamplingMethod))
    def test_exact_count_inside(self, square, method):
        """Every method places exactly N seeds strictly inside."""
        arena = sample_seeds(square, 25, np.random.default_rng(1), method=method)
        assert len(arena) == 25
        assert arena.ids() == list(range(25))
        assert all(square.contains(seed.position) for seed in arena)

    def test_holes_excluded(self):
        """No seed lands in a hole."""
        boundary = Boundary.create(
            [(0, 0), (10, 0), (10, 10), (0, 10)],
            holes=[[(2, 2), (8, 2), (8, 8), (2, 8)]],
        )
        arena = sample_seeds(boundary, 40, np.random.default_rng(2))
        for seed in arena:
            assert boundary.contains(seed.position)
            assert not (2 < seed.x < 8 and 2 < seed.y < 8)

    def test_deterministic(self, square):
        """Same generator seed gives the same positions."""
        a = sample_seeds(square, 16, np.random.default_rng(5))
        b = sample_seeds(square, 16, np.random.default_rng(5))
        np.testing.assert_array_equal(a.positions(), b.positions())

    def test_different_seeds(self, square):
        """Different generator seeds give different positions."""
        a = sample_seeds(square, 16, np.random.default_rng(5))
        b = sample_seeds(square, 16, np.random.default_rng(6))
        assert not np.array_equal(a.positions(), b.positions())

    def test_concave_boundary(self):
        """Seeds avoid the notch of a concave site."""
        u_shape = Boundary.create(
            [(0, 0), (30, 0), (30, 30), (20, 30), (20, 10), (10, 10), (10, 30), (0, 30)]
        )
        arena = sample_seeds(u_shape, 30, np.random.default_rng(8), method=SamplingMethod.SPIRAL)
        assert len(arena) == 30
        assert all(u_shape.contains(seed.position) for seed in arena)

    def test_non_positive_count(self, square):
        """Zero or negative counts raise InputError."""
        with pytest.raises(InputError):
            sample_seeds(square, 0, np.random.default_rng(0))
        with pytest.raises(InputError):
            sample_seeds(square, -3, np.random.default_rng(0))

    def test_sampling_exhausted(self, square):
        """Too few attempts raise SamplingExhausted with the tallies."""
        with pytest.raises(SamplingExhausted) as exc_info:
            sample_seeds(
                square, 50, np.random.default_rng(0),
                method=SamplingMethod.UNIFORM, max_attempts=10,
            )
        assert exc_info.value.requested == 50
        assert exc_info.value.placed <= 10
        assert exc_info.value.attempts == 10

    @pytest.mark.parametrize("method", list(SamplingMethod))
    def test_batched_containment(self, square, method, monkeypatch):
        """Sampling filters candidates in batches, never point by point."""
        def scalar_contains(self, point):
            raise AssertionError("per-point containment used")

        monkeypatch.setattr(Boundary, "contains", scalar_contains)
        arena = sample_seeds(square, 40, np.random.default_rng(5), method=method)
        assert len(arena) == 40
        assert square.contains_many(arena.positions()).all()
