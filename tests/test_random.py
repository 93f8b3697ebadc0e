"""Tests for seeded random streams."""

import pytest
import numpy as np

from py_settlegen.utils.random import (
    STREAM_HEIGHTS, STREAM_SAMPLING, STREAM_SUBDIVISION, make_rng, spawn_rng,
)


class TestMakeRng:
    """Test stage generators."""

    def test_deterministic(self):
        """Equal seeds give equal draws."""
        assert make_rng(42).random() == make_rng(42).random()

    def test_streams_independent(self):
        """Stage tags separate the streams."""
        draws = {make_rng(42, stream).random() for stream in (STREAM_SAMPLING, STREAM_SUBDIVISION, STREAM_HEIGHTS)}
        assert len(draws) == 3

    def test_sequence_seed(self):
        """Sequences of ints are accepted."""
        assert make_rng([1, 2]).random() == make_rng([1, 2]).random()

    def test_negative_seed(self):
        """Negative seeds are rejected."""
        with pytest.raises(ValueError):
            make_rng(-1)

    def test_numpy_integer_seed(self):
        """numpy integers behave like ints."""
        assert make_rng(np.int64(3)).random() == make_rng(3).random()


class TestSpawnRng:
    """Test per-item generators."""

    def test_keys_differ(self):
        """Different keys give different streams."""
        a = spawn_rng(7, STREAM_SUBDIVISION, 0).random(4)
        b = spawn_rng(7, STREAM_SUBDIVISION, 1).random(4)
        assert not np.array_equal(a, b)

    def test_order_independent(self):
        """A key's stream does not depend on other keys being drawn first."""
        spawn_rng(7, STREAM_SUBDIVISION, 0).random(100)
        first = spawn_rng(7, STREAM_SUBDIVISION, 5).random()
        assert first == spawn_rng(7, STREAM_SUBDIVISION, 5).random()
