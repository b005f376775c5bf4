"""Tests for summed-area moment tables."""

import numpy as np
import pytest

from mobilear.lighting import Moments, Region


class TestMoments:
    """Tests for rectangle moment queries."""

    def test_uniform_image(self):
        """A constant image sums to area times the value."""
        m = Moments(np.full((8, 12), 2.5))
        region = Region(1, 2, 5, 9)
        assert m(region) == pytest.approx(region.area * 2.5)

    def test_matches_brute_force(self):
        """Higher moments match direct summation."""
        rng = np.random.default_rng(3)
        image = rng.random((10, 7))
        ys, xs = np.mgrid[0:10, 0:7]
        region = Region(2, 1, 8, 5)
        window = (slice(2, 9), slice(1, 6))
        for i, j in [(0, 0), (1, 0), (0, 1), (2, 0), (0, 2)]:
            expected = np.sum((ys ** i * xs ** j * image)[window])
            assert Moments(image, i, j)(region) == pytest.approx(expected)

    def test_additive(self):
        """Sums over a split region add up to the whole."""
        rng = np.random.default_rng(4)
        m = Moments(rng.random((9, 9)), 1, 0)
        whole = m(Region(0, 0, 8, 8))
        assert m(Region(0, 0, 3, 8)) + m(Region(4, 0, 8, 8)) == pytest.approx(whole)
        assert m(Region(0, 0, 8, 5)) + m(Region(0, 6, 8, 8)) == pytest.approx(whole)

    def test_vectorized_sum(self):
        """Array bounds evaluate many rectangles at once."""
        m = Moments(np.ones((4, 6)))
        cuts = np.arange(0, 5)
        np.testing.assert_allclose(m.sum(0, 0, 3, cuts), 4.0 * (cuts + 1))

    def test_single_pixel(self):
        """A one-pixel region returns that pixel."""
        image = np.arange(12, dtype=np.float64).reshape(3, 4)
        assert Moments(image)(Region(2, 3, 2, 3)) == pytest.approx(11.0)

    def test_rejects_non_2d(self):
        """Only single-channel images are accepted."""
        with pytest.raises(ValueError):
            Moments(np.zeros((2, 2, 3)))


class TestRegion:
    """Tests for region bounds."""

    def test_inclusive_size(self):
        """Bounds are inclusive."""
        r = Region(0, 0, 0, 4)
        assert r.width == 5
        assert r.height == 1
        assert r.area == 5

    def test_invalid(self):
        """Inverted bounds are rejected."""
        with pytest.raises(ValueError):
            Region(3, 0, 2, 0)
