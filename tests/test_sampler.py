"""Tests for light probe sampling."""

import numpy as np
import pytest

from mobilear.config import SamplerConfig, SamplerKind
from mobilear.lighting import LightProbeSampler, sample


def uniform_probe(h=32, w=64, value=200):
    return np.full((h, w, 3), value, dtype=np.uint8)


class TestLightProbeSampler:
    """Tests for median and variance cut sampling."""

    @pytest.mark.parametrize("kind", [SamplerKind.MEDIAN_CUT, SamplerKind.VARIANCE_CUT])
    def test_light_count(self, kind):
        """Depth d yields 2^d lights."""
        lights = sample(uniform_probe(), depth=3, kind=kind)
        assert len(lights) == 8

    @pytest.mark.parametrize("kind", [SamplerKind.MEDIAN_CUT, SamplerKind.VARIANCE_CUT])
    def test_uniform_probe_is_symmetric(self, kind):
        """A uniform probe gives mirror-symmetric light centroids."""
        h, w = 32, 64
        lights = sample(uniform_probe(h, w), depth=3, kind=kind)
        centroids = np.array([[l.centroid_y, l.centroid_x] for l in lights])
        mirrored = np.stack([centroids[:, 0], (w - 1) - centroids[:, 1]], axis=1)
        for c in mirrored:
            assert np.min(np.linalg.norm(centroids - c, axis=1)) < 1.0
        flipped = np.stack([(h - 1) - centroids[:, 0], centroids[:, 1]], axis=1)
        for c in flipped:
            assert np.min(np.linalg.norm(centroids - c, axis=1)) < 1.0

    def test_regions_partition_image(self):
        """Leaf regions cover every pixel exactly once."""
        h, w = 32, 64
        lights = sample(uniform_probe(h, w), depth=4)
        cover = np.zeros((h, w), dtype=int)
        for l in lights:
            r = l.region
            cover[r.y0:r.y1 + 1, r.x0:r.x1 + 1] += 1
        np.testing.assert_array_equal(cover, np.ones((h, w), dtype=int))

    def test_solid_angles_sum_to_sphere(self):
        """Leaf solid angles add up to 4 pi."""
        lights = sample(uniform_probe(), depth=3)
        assert sum(l.solid_angle for l in lights) == pytest.approx(4.0 * np.pi)

    def test_directions_are_unit(self):
        """Light directions are unit vectors."""
        for l in sample(uniform_probe(), depth=2):
            assert np.linalg.norm(l.direction) == pytest.approx(1.0)

    def test_bright_spot_attracts_light(self):
        """A single bright spot is pointed at by one light."""
        image = np.zeros((32, 64, 3), dtype=np.float32)
        image[10, 20] = 1000.0
        lights = sample(image, depth=2)
        brightest = max(lights, key=lambda l: float(np.sum(l.diffuse)))
        assert brightest.centroid_y == pytest.approx(10.0, abs=0.5)
        assert brightest.centroid_x == pytest.approx(20.0, abs=0.5)

    def test_color_terms(self):
        """Ambient and specular terms scale the diffuse colour."""
        light = sample(uniform_probe(), depth=1)[0]
        np.testing.assert_allclose(light.ambient, light.diffuse / 5.0)
        np.testing.assert_allclose(light.specular, light.diffuse * 1.5)

    def test_depth_zero(self):
        """Depth zero gives a single light over the whole probe."""
        lights = LightProbeSampler(depth=0)(uniform_probe())
        assert len(lights) == 1
        assert lights[0].region.area == 32 * 64

    def test_rejects_grayscale(self):
        """Probes must have colour channels."""
        with pytest.raises(ValueError):
            sample(np.zeros((8, 16)), depth=1)

    def test_rejects_negative_depth(self):
        """Depth must be non-negative."""
        with pytest.raises(ValueError):
            LightProbeSampler(depth=-1)

    def test_from_config(self):
        """Samplers can be built from the configuration dataclass."""
        sampler = LightProbeSampler.from_config(SamplerConfig(depth=2, kind=SamplerKind.VARIANCE_CUT))
        assert sampler.kind == SamplerKind.VARIANCE_CUT
        assert len(sampler(uniform_probe())) == 4
