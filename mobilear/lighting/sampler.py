"""
Light probe sampling.

Recursively splits an equirectangular environment map into regions
and approximates each leaf by a directional light placed at its
luminance centroid. The split position is chosen by a pluggable
strategy: median cut balances the energy of both halves, variance cut
minimizes the larger spatial spread of energy. Both rely on
summed-area tables of the luminance moments.
"""

import numpy as np
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

from ..config import SamplerConfig, SamplerKind
from ..geometry.rotation import pixel_to_direction
from .moments import Moments, Region


@dataclass
class LightSource:
    """Directional light approximating one region of the environment."""
    direction: np.ndarray  # (3,) unit vector from the light towards the origin
    ambient: np.ndarray  # (3,) RGB
    diffuse: np.ndarray  # (3,) RGB
    specular: np.ndarray  # (3,) RGB
    region: Region
    centroid_y: float
    centroid_x: float
    solid_angle: float  # steradians


class Probe:
    """
    Latitude-weighted environment map with its luminance moments.
    """

    def __init__(self, image: np.ndarray):
        image = np.asarray(image)
        if image.ndim != 3 or image.shape[2] not in (3, 4):
            raise ValueError(f"Expected a BGR or BGRA image, got shape {image.shape}")

        self.scale = 1.0 / 255.0 if image.dtype == np.uint8 else 1.0
        self.height, self.width = image.shape[:2]

        # Rows near the poles cover less solid angle
        lat = np.pi / 2.0 - np.pi * (np.arange(self.height) + 0.5) / self.height
        self.row_weight = np.cos(lat)
        self.image = image[..., :3].astype(np.float64) * self.row_weight[:, None, None]
        self.luminance = (
            0.0721 * self.image[..., 0] +
            0.7154 * self.image[..., 1] +
            0.2125 * self.image[..., 2]
        )

        self.m00 = Moments(self.luminance, 0, 0)
        self.m10 = Moments(self.luminance, 1, 0)
        self.m01 = Moments(self.luminance, 0, 1)
        self.m20 = Moments(self.luminance, 2, 0)
        self.m02 = Moments(self.luminance, 0, 2)

    def effective_width(self, region: Region) -> float:
        """Width of a region at its widest latitude."""
        return region.width * max(self.row_weight[region.y0], self.row_weight[region.y1])

    def spread(self, y0, x0, y1, x1):
        """Energy-weighted sum of squared distances to the centroid, vectorized."""
        m00 = self.m00.sum(y0, x0, y1, x1)
        m10 = self.m10.sum(y0, x0, y1, x1)
        m01 = self.m01.sum(y0, x0, y1, x1)
        second = self.m20.sum(y0, x0, y1, x1) + self.m02.sum(y0, x0, y1, x1)
        safe = np.where(m00 > 0, m00, 1.0)
        return np.where(m00 > 0, second - (m10 ** 2 + m01 ** 2) / safe, 0.0)

    def solid_angle(self, region: Region) -> float:
        lat_top = np.pi / 2.0 - np.pi * region.y0 / self.height
        lat_bottom = np.pi / 2.0 - np.pi * (region.y1 + 1) / self.height
        return 2.0 * np.pi * region.width / self.width * (np.sin(lat_top) - np.sin(lat_bottom))


Split = Callable[[Probe, Region, bool], int]


def _halves(region: Region, horizontal: bool):
    """Candidate cut positions with the bounds of both halves."""
    if horizontal:
        c = np.arange(region.y0, region.y1)
        first = (region.y0, region.x0, c, region.x1)
        second = (c + 1, region.x0, region.y1, region.x1)
    else:
        c = np.arange(region.x0, region.x1)
        first = (region.y0, region.x0, region.y1, c)
        second = (region.y0, c + 1, region.y1, region.x1)
    return c, first, second


def median_cut(probe: Probe, region: Region, horizontal: bool) -> int:
    """Cut balancing the energy of both halves."""
    cuts, first, _ = _halves(region, horizontal)
    total = probe.m00(region)
    diff = np.abs(2.0 * probe.m00.sum(*first) - total)
    return int(cuts[np.argmin(diff)])


def variance_cut(probe: Probe, region: Region, horizontal: bool) -> int:
    """Cut minimizing the larger energy spread of the two halves."""
    cuts, first, second = _halves(region, horizontal)
    worst = np.maximum(probe.spread(*first), probe.spread(*second))
    return int(cuts[np.argmin(worst)])


SPLITS: Dict[SamplerKind, Split] = {
    SamplerKind.MEDIAN_CUT: median_cut,
    SamplerKind.VARIANCE_CUT: variance_cut,
}


class LightProbeSampler:
    """
    Median-cut and variance-cut light extraction.
    """

    def __init__(self, depth: int = 4, kind: SamplerKind = SamplerKind.MEDIAN_CUT):
        """
        Initialize the sampler.

        Args:
            depth: Recursion depth; up to 2^depth lights are emitted
            kind: Split strategy
        """
        if depth < 0:
            raise ValueError(f"Depth must be non-negative, got {depth}")
        self.depth = depth
        self.kind = kind
        self.split = SPLITS[kind]

    @classmethod
    def from_config(cls, config: SamplerConfig) -> "LightProbeSampler":
        return cls(config.depth, config.kind)

    def __call__(self, image: np.ndarray) -> List[LightSource]:
        """
        Sample lights from an equirectangular BGR(A) image.

        Returns:
            Light sources in depth-first order
        """
        probe = Probe(image)
        lights: List[LightSource] = []
        stack: List[Tuple[Region, int]] = [(Region(0, 0, probe.height - 1, probe.width - 1), 0)]
        while stack:
            region, level = stack.pop()
            children = None if level >= self.depth else self._divide(probe, region)
            if children is None:
                lights.append(self._light(probe, region))
            else:
                # Second child pushed first so the first one is processed first
                stack.append((children[1], level + 1))
                stack.append((children[0], level + 1))
        return lights

    def _divide(self, probe: Probe, region: Region):
        """Split across the longer side; None if the region is a single pixel."""
        if region.height == 1 and region.width == 1:
            return None
        horizontal = region.height >= probe.effective_width(region)
        if region.height == 1:
            horizontal = False
        elif region.width == 1:
            horizontal = True

        c = self.split(probe, region, horizontal)
        if horizontal:
            return (Region(region.y0, region.x0, c, region.x1),
                    Region(c + 1, region.x0, region.y1, region.x1))
        return (Region(region.y0, region.x0, region.y1, c),
                Region(region.y0, c + 1, region.y1, region.x1))

    def _light(self, probe: Probe, region: Region) -> LightSource:
        energy = probe.m00(region)
        if energy > 0:
            cy = probe.m10(region) / energy
            cx = probe.m01(region) / energy
        else:
            cy = (region.y0 + region.y1) / 2.0
            cx = (region.x0 + region.x1) / 2.0

        # Pixels weighted by inverse squared distance to the centroid
        ys = np.arange(region.y0, region.y1 + 1)[:, None]
        xs = np.arange(region.x0, region.x1 + 1)[None, :]
        w = 1.0 / ((ys - cy) ** 2 + (xs - cx) ** 2 + 1.0)
        pixels = probe.image[region.y0:region.y1 + 1, region.x0:region.x1 + 1]
        bgr = (pixels * w[..., None]).sum(axis=(0, 1)) / w.sum()

        omega = probe.solid_angle(region)
        rgb = bgr[::-1] * probe.scale * omega / np.pi

        return LightSource(
            direction=-pixel_to_direction(cx, cy, probe.width, probe.height),
            ambient=rgb / 5.0,
            diffuse=rgb,
            specular=rgb * 1.5,
            region=region,
            centroid_y=float(cy),
            centroid_x=float(cx),
            solid_angle=float(omega)
        )


def sample(image: np.ndarray, depth: int = 4, kind: SamplerKind = SamplerKind.MEDIAN_CUT) -> List[LightSource]:
    """Sample directional lights from an environment map."""
    return LightProbeSampler(depth, kind)(image)
