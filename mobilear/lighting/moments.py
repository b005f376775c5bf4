"""
Summed-area tables of raw image moments.

Moments(image, i, j) answers sum(y^i * x^j * v) over any axis-aligned
rectangle in constant time.
"""

import numpy as np
from dataclasses import dataclass


@dataclass(frozen=True)
class Region:
    """Rectangle with inclusive bounds."""
    y0: int
    x0: int
    y1: int
    x1: int

    def __post_init__(self):
        if not (0 <= self.y0 <= self.y1 and 0 <= self.x0 <= self.x1):
            raise ValueError(f"Invalid region {self}")

    @property
    def width(self) -> int:
        return self.x1 - self.x0 + 1

    @property
    def height(self) -> int:
        return self.y1 - self.y0 + 1

    @property
    def area(self) -> int:
        return self.width * self.height


class Moments:
    """
    Summed-area table of y^i * x^j * image.
    """

    def __init__(self, image: np.ndarray, i: int = 0, j: int = 0):
        """
        Build the table.

        Args:
            image: (H, W) values
            i: Power of the row coordinate
            j: Power of the column coordinate
        """
        image = np.asarray(image, dtype=np.float64)
        if image.ndim != 2:
            raise ValueError(f"Expected a 2D image, got shape {image.shape}")
        h, w = image.shape
        y = np.arange(h, dtype=np.float64)[:, None] ** i
        x = np.arange(w, dtype=np.float64)[None, :] ** j

        self.i, self.j = i, j
        self.shape = image.shape
        self.table = np.zeros((h + 1, w + 1))
        self.table[1:, 1:] = np.cumsum(np.cumsum(image * y * x, axis=0), axis=1)

    def sum(self, y0, x0, y1, x1):
        """Vectorized sums over inclusive bounds; arguments broadcast."""
        t = self.table
        y0 = np.asarray(y0)
        x0 = np.asarray(x0)
        y1 = np.asarray(y1) + 1
        x1 = np.asarray(x1) + 1
        return t[y1, x1] - t[y0, x1] - t[y1, x0] + t[y0, x0]

    def __call__(self, region: Region) -> float:
        return float(self.sum(region.y0, region.x0, region.y1, region.x1))
