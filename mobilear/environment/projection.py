"""
Equirectangular compositing.

Every panorama pixel is traced back into each source frame through the
frame's orientation and intrinsics. Contributions are blended with a
tent weight that vanishes at the source image border.
"""

import numpy as np
import cv2
from typing import Dict, List, Sequence, Tuple
from tqdm import tqdm

from ..geometry.rotation import equirect_directions
from .frame import Frame


class EquirectProjector:
    """
    Inverse spherical projection of frames onto a panorama.
    """

    def __init__(self, width: int = 2048, height: int = 1024):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid panorama size {width}x{height}")
        self.width = width
        self.height = height
        self.directions = equirect_directions(width, height)

    def sample(self, frame: Frame, R: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Resample one frame into panorama space.

        Args:
            frame: Source frame
            R: World-to-camera rotation of the frame

        Returns:
            (H, W, C) float32 samples and (H, W) float32 weights
        """
        h, w = frame.image.shape[:2]
        cam = self.directions @ np.asarray(R, dtype=np.float64).T
        z = cam[..., 2]
        front = z > 1e-6
        z = np.where(front, z, 1.0)

        K = frame.K
        x = K[0, 0] * cam[..., 0] / z + K[0, 1] * cam[..., 1] / z + K[0, 2]
        y = K[1, 1] * cam[..., 1] / z + K[1, 2]

        inside = front & (x >= 0) & (x <= w - 1) & (y >= 0) & (y <= h - 1)
        tent_x = np.clip(np.minimum(x, w - 1 - x) / (0.5 * (w - 1)), 0.0, 1.0)
        tent_y = np.clip(np.minimum(y, h - 1 - y) / (0.5 * (h - 1)), 0.0, 1.0)
        weight = np.where(inside, tent_x * tent_y, 0.0).astype(np.float32)

        map_x = np.where(inside, x, -1.0).astype(np.float32)
        map_y = np.where(inside, y, -1.0).astype(np.float32)
        samples = cv2.remap(
            frame.image.astype(np.float32), map_x, map_y,
            interpolation=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0
        )
        if samples.ndim == 2:
            samples = samples[..., None]
        return samples, weight

    def project(
        self,
        frames: Sequence[Frame],
        rotations: Dict[int, np.ndarray],
        exposures: Sequence[float]
    ) -> List[Tuple[np.ndarray, float]]:
        """
        Composite frames into one panorama per exposure.

        Args:
            frames: Frames to splat
            rotations: Frame index to world-to-camera rotation
            exposures: Exposure sequence; Frame.exposure_index selects the panorama

        Returns:
            List of (panorama, exposure), pixels without coverage are zero
        """
        channels = frames[0].image.shape[2] if frames and frames[0].image.ndim == 3 else 1
        acc = [np.zeros((self.height, self.width, channels), dtype=np.float64) for _ in exposures]
        wsum = [np.zeros((self.height, self.width), dtype=np.float64) for _ in exposures]

        for frame in tqdm(frames, desc="Compositing", leave=False):
            samples, weight = self.sample(frame, rotations[frame.index])
            acc[frame.exposure_index] += samples * weight[..., None]
            wsum[frame.exposure_index] += weight

        panoramas = []
        for a, ws, exposure in zip(acc, wsum, exposures):
            out = np.zeros_like(a, dtype=np.float32)
            covered = ws > 0
            out[covered] = (a[covered] / ws[covered][:, None]).astype(np.float32)
            panoramas.append((out, float(exposure)))
        return panoramas
