"""
Radiance map recovery from bracketed exposures.
"""

import numpy as np
import cv2
from typing import Sequence, Tuple


def build_radiance_map(
    images: Sequence[Tuple[np.ndarray, float]],
    samples: int = 70,
    smoothness: float = 50.0
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Merge exposures with Debevec's response recovery.

    Float inputs, such as composited panoramas, are clipped to [0, 255]
    and quantized first.

    Args:
        images: (image, exposure time) pairs, BGR with a common shape
        samples: Number of pixel locations used to fit the response
        smoothness: Weight of the response curve smoothness term

    Returns:
        radiance: (H, W, 3) float32 radiance map
        response: (256, 1, 3) recovered camera response
    """
    if len(images) < 2:
        raise ValueError("At least two exposures are required")
    shape = images[0][0].shape
    if any(img.shape != shape for img, _ in images):
        raise ValueError("All exposures must share the same shape")
    if len(shape) != 3 or shape[2] != 3:
        raise ValueError(f"Expected BGR images, got shape {shape}")

    ldr = [
        img if img.dtype == np.uint8 else np.clip(img, 0, 255).astype(np.uint8)
        for img, _ in images
    ]
    times = np.array([t for _, t in images], dtype=np.float32)

    response = cv2.createCalibrateDebevec(samples=samples, lambda_=smoothness).process(ldr, times)
    radiance = cv2.createMergeDebevec().process(ldr, times, response)
    return radiance, response
