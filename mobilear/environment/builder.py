"""
Panoramic environment builder.

Accumulates batches of bracketed exposures captured from one position,
links them through robust feature matches and finally composites one
equirectangular panorama per exposure level.
"""

import numpy as np
import cv2
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config import CameraIntrinsics, EnvironmentConfig
from .blur import BlurDetector
from .features import FeatureExtractor
from .frame import Frame, HDRFrame
from .graph import MatchGraph, group_matches
from .matching import FeatureMatcher
from .optimize import GlobalBundleAdjuster
from .projection import EquirectProjector


class EnvironmentBuilderException(Exception):
    """Rejection of a batch of frames."""

    class Error(Enum):
        BLURRY = auto()
        NOT_ENOUGH_FEATURES = auto()
        NO_PAIRWISE_MATCHES = auto()
        NO_GLOBAL_MATCHES = auto()

    def __init__(self, error: "EnvironmentBuilderException.Error", message: str = ""):
        super().__init__(f"{error.name}: {message}" if message else error.name)
        self.error = error


ProgressCallback = Callable[[str], None]


class EnvironmentBuilder:
    """
    Builds HDR environment maps from gyroscope-tagged frames.
    """

    STAGES = ("Match Graph Optimization", "Bundle Adjustment", "Compositing")

    def __init__(
        self,
        config: Optional[EnvironmentConfig] = None,
        intrinsics: Optional[CameraIntrinsics] = None
    ):
        """
        Initialize the builder.

        Args:
            config: Builder parameters
            intrinsics: Calibrated camera; its distortion is removed from
                every frame when config.undistort is set
        """
        self.config = config or EnvironmentConfig()
        self.intrinsics = intrinsics

        self.blur_detector = BlurDetector(self.config.blur_edge_threshold)
        self.extractor = FeatureExtractor(self.config.max_features)
        self.matcher = FeatureMatcher(self.config)
        self.adjuster = GlobalBundleAdjuster(self.config)
        self.projector = EquirectProjector(self.config.width, self.config.height)

        self._frames: List[Frame] = []
        self._exposures: Optional[List[float]] = None
        self._graph = MatchGraph()
        self._n_batches = 0
        self._closed = False
        self._undistort_maps: Dict[Tuple[int, int], Tuple[np.ndarray, np.ndarray]] = {}

    @property
    def frames(self) -> List[Frame]:
        return list(self._frames)

    @property
    def exposures(self) -> Optional[List[float]]:
        return None if self._exposures is None else list(self._exposures)

    @property
    def graph(self) -> MatchGraph:
        return self._graph

    @property
    def n_batches(self) -> int:
        return self._n_batches

    def _check_exposures(self, exposures: List[float]):
        if self._exposures is None:
            return
        tol = self.config.exposure_tolerance
        if len(exposures) != len(self._exposures) or any(
            abs(a - b) > tol for a, b in zip(exposures, self._exposures)
        ):
            raise ValueError(
                f"Exposure sequence {exposures} does not match the session's {self._exposures}"
            )

    def _undistort(self, image: np.ndarray, K: np.ndarray) -> np.ndarray:
        h, w = image.shape[:2]
        key = (w, h)
        if key not in self._undistort_maps:
            self._undistort_maps[key] = cv2.initUndistortRectifyMap(
                K, self.intrinsics.distortion_coeffs(), None, K, (w, h), cv2.CV_16SC2
            )
        map1, map2 = self._undistort_maps[key]
        return cv2.remap(image, map1, map2, cv2.INTER_LINEAR)

    def _prepare(self, raw: HDRFrame, index: int, batch: int, exposure_index: int) -> Frame:
        """Undistort, check and extract features from one frame."""
        image = np.asarray(raw.image)
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected a BGR image, got shape {image.shape}")
        K = CameraIntrinsics.from_matrix(raw.K).to_matrix()
        R = np.asarray(raw.R, dtype=np.float64)
        if R.shape != (3, 3):
            raise ValueError(f"Expected a 3x3 rotation, got shape {R.shape}")

        if self.config.undistort and self.intrinsics is not None:
            image = self._undistort(image, K)
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        if self.config.check_blur:
            score = self.blur_detector(gray)
            if score.n_edges > 0 and score.per < self.config.min_blur_threshold:
                raise EnvironmentBuilderException(
                    EnvironmentBuilderException.Error.BLURRY,
                    f"frame {exposure_index} has {score.per:.3f} sharp edges"
                )

        keypoints, descriptors = self.extractor.extract(gray)
        if len(keypoints) < self.config.min_features:
            raise EnvironmentBuilderException(
                EnvironmentBuilderException.Error.NOT_ENOUGH_FEATURES,
                f"frame {exposure_index} has {len(keypoints)} features"
            )

        return Frame(
            index=index,
            batch=batch,
            exposure_index=exposure_index,
            exposure=float(raw.exposure),
            image=image,
            keypoints=keypoints,
            descriptors=descriptors,
            K=K,
            R=R
        )

    def _in_loop_window(self, frame: Frame) -> bool:
        return frame.batch < self.config.loop_window

    def _global_candidates(self, frame: Frame) -> List[Frame]:
        """Committed frames of the same exposure, recent or from the session start."""
        first_recent = self._n_batches - self.config.global_window
        return [
            f for f in self._frames
            if f.exposure_index == frame.exposure_index
            and (f.batch >= first_recent or self._in_loop_window(f))
        ]

    def add_frames(self, batch: Sequence[HDRFrame]):
        """
        Add a batch of frames captured at the same time.

        The batch is committed only if every check passes; on failure the
        builder is left unchanged.

        Args:
            batch: One frame per exposure level

        Raises:
            EnvironmentBuilderException: If the batch is rejected
            ValueError: If the exposures do not match earlier batches
            RuntimeError: If the builder was already composited
        """
        if self._closed:
            raise RuntimeError("Environment was already composited")
        if len(batch) == 0:
            raise ValueError("Empty batch")

        exposures = [float(f.exposure) for f in batch]
        self._check_exposures(exposures)

        base = len(self._frames)
        batch_index = self._n_batches
        frames = [
            self._prepare(raw, base + i, batch_index, i)
            for i, raw in enumerate(batch)
        ]

        graph = MatchGraph()
        for i in range(len(frames)):
            for j in range(i + 1, len(frames)):
                local = self.matcher.match(frames[i], frames[j])
                if local is None:
                    raise EnvironmentBuilderException(
                        EnvironmentBuilderException.Error.NO_PAIRWISE_MATCHES,
                        f"exposures {i} and {j} do not match"
                    )
                graph.merge(local)

        if self._frames:
            required = 1 if self._n_batches < self.config.bootstrap_batches else self.config.min_global_pairs
            for frame in frames:
                pairs = 0
                for other in self._global_candidates(frame):
                    local = self.matcher.match(other, frame, loop=self._in_loop_window(other))
                    if local is not None:
                        pairs += 1
                        graph.merge(local)
                if pairs < required:
                    raise EnvironmentBuilderException(
                        EnvironmentBuilderException.Error.NO_GLOBAL_MATCHES,
                        f"exposure {frame.exposure_index} matched {pairs} frames, {required} required"
                    )

        self._frames.extend(frames)
        self._graph.merge(graph)
        if self._exposures is None:
            self._exposures = exposures
        self._n_batches += 1
        print(f"    Batch {batch_index}: {len(frames)} frames, {graph.n_edges} matches, "
              f"{len(self._graph)} graph nodes")

    def composite(self, progress: Optional[ProgressCallback] = None) -> List[Tuple[np.ndarray, float]]:
        """
        Build the panoramas.

        Args:
            progress: Called with the name of each stage as it starts

        Returns:
            One (equirectangular image, exposure) pair per exposure level

        Raises:
            RuntimeError: If no frames were added or the builder was already composited
        """
        if self._closed:
            raise RuntimeError("Environment was already composited")
        if not self._frames:
            raise RuntimeError("No frames to composite")

        def notify(stage: str):
            if progress is not None:
                progress(stage)

        notify(self.STAGES[0])
        keypoints = {f.index: f.keypoints for f in self._frames}
        tracks = group_matches(self._graph, keypoints, self.config.variance_threshold)
        print(f"    {len(tracks)} tracks from {len(self._graph)} matched keypoints")

        notify(self.STAGES[1])
        result = self.adjuster.optimize(self._frames, tracks)
        print(f"    Bundle adjustment: cost {result.initial_cost:.4g} -> {result.final_cost:.4g}, "
              f"{len(result.participating)}/{len(self._frames)} frames")

        notify(self.STAGES[2])
        participating = set(result.participating)
        frames = [f for f in self._frames if f.index in participating]
        panoramas = self.projector.project(frames, result.rotations, self._exposures)

        self._closed = True
        return panoramas
