"""
ArUco marker tracker.

Localizes the camera against a growing map of square fiducial markers.
The first detected marker fixes the world origin. Newly seen markers
are placed through the current camera pose and refined locally, while
a background thread periodically bundle-adjusts every marker and
logged camera pose.
"""

import threading
import numpy as np
import cv2
from typing import Callable, List, Optional, Tuple

from ..config import CameraIntrinsics, MarkerTrackerConfig
from ..geometry.rotation import (
    IDENTITY,
    matrix_to_quaternion,
    quaternion_conjugate,
    quaternion_multiply,
    quaternion_to_matrix,
)
from .bundle_adjustment import MarkerBundleAdjuster
from .marker_map import Marker, MarkerMap, PoseLog, PoseObservation, marker_grid
from .tracker import TrackingResult


Detection = Tuple[int, np.ndarray]  # (marker id, (4, 2) corners)


class MarkerDetector:
    """
    Detect ArUco markers with OpenCV.
    """

    def __init__(self, dictionary: str = "DICT_6X6_250"):
        """
        Initialize the detector.

        Args:
            dictionary: Name of a predefined cv2.aruco dictionary
        """
        if not hasattr(cv2.aruco, dictionary):
            raise ValueError(f"Unknown ArUco dictionary: {dictionary}")
        self.dictionary = cv2.aruco.getPredefinedDictionary(getattr(cv2.aruco, dictionary))
        self.detector = cv2.aruco.ArucoDetector(self.dictionary, cv2.aruco.DetectorParameters())

    def __call__(self, frame: np.ndarray) -> List[Detection]:
        if frame.ndim == 3:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        corners, ids, _ = self.detector.detectMarkers(frame)
        if ids is None:
            return []
        return [
            (int(i), np.asarray(c, dtype=np.float64).reshape(4, 2))
            for i, c in zip(ids.ravel(), corners)
        ]


def _pose_from_pnp(rvec: np.ndarray, tvec: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Convert an OpenCV solution to (t, q), rejecting degenerate ones."""
    rvec = np.asarray(rvec, dtype=np.float64).ravel()
    tvec = np.asarray(tvec, dtype=np.float64).ravel()
    if not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))) or tvec[2] <= 0:
        return None
    R, _ = cv2.Rodrigues(rvec)
    return tvec, matrix_to_quaternion(R)


class ArUcoTracker:
    """
    Marker tracking backend with background bundle adjustment.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        config: Optional[MarkerTrackerConfig] = None,
        detector: Optional[Callable[[np.ndarray], List[Detection]]] = None
    ):
        """
        Initialize the tracker.

        Args:
            intrinsics: Calibrated camera
            config: Tracker parameters
            detector: Marker detector, defaults to MarkerDetector
        """
        self.config = config or MarkerTrackerConfig()
        self.K = intrinsics.to_matrix()
        self.dist = intrinsics.distortion_coeffs()
        self.detector = detector or MarkerDetector(self.config.dictionary)
        self.grid = marker_grid(self.config.marker_size)

        self.map = MarkerMap()
        self.log = PoseLog()

        self.adjuster = MarkerBundleAdjuster(
            self.K,
            marker_size=self.config.marker_size,
            max_iterations=self.config.ba_max_iterations,
            tolerance=self.config.ba_tolerance,
            huber_scale=self.config.huber_scale
        )
        self.local_adjuster = MarkerBundleAdjuster(
            self.K,
            marker_size=self.config.marker_size,
            max_iterations=self.config.local_max_iterations,
            tolerance=self.config.ba_tolerance,
            huber_scale=self.config.huber_scale
        )

        self._cond = threading.Condition()
        self._pending = 0
        self._stop = False
        self._thread = None
        if self.config.background:
            self._thread = threading.Thread(
                target=self._run, name="marker-bundle-adjustment"
            )
            self._thread.start()

    @property
    def reference_id(self) -> Optional[int]:
        return self.map.reference_id

    def markers(self):
        """Snapshot of the marker map."""
        return self.map.snapshot()

    def poses(self) -> List[PoseObservation]:
        """Snapshot of the pose log."""
        return self.log.snapshot()

    def _undistort(self, corners: np.ndarray) -> np.ndarray:
        pts = cv2.undistortPoints(corners.reshape(-1, 1, 2), self.K, self.dist, P=self.K)
        return pts.reshape(-1, 2).astype(np.float64)

    def _solve_square(self, corners: np.ndarray, world: np.ndarray) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Plain P3P on the 4 corners of one marker."""
        ok, rvec, tvec = cv2.solvePnP(
            world.astype(np.float64), corners.astype(np.float64), self.K, None,
            flags=cv2.SOLVEPNP_P3P
        )
        if not ok:
            return None
        return _pose_from_pnp(rvec, tvec)

    def _solve_ransac(
        self,
        known: List[Detection]
    ) -> Tuple[Optional[Tuple[np.ndarray, np.ndarray]], List[Detection]]:
        """RANSAC EPnP over all known markers. Returns the pose and inlier markers."""
        world = np.concatenate([self.map.get(i).world_corners(self.grid) for i, _ in known])
        image = np.concatenate([c for _, c in known])

        ok, rvec, tvec, inliers = cv2.solvePnPRansac(
            world, image, self.K, None,
            iterationsCount=self.config.ransac_iterations,
            reprojectionError=self.config.ransac_reprojection_error,
            confidence=self.config.ransac_confidence,
            flags=cv2.SOLVEPNP_EPNP
        )
        if not ok or inliers is None or len(inliers) < 4:
            return None, []

        # A marker is an inlier if at least half of its corners are
        counts = np.bincount(inliers.ravel() // 4, minlength=len(known))
        return _pose_from_pnp(rvec, tvec), [d for d, n in zip(known, counts) if n >= 2]

    def track_frame(self, frame: np.ndarray, dt: float) -> TrackingResult:
        """
        Estimate the camera pose from a frame.

        Args:
            frame: Camera image
            dt: Time since the previous frame

        Returns:
            TrackingResult with the camera-to-world orientation and position
        """
        detections = [(i, self._undistort(c)) for i, c in self.detector(frame)]
        if not detections:
            return TrackingResult(tracked=False)

        # The first marker becomes the reference once a pose is found with it
        reference = None
        if self.map.reference_id is None:
            reference = Marker(detections[0][0], np.zeros(3), IDENTITY.copy())
            known, unknown = detections[:1], detections[1:]
        else:
            known = [d for d in detections if d[0] in self.map]
            unknown = [d for d in detections if d[0] not in self.map]
        if not known:
            return TrackingResult(tracked=False)

        if len(known) == 1:
            marker_id, corners = known[0]
            marker = reference if reference is not None else self.map.get(marker_id)
            pose = self._solve_square(corners, marker.world_corners(self.grid))
            inliers = known
        else:
            pose, inliers = self._solve_ransac(known)
        if pose is None:
            return TrackingResult(tracked=False)
        if reference is not None:
            self.map.insert(reference)
        t_cw, q_cw = pose
        R_cw = quaternion_to_matrix(q_cw)

        # Place new markers through the camera pose
        new_markers = {}
        for marker_id, corners in unknown:
            rel = self._solve_square(corners, self.grid)
            if rel is None:
                continue
            t_mc, q_mc = rel
            new_markers[marker_id] = Marker(
                marker_id,
                R_cw.T @ (t_mc - t_cw),
                quaternion_multiply(quaternion_conjugate(q_cw), q_mc)
            )

        observations = list(inliers)
        if new_markers:
            new_obs = [(i, c) for i, c in unknown if i in new_markers]
            for marker in new_markers.values():
                self.map.insert(marker)
            refined = self.local_adjuster.optimize(
                new_markers,
                [PoseObservation(t_cw, q_cw, new_obs)],
                reference_id=None,
                fix_poses=True
            )
            self.map.update(refined.markers)
            observations.extend(new_obs)

        center = -R_cw.T @ t_cw
        novel = bool(new_markers) or self.log.is_novel(
            center, q_cw,
            self.config.min_pose_distance,
            np.deg2rad(self.config.min_pose_angle)
        )
        if novel:
            self.log.append(PoseObservation(t_cw, q_cw, observations))
            with self._cond:
                self._pending += 1
                self._cond.notify()

        return TrackingResult(tracked=True, q=quaternion_conjugate(q_cw), t=center)

    def bundle_adjust(self) -> int:
        """
        Refine every marker and logged pose.

        Snapshots the map and the log under their locks, solves without
        holding any lock and writes the results back.

        Returns:
            Number of poses processed
        """
        markers = self.map.snapshot()
        poses = self.log.snapshot()
        reference = self.map.reference_id
        if reference is None or not poses:
            return 0

        result = self.adjuster.optimize(markers, poses, reference)
        if self.config.verbose:
            print(f"    Bundle adjustment: {result.n_observations} observations, "
                  f"error {result.initial_error:.3f} -> {result.final_error:.3f}px")
        if not result.converged:
            print(f"    Bundle adjustment stopped after {result.n_iterations} evaluations "
                  f"without converging (error {result.final_error:.3f}px)")

        self.map.update(result.markers)
        self.log.update(result.poses)
        return len(poses)

    def _run(self):
        while True:
            with self._cond:
                while not self._stop and self._pending == 0:
                    self._cond.wait()
                if self._stop:
                    return
                self._pending = 0
            self.bundle_adjust()

    def close(self):
        """Stop the background thread and wait for it to exit."""
        with self._cond:
            self._stop = True
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
