"""Tests for configuration objects."""

import numpy as np
import pytest

from mobilear.config import DEFAULT_CONFIG, BAMethod, CameraIntrinsics


class TestCameraIntrinsics:
    """Tests for intrinsic parameters."""

    def test_matrix_roundtrip(self):
        """Intrinsics rebuild from their matrix and distortion."""
        cam = CameraIntrinsics(fx=500.0, fy=510.0, cx=320.0, cy=240.0, k1=0.1, p2=-0.01)
        again = CameraIntrinsics.from_matrix(cam.to_matrix(), cam.distortion_coeffs())
        np.testing.assert_allclose(again.to_matrix(), cam.to_matrix())
        np.testing.assert_allclose(again.distortion_coeffs(), cam.distortion_coeffs())

    def test_malformed_matrix(self):
        """Matrices that are not pinhole intrinsics are rejected."""
        with pytest.raises(ValueError):
            CameraIntrinsics.from_matrix(np.eye(2))
        with pytest.raises(ValueError):
            CameraIntrinsics.from_matrix(np.array([[0.0, 0, 1], [0, 1, 1], [0, 0, 1]]))


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        """Defaults match the documented values."""
        assert DEFAULT_CONFIG.markers.dictionary == "DICT_6X6_250"
        assert DEFAULT_CONFIG.tracker.n_relative_poses == 50
        assert DEFAULT_CONFIG.pattern.pattern_size == (4, 11)
        assert DEFAULT_CONFIG.environment.ba_method == BAMethod.RAYS
        assert DEFAULT_CONFIG.sampler.depth == 4
