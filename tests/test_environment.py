"""Tests for panoramic environment building."""

import cv2
import numpy as np
import pytest

from mobilear.config import BAMethod, EnvironmentConfig
from mobilear.environment import (
    BlurDetector,
    EnvironmentBuilder,
    EnvironmentBuilderException,
    EquirectProjector,
    FeatureExtractor,
    FeatureMatcher,
    Frame,
    GlobalBundleAdjuster,
    HDRFrame,
    Track,
    build_radiance_map,
    gyro_consistency,
)
from mobilear.geometry.rotation import rotation_angle


K = np.array([[300.0, 0.0, 160.0], [0.0, 300.0, 120.0], [0.0, 0.0, 1.0]])


def textured(seed=0, shape=(240, 320)):
    rng = np.random.default_rng(seed)
    gray = rng.integers(0, 256, size=shape, dtype=np.uint8)
    gray = cv2.GaussianBlur(gray, (0, 0), 1.0)
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)


def hdr(image, exposure=0.01, R=None):
    return HDRFrame(image=image, K=K.copy(), R=np.eye(3) if R is None else R, exposure=exposure)


def small_config(**kwargs):
    return EnvironmentConfig(width=128, height=64, check_blur=False, **kwargs)


class TestBlurDetector:
    """Tests for wavelet blur detection."""

    def test_sharp_beats_blurred(self):
        """Blurring lowers the share of sharp edges."""
        rng = np.random.default_rng(0)
        sharp = rng.integers(0, 256, size=(256, 256), dtype=np.uint8)
        blurred = cv2.GaussianBlur(sharp, (0, 0), 8.0)
        detector = BlurDetector(35)
        s, b = detector(sharp), detector(blurred)
        assert s.n_edges > 0
        assert s.per > b.per

    def test_flat_image_is_inconclusive(self):
        """An image without edges reports no edges."""
        score = BlurDetector(35)(np.full((64, 64), 128, dtype=np.uint8))
        assert score.n_edges == 0
        assert score.per == 0.0

    def test_small_image_rejected(self):
        """Images smaller than one block cannot be scored."""
        with pytest.raises(ValueError):
            BlurDetector()(np.zeros((8, 8), dtype=np.uint8))


class TestFeatureMatcher:
    """Tests for pairwise matching."""

    def make_frame(self, index, image, R=None):
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        keypoints, descriptors = FeatureExtractor(2000).extract(gray)
        return Frame(
            index=index, batch=index, exposure_index=0, exposure=0.01, image=image,
            keypoints=keypoints, descriptors=descriptors, K=K, R=np.eye(3) if R is None else R
        )

    def test_identical_frames_match(self):
        """A frame matches a copy of itself."""
        image = textured()
        result = FeatureMatcher(small_config()).match_pair(self.make_frame(0, image), self.make_frame(1, image))
        assert result.ok
        assert len(result.matches) >= 25

    def test_rotation_limit(self):
        """Frames rotated beyond the limit are not compared."""
        image = textured()
        R, _ = cv2.Rodrigues(np.array([0.0, np.deg2rad(40.0), 0.0]))
        matcher = FeatureMatcher(small_config())
        result = matcher.match_pair(self.make_frame(0, image), self.make_frame(1, image, R))
        assert result.stage == "rotation"
        assert matcher.match_pair(self.make_frame(0, image), self.make_frame(1, image, R), loop=True).stage != "rotation"

    def test_unrelated_frames_rejected(self):
        """Different textures do not match."""
        matcher = FeatureMatcher(small_config())
        assert matcher.match(self.make_frame(0, textured(1)), self.make_frame(1, textured(2))) is None

    def test_gyro_consistency_zero_for_prediction(self):
        """Points at their predicted position have zero distance."""
        frame = self.make_frame(0, textured())
        pts = np.array([[10.0, 20.0], [160.0, 120.0]])
        d = gyro_consistency(frame, frame, pts, pts, 0.03, 8.0)
        np.testing.assert_allclose(d, 0.0, atol=1e-9)


class TestEnvironmentBuilder:
    """Tests for batch handling and compositing."""

    def test_dark_exposure_rejected(self):
        """A black frame has too few features and leaves the builder unchanged."""
        builder = EnvironmentBuilder(EnvironmentConfig(width=128, height=64))
        black = np.zeros((240, 320, 3), dtype=np.uint8)
        with pytest.raises(EnvironmentBuilderException) as info:
            builder.add_frames([hdr(black, 0.001), hdr(textured(), 0.01)])
        assert info.value.error == EnvironmentBuilderException.Error.NOT_ENOUGH_FEATURES
        assert builder.n_batches == 0
        assert builder.frames == []
        assert builder.exposures is None

    def test_exposure_mismatch(self):
        """Later batches must repeat the first batch's exposures."""
        builder = EnvironmentBuilder(small_config())
        builder.add_frames([hdr(textured(), 0.01)])
        with pytest.raises(ValueError):
            builder.add_frames([hdr(textured(), 0.01), hdr(textured(), 0.02)])
        assert builder.n_batches == 1

    def test_global_matching(self):
        """A repeated view is linked to the previous batch."""
        builder = EnvironmentBuilder(small_config())
        image = textured()
        builder.add_frames([hdr(image)])
        builder.add_frames([hdr(image)])
        assert builder.n_batches == 2
        assert builder.graph.n_edges > 0

    def test_no_global_match(self):
        """An unrelated view is rejected."""
        builder = EnvironmentBuilder(small_config())
        builder.add_frames([hdr(textured(1))])
        with pytest.raises(EnvironmentBuilderException) as info:
            builder.add_frames([hdr(textured(2))])
        assert info.value.error == EnvironmentBuilderException.Error.NO_GLOBAL_MATCHES
        assert len(builder.frames) == 1

    def test_unmatched_exposures_rejected(self):
        """Exposures of one batch showing different views leave the builder unchanged."""
        builder = EnvironmentBuilder(small_config())
        with pytest.raises(EnvironmentBuilderException) as info:
            builder.add_frames([hdr(textured(1), 0.01), hdr(textured(2), 0.02)])
        assert info.value.error == EnvironmentBuilderException.Error.NO_PAIRWISE_MATCHES
        assert builder.frames == []
        assert builder.n_batches == 0
        assert builder.exposures is None

    def test_blurry_frame_rejected(self):
        """A smoothly blurred frame fails the blur check."""
        squares = ((np.indices((240, 320)) // 20).sum(axis=0) % 2 * 255).astype(np.uint8)
        blurred = cv2.GaussianBlur(squares, (0, 0), 5.0)
        builder = EnvironmentBuilder(EnvironmentConfig(width=128, height=64, check_blur=True))
        with pytest.raises(EnvironmentBuilderException) as info:
            builder.add_frames([hdr(cv2.cvtColor(blurred, cv2.COLOR_GRAY2BGR))])
        assert info.value.error == EnvironmentBuilderException.Error.BLURRY
        assert builder.n_batches == 0

    def test_composite(self):
        """Compositing reports every stage and returns one panorama per exposure."""
        builder = EnvironmentBuilder(small_config())
        image = textured()
        builder.add_frames([hdr(image)])
        builder.add_frames([hdr(image)])

        stages = []
        panoramas = builder.composite(stages.append)
        assert stages == list(EnvironmentBuilder.STAGES)
        assert len(panoramas) == 1
        pano, exposure = panoramas[0]
        assert pano.shape == (64, 128, 3)
        assert exposure == pytest.approx(0.01)
        assert pano[32, 64].sum() > 0
        assert pano[32, 0].sum() == 0

        with pytest.raises(RuntimeError):
            builder.add_frames([hdr(image)])
        with pytest.raises(RuntimeError):
            builder.composite()

    def test_composite_empty(self):
        """Nothing to composite is an error."""
        with pytest.raises(RuntimeError):
            EnvironmentBuilder(small_config()).composite()


def rotation(rvec):
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64))
    return R


TRUE_ROTATIONS = [
    np.eye(3),
    rotation([0.0, np.deg2rad(4.0), 0.0]),
    rotation([np.deg2rad(2.0), np.deg2rad(8.0), 0.0]),
]


def panorama_scene(perturbations):
    """Frames at known rotations with exact tracks; gyro rotations are perturbed."""
    us, vs = np.meshgrid(np.linspace(90.0, 230.0, 8), np.linspace(50.0, 190.0, 6))
    rays = np.linalg.inv(K) @ np.stack([us.ravel(), vs.ravel(), np.ones(us.size)])

    tracks = []
    for d in rays.T:
        observations = []
        for i, R in enumerate(TRUE_ROTATIONS):
            p = K @ (R @ d)
            observations.append((i, p[:2] / p[2]))
        tracks.append(Track(observations))

    image = np.zeros((240, 320, 3), dtype=np.uint8)
    frames = [
        Frame(i, i, 0, 0.01, image, np.zeros((0, 2)), np.zeros((0, 32), np.uint8), K, P @ R)
        for i, (R, P) in enumerate(zip(TRUE_ROTATIONS, perturbations))
    ]
    return frames, tracks


class TestGlobalBundleAdjuster:
    """Tests for orientation-only bundle adjustment."""

    @pytest.mark.parametrize("method", list(BAMethod))
    def test_recovers_rotations(self, method):
        """Perturbed gyro rotations are pulled back onto the tracks."""
        perturbations = [
            np.eye(3),
            rotation(np.deg2rad(2.0) * np.array([0.3, 1.0, 0.2]) / np.linalg.norm([0.3, 1.0, 0.2])),
            rotation(np.deg2rad(2.0) * np.array([1.0, -0.5, 0.4]) / np.linalg.norm([1.0, -0.5, 0.4])),
        ]
        frames, tracks = panorama_scene(perturbations)
        for frame, R in zip(frames[1:], TRUE_ROTATIONS[1:]):
            assert rotation_angle(frame.R @ R.T) > np.deg2rad(1.5)

        result = GlobalBundleAdjuster(EnvironmentConfig(ba_method=method)).optimize(frames, tracks)

        assert result.participating == [0, 1, 2]
        np.testing.assert_array_equal(result.rotations[0], frames[0].R)
        for i, R in enumerate(TRUE_ROTATIONS):
            assert rotation_angle(result.rotations[i] @ R.T) < np.deg2rad(0.05)
        assert result.final_cost < result.initial_cost

    def test_frames_without_tracks_keep_gyro(self):
        """Only tracked frames are refined and reported."""
        frames, tracks = panorama_scene([np.eye(3)] * 3)
        tracks = [Track([o for o in t.observations if o[0] != 2]) for t in tracks]
        result = GlobalBundleAdjuster(EnvironmentConfig()).optimize(frames, tracks)
        assert result.participating == [0, 1]
        np.testing.assert_array_equal(result.rotations[2], frames[2].R)


class TestProjection:
    """Tests for equirectangular compositing."""

    def test_rotation_moves_coverage(self):
        """Turning the camera moves its footprint in the panorama."""
        image = np.full((240, 320, 3), 100, dtype=np.uint8)
        frame = Frame(0, 0, 0, 0.01, image, np.zeros((0, 2)), np.zeros((0, 32), np.uint8), K, np.eye(3))
        projector = EquirectProjector(128, 64)
        _, ahead = projector.sample(frame, np.eye(3))
        R, _ = cv2.Rodrigues(np.array([0.0, np.pi / 2, 0.0]))
        _, turned = projector.sample(frame, R)
        assert ahead[32, 64] > 0
        assert turned[32, 64] == 0
        assert turned.sum() > 0


class TestRadianceMap:
    """Tests for exposure merging."""

    def test_requires_two_exposures(self):
        """A single exposure cannot be merged."""
        with pytest.raises(ValueError):
            build_radiance_map([(textured(), 0.01)])

    def test_merge(self):
        """Bracketed exposures merge into a float radiance map."""
        base = textured().astype(np.float32)
        images = [(np.clip(base * s, 0, 255).astype(np.uint8), 0.01 * s) for s in (0.5, 1.0, 2.0)]
        radiance, response = build_radiance_map(images)
        assert radiance.shape == base.shape
        assert radiance.dtype == np.float32
        assert response.shape == (256, 1, 3)
