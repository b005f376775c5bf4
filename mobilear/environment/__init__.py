"""Panoramic HDR environment building."""

from .frame import Frame, HDRFrame
from .blur import BlurDetector, BlurScore
from .features import FeatureExtractor
from .graph import MatchGraph, Track, group_matches
from .matching import FeatureMatcher, PairMatch, gyro_consistency
from .optimize import GlobalBundleAdjuster, GlobalBundleResult
from .projection import EquirectProjector
from .builder import EnvironmentBuilder, EnvironmentBuilderException
from .hdr import build_radiance_map

__all__ = [
    "Frame",
    "HDRFrame",
    "BlurDetector",
    "BlurScore",
    "FeatureExtractor",
    "MatchGraph",
    "Track",
    "group_matches",
    "FeatureMatcher",
    "PairMatch",
    "gyro_consistency",
    "GlobalBundleAdjuster",
    "GlobalBundleResult",
    "EquirectProjector",
    "EnvironmentBuilder",
    "EnvironmentBuilderException",
    "build_radiance_map",
]
