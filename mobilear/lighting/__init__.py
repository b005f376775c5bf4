"""Light probe sampling of environment maps."""

from .moments import Moments, Region
from .sampler import LightProbeSampler, LightSource, Probe, median_cut, variance_cut, sample

__all__ = [
    "Moments",
    "Region",
    "LightProbeSampler",
    "LightSource",
    "Probe",
    "median_cut",
    "variance_cut",
    "sample",
]
