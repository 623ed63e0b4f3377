# halosim/core/distributions.py
"""
Scalar distributions used to describe crystal populations.

A distribution is a tagged variant: either UniformDistribution(minimum,
maximum) or GaussianDistribution(mean, std). The integer values of
DistributionKind match the selector surface of a crystal population
(0 = Uniform, 1 = Gaussian).
"""
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Optional, Tuple, Union

import numpy as np

from halosim.errors import ConfigurationError


class DistributionKind(IntEnum):
    UNIFORM = 0
    GAUSSIAN = 1


@dataclass(frozen=True)
class UniformDistribution:
    minimum: float
    maximum: float

    kind: ClassVar[DistributionKind] = DistributionKind.UNIFORM

    def __post_init__(self):
        if not (math.isfinite(self.minimum) and math.isfinite(self.maximum)):
            raise ConfigurationError("Uniform bounds must be finite")
        if self.maximum < self.minimum:
            raise ConfigurationError(
                f"Uniform bounds are reversed: [{self.minimum}, {self.maximum}]"
            )

    def sample(self, rng: np.random.Generator, size=None):
        return rng.uniform(self.minimum, self.maximum, size)


@dataclass(frozen=True)
class GaussianDistribution:
    mean: float
    std: float

    kind: ClassVar[DistributionKind] = DistributionKind.GAUSSIAN

    def __post_init__(self):
        if not (math.isfinite(self.mean) and math.isfinite(self.std)):
            raise ConfigurationError("Gaussian parameters must be finite")
        if self.std < 0:
            raise ConfigurationError(f"Gaussian std must be non-negative, got {self.std}")

    def sample(self, rng: np.random.Generator, size=None):
        return rng.normal(self.mean, self.std, size)


Distribution = Union[UniformDistribution, GaussianDistribution]


def make_distribution(kind, average: float, std: float,
                      bounds: Optional[Tuple[float, float]] = None) -> Distribution:
    """
    Build a distribution from the flat (kind, average, std) surface.

    Uniform draws come from `bounds` when the call site supplies them and
    from [average - std, average + std] otherwise.
    """
    try:
        kind = DistributionKind(int(kind))
    except ValueError as e:
        raise ConfigurationError(f"Unknown distribution kind: {kind!r}") from e

    if std < 0:
        raise ConfigurationError(f"Standard deviation must be non-negative, got {std}")

    if kind == DistributionKind.GAUSSIAN:
        return GaussianDistribution(average, std)
    if bounds is not None:
        return UniformDistribution(bounds[0], bounds[1])
    return UniformDistribution(average - std, average + std)


def wrap_degrees(values):
    """Wrap angles into [0, 360)."""
    return np.mod(values, 360.0)


def sample_angle(distribution: Distribution, rng: np.random.Generator, size=None):
    """Draw angles in degrees, wrapped into [0, 360)."""
    return wrap_degrees(distribution.sample(rng, size))


def sample_positive(distribution: Distribution, rng: np.random.Generator, size=None,
                    minimum: float = 1e-3):
    """Draw values truncated from below at `minimum` (used for aspect ratios)."""
    return np.maximum(distribution.sample(rng, size), minimum)


def default_rng(seed: Optional[int] = None) -> np.random.Generator:
    """PCG64 generator; one per tracer, never shared between threads."""
    return np.random.default_rng(seed)
