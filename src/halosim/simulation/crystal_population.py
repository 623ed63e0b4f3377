# halosim/simulation/crystal_population.py
from dataclasses import astuple, dataclass, fields
from enum import Enum

import numpy as np

from halosim.core.distributions import DistributionKind, GaussianDistribution, make_distribution
from halosim.errors import ConfigurationError

# Number of floats in a packed population row, see CrystalPopulation.to_row()
POPULATION_ROW_SIZE = 8


class CrystalPopulationPreset(Enum):
    COLUMN = "column"
    PLATE = "plate"
    RANDOM = "random"


@dataclass
class CrystalPopulation:
    """
    One statistically homogeneous family of hexagonal ice crystals.

    The crystal is a hexagonal prism whose c-axis length over its
    across-flats width is the c/a ratio: long columns have ratios above
    one, thin plates below one.

    Polar angle is the tilt of the c-axis away from the zenith. A Uniform
    polar distribution means the c-axis points anywhere on the sphere.
    Rotation is the spin of the crystal around its own c-axis; Uniform
    means any spin in [0, 360). Average/std are only read for Gaussian
    selectors. All angles are in degrees.
    """
    ca_ratio_average: float = 1.0
    ca_ratio_std: float = 0.0

    polar_angle_distribution: DistributionKind = DistributionKind.UNIFORM
    polar_angle_average: float = 0.0
    polar_angle_std: float = 0.0

    rotation_distribution: DistributionKind = DistributionKind.UNIFORM
    rotation_average: float = 0.0
    rotation_std: float = 0.0

    @classmethod
    def preset(cls, preset: CrystalPopulationPreset) -> "CrystalPopulation":
        if preset == CrystalPopulationPreset.COLUMN:
            # Horizontal c-axis, free spin: 22 degree halo and tangent arcs
            return cls(ca_ratio_average=3.0, ca_ratio_std=0.0,
                       polar_angle_distribution=DistributionKind.GAUSSIAN,
                       polar_angle_average=90.0, polar_angle_std=1.0,
                       rotation_distribution=DistributionKind.UNIFORM)
        if preset == CrystalPopulationPreset.PLATE:
            # Vertical c-axis: parhelia and the circumzenithal arc
            return cls(ca_ratio_average=0.3, ca_ratio_std=0.0,
                       polar_angle_distribution=DistributionKind.GAUSSIAN,
                       polar_angle_average=0.0, polar_angle_std=1.0,
                       rotation_distribution=DistributionKind.UNIFORM)
        if preset == CrystalPopulationPreset.RANDOM:
            return cls(ca_ratio_average=1.0, ca_ratio_std=0.0,
                       polar_angle_distribution=DistributionKind.UNIFORM,
                       rotation_distribution=DistributionKind.UNIFORM)
        raise ConfigurationError(f"Unknown crystal population preset: {preset!r}")

    def validate(self) -> "CrystalPopulation":
        """Reject degenerate parameters before they reach the sampling loop."""
        for field in fields(self):
            value = getattr(self, field.name)
            if not np.isfinite(float(value)):
                raise ConfigurationError(f"{field.name} must be finite, got {value!r}")
        if self.ca_ratio_average <= 0:
            raise ConfigurationError(f"C/A ratio average must be positive, got {self.ca_ratio_average}")
        for name in ("ca_ratio_std", "polar_angle_std", "rotation_std"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")
        try:
            self.polar_angle_distribution = DistributionKind(int(self.polar_angle_distribution))
            self.rotation_distribution = DistributionKind(int(self.rotation_distribution))
        except ValueError as e:
            raise ConfigurationError(f"Unknown distribution selector: {e}") from e
        return self

    def ca_ratio(self) -> GaussianDistribution:
        return GaussianDistribution(self.ca_ratio_average, self.ca_ratio_std)

    def polar_angle(self):
        # Uniform polar angles are area-uniform over the whole sphere
        return make_distribution(self.polar_angle_distribution, self.polar_angle_average,
                                 self.polar_angle_std, bounds=(0.0, 180.0))

    def rotation(self):
        return make_distribution(self.rotation_distribution, self.rotation_average,
                                 self.rotation_std, bounds=(0.0, 360.0))

    def is_degenerate(self) -> bool:
        """True when every crystal drawn from this population has the same shape and tilt."""
        return (self.ca_ratio_std == 0
                and self.polar_angle_distribution == DistributionKind.GAUSSIAN
                and self.polar_angle_std == 0)

    def to_row(self) -> np.ndarray:
        """
        Pack into the float row consumed by the tracers:
        [ca_avg, ca_std, polar_kind, polar_avg, polar_std, rot_kind, rot_avg, rot_std]
        """
        return np.array(astuple(self), dtype=np.float32)

    def copy(self) -> "CrystalPopulation":
        return CrystalPopulation(*astuple(self))
