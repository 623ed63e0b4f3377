import numpy as np
import pytest

from halosim.core.distributions import DistributionKind, GaussianDistribution, UniformDistribution
from halosim.errors import ConfigurationError
from halosim.renderer.crystal import sample_crystals
from halosim.simulation.crystal_population import (
    POPULATION_ROW_SIZE,
    CrystalPopulation,
    CrystalPopulationPreset,
)


class TestPresets:
    def test_column_has_horizontal_axis(self):
        column = CrystalPopulation.preset(CrystalPopulationPreset.COLUMN)
        assert column.ca_ratio_average > 1.0
        assert column.polar_angle_distribution == DistributionKind.GAUSSIAN
        assert column.polar_angle_average == 90.0

    def test_plate_has_vertical_axis(self):
        plate = CrystalPopulation.preset(CrystalPopulationPreset.PLATE)
        assert plate.ca_ratio_average < 1.0
        assert plate.polar_angle_distribution == DistributionKind.GAUSSIAN
        assert plate.polar_angle_average == 0.0

    def test_random_is_uniform(self):
        random = CrystalPopulation.preset(CrystalPopulationPreset.RANDOM)
        assert random.polar_angle_distribution == DistributionKind.UNIFORM
        assert random.rotation_distribution == DistributionKind.UNIFORM

    def test_presets_are_fresh_objects(self):
        a = CrystalPopulation.preset(CrystalPopulationPreset.COLUMN)
        b = CrystalPopulation.preset(CrystalPopulationPreset.COLUMN)
        a.ca_ratio_average = 9.0
        assert b.ca_ratio_average == 3.0


class TestValidation:
    @pytest.mark.parametrize("field", ["ca_ratio_std", "polar_angle_std", "rotation_std"])
    def test_negative_std_rejected(self, field):
        population = CrystalPopulation(**{field: -1.0})
        with pytest.raises(ConfigurationError):
            population.validate()

    def test_non_positive_ca_rejected(self):
        with pytest.raises(ConfigurationError):
            CrystalPopulation(ca_ratio_average=0.0).validate()

    def test_unknown_selector_rejected(self):
        with pytest.raises(ConfigurationError):
            CrystalPopulation(polar_angle_distribution=5).validate()

    def test_integer_selectors_are_normalised(self):
        population = CrystalPopulation(polar_angle_distribution=1, rotation_distribution=0).validate()
        assert population.polar_angle_distribution is DistributionKind.GAUSSIAN
        assert population.rotation_distribution is DistributionKind.UNIFORM

    def test_nan_rejected(self):
        with pytest.raises(ConfigurationError):
            CrystalPopulation(rotation_average=float("nan")).validate()


class TestDistributions:
    def test_polar_uniform_spans_sphere(self):
        assert CrystalPopulation().polar_angle() == UniformDistribution(0.0, 180.0)

    def test_rotation_gaussian(self):
        population = CrystalPopulation(rotation_distribution=DistributionKind.GAUSSIAN,
                                       rotation_average=30.0, rotation_std=2.0)
        assert population.rotation() == GaussianDistribution(30.0, 2.0)

    def test_to_row_layout(self):
        row = CrystalPopulation.preset(CrystalPopulationPreset.COLUMN).to_row()
        assert row.shape == (POPULATION_ROW_SIZE,)
        assert row.dtype == np.float32
        assert row[0] == 3.0
        assert row[2] == 1.0
        assert row[3] == 90.0

    def test_copy_is_independent(self):
        original = CrystalPopulation(ca_ratio_average=2.0)
        clone = original.copy()
        clone.ca_ratio_average = 5.0
        assert original.ca_ratio_average == 2.0
        assert clone == CrystalPopulation(ca_ratio_average=5.0)


class TestSampling:
    def test_degenerate_population_draws_identical_crystals(self, rng):
        population = CrystalPopulation(ca_ratio_average=2.5, ca_ratio_std=0.0,
                                       polar_angle_distribution=DistributionKind.GAUSSIAN,
                                       polar_angle_average=40.0, polar_angle_std=0.0,
                                       rotation_distribution=DistributionKind.GAUSSIAN,
                                       rotation_average=15.0, rotation_std=0.0)
        assert population.is_degenerate()
        ca, polar, rotation = sample_crystals(population, rng, 1000)
        assert np.all(ca == 2.5)
        assert np.all(polar == 40.0)
        assert np.all(rotation == 15.0)

    def test_uniform_polar_is_isotropic(self, rng):
        _, polar, _ = sample_crystals(CrystalPopulation(), rng, 200000)
        cos_polar = np.cos(np.radians(polar))
        counts, _ = np.histogram(cos_polar, bins=10, range=(-1.0, 1.0))
        assert counts.min() > 0.9 * counts.mean()
        assert counts.max() < 1.1 * counts.mean()

    def test_ca_ratio_stays_positive(self, rng):
        population = CrystalPopulation(ca_ratio_average=0.1, ca_ratio_std=1.0)
        ca, _, _ = sample_crystals(population, rng, 10000)
        assert ca.min() > 0.0

    def test_uniform_rotation_covers_full_turn(self, rng):
        _, _, rotation = sample_crystals(CrystalPopulation(), rng, 10000)
        assert rotation.min() >= 0.0
        assert rotation.max() < 360.0
        assert rotation.max() - rotation.min() > 350.0
