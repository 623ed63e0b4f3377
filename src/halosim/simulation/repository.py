# halosim/simulation/repository.py
import logging
from typing import Iterator, List, Tuple, Union

import numpy as np

from halosim.errors import ConfigurationError
from halosim.simulation.crystal_population import (
    POPULATION_ROW_SIZE,
    CrystalPopulation,
    CrystalPopulationPreset,
)

logger = logging.getLogger(__name__)


class CrystalPopulationRepository:
    """
    Ordered, weighted mixture of crystal populations.

    Each entry is a (population, weight) pair with an integer weight >= 1,
    so the total weight never drops to zero. The tracer picks the
    population of each ray with probability weight[i] / sum(weights).
    """

    def __init__(self, populations=None):
        self._crystals: List[CrystalPopulation] = []
        self._weights: List[int] = []
        if populations is None:
            self._add_defaults()
        else:
            for population in populations:
                self.add(population)
            if not self._crystals:
                raise ConfigurationError("A repository needs at least one crystal population")

    def _add_defaults(self):
        for preset in (CrystalPopulationPreset.COLUMN,
                       CrystalPopulationPreset.PLATE,
                       CrystalPopulationPreset.RANDOM):
            self.add(preset)

    def _check_index(self, index: int) -> int:
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            raise TypeError(f"Repository index must be an integer, got {type(index).__name__}")
        if index < 0 or index >= len(self._crystals):
            raise IndexError(f"Crystal population index {index} out of range [0, {len(self._crystals)})")
        return int(index)

    @property
    def count(self) -> int:
        return len(self._crystals)

    def __len__(self) -> int:
        return len(self._crystals)

    def __iter__(self) -> Iterator[Tuple[CrystalPopulation, int]]:
        return iter(zip(self._crystals, self._weights))

    def add(self, population: Union[CrystalPopulation, CrystalPopulationPreset] = CrystalPopulationPreset.RANDOM) -> int:
        """Append a population (or preset) with weight 1 and return its index."""
        if isinstance(population, CrystalPopulationPreset):
            population = CrystalPopulation.preset(population)
        elif isinstance(population, CrystalPopulation):
            population = population.copy()
        else:
            raise TypeError(f"Expected CrystalPopulation or preset, got {type(population).__name__}")
        population.validate()
        self._crystals.append(population)
        self._weights.append(1)
        return len(self._crystals) - 1

    def remove(self, index: int) -> None:
        index = self._check_index(index)
        if len(self._crystals) == 1:
            raise ConfigurationError("Cannot remove the last crystal population")
        del self._crystals[index]
        del self._weights[index]

    def get(self, index: int) -> CrystalPopulation:
        """Mutable reference to the population at `index`."""
        return self._crystals[self._check_index(index)]

    def set(self, index: int, population: CrystalPopulation) -> None:
        """Replace the population at `index`, keeping its weight."""
        index = self._check_index(index)
        self._crystals[index] = population.copy().validate()

    def get_weight(self, index: int) -> int:
        return self._weights[self._check_index(index)]

    def set_weight(self, index: int, weight: int) -> None:
        index = self._check_index(index)
        if isinstance(weight, bool) or not isinstance(weight, (int, np.integer)):
            raise ConfigurationError(f"Weight must be an integer, got {weight!r}")
        if weight < 1:
            raise ConfigurationError(f"Weight must be >= 1, got {weight}")
        self._weights[index] = int(weight)

    def total_weight(self) -> int:
        return sum(self._weights)

    def get_probability(self, index: int) -> float:
        index = self._check_index(index)
        return self._weights[index] / self.total_weight()

    def probabilities(self) -> np.ndarray:
        weights = np.asarray(self._weights, dtype=np.float64)
        return weights / weights.sum()

    def cumulative_weights(self) -> np.ndarray:
        return np.cumsum(np.asarray(self._weights, dtype=np.float64))

    def select(self, u) -> np.ndarray:
        """
        Map uniform variates in [0, total_weight) to entry indices by
        walking the cumulative weights.
        """
        cumulative = self.cumulative_weights()
        indices = np.searchsorted(cumulative, np.asarray(u, dtype=np.float64), side="right")
        # Guard against u == total_weight from float rounding
        return np.minimum(indices, len(cumulative) - 1)

    def population_table(self) -> np.ndarray:
        """Packed (N, POPULATION_ROW_SIZE) float32 array, one row per entry."""
        table = np.empty((len(self._crystals), POPULATION_ROW_SIZE), dtype=np.float32)
        for i, population in enumerate(self._crystals):
            table[i] = population.to_row()
        return table

    def validate(self) -> "CrystalPopulationRepository":
        for population in self._crystals:
            population.validate()
        return self

    def copy(self) -> "CrystalPopulationRepository":
        clone = CrystalPopulationRepository.__new__(CrystalPopulationRepository)
        clone._crystals = [p.copy() for p in self._crystals]
        clone._weights = list(self._weights)
        return clone

    def __repr__(self) -> str:
        return f"CrystalPopulationRepository(count={len(self)}, weights={self._weights})"
