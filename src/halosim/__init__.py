# halosim/__init__.py
"""Progressive Monte Carlo simulation of ice-crystal halos."""
from halosim.errors import ConfigurationError, EngineStateError, HaloSimError, ResourceAllocationError
from halosim.config import EngineConfig
from halosim.core.distributions import DistributionKind, GaussianDistribution, UniformDistribution
from halosim.simulation.crystal_population import CrystalPopulation, CrystalPopulationPreset
from halosim.simulation.repository import CrystalPopulationRepository
from halosim.simulation.light_source import LightSource
from halosim.camera.camera import Camera
from halosim.renderer.accumulation import ImageView
from halosim.simulation.engine import EngineState, SimulationEngine
from halosim.logging_config import setup_logging

__version__ = "0.1.0"

__all__ = [
    "Camera",
    "ConfigurationError",
    "CrystalPopulation",
    "CrystalPopulationPreset",
    "CrystalPopulationRepository",
    "DistributionKind",
    "EngineConfig",
    "EngineState",
    "EngineStateError",
    "GaussianDistribution",
    "HaloSimError",
    "ImageView",
    "LightSource",
    "ResourceAllocationError",
    "SimulationEngine",
    "UniformDistribution",
    "setup_logging",
]
