"""Cristae density package."""

from cristae_density.config import DEFAULT_CONFIG, CountingConfig, PrepareConfig, ProjectConfig
from cristae_density.regions import Region, RegionCatalog
from cristae_density.results import Measurement, ResultStore
from cristae_density.workflow import analyze, export, open_results, prepare

__all__ = [
    "__version__",
    "DEFAULT_CONFIG",
    "CountingConfig",
    "PrepareConfig",
    "ProjectConfig",
    "Region",
    "RegionCatalog",
    "Measurement",
    "ResultStore",
    "prepare",
    "analyze",
    "export",
    "open_results",
]

__version__ = "1.0.0"
