"""The three user-facing operations: prepare, analyze and export.

``prepare`` and ``analyze`` validate their configuration before touching any
region; everything after that point is resumable from the files under the
output root.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np

from cristae_density.artifacts import ArtifactStore
from cristae_density.batch import BatchPreparer, BatchReport
from cristae_density.config import DEFAULT_CONFIG, ProjectConfig, save_config
from cristae_density.errors import ConfigurationError
from cristae_density.io import load_plane
from cristae_density.jobs import CancelToken
from cristae_density.logger import detach_handler, get_logger, log_to_file
from cristae_density.regions import RegionCatalog, load_catalog
from cristae_density.results import ResultStore
from cristae_density.segmentation import ClientFactory, ModelClient
from cristae_density.session import AnalysisReport, InteractiveSession, Input, Output, analyze_regions

LOGGER = get_logger(__name__)

__all__ = ["prepare", "analyze", "export", "open_results"]


def _load_source(source: Union[Path, str, np.ndarray]) -> np.ndarray:
    if isinstance(source, np.ndarray):
        return source
    path = Path(source)
    if not path.is_file():
        raise ConfigurationError(f"Source image not found: {path}")
    return load_plane(path)


def _load_regions(catalog: Union[Path, str, RegionCatalog]) -> RegionCatalog:
    if isinstance(catalog, RegionCatalog):
        return catalog
    return load_catalog(Path(catalog))


def prepare(
    source_image: Union[Path, str, np.ndarray],
    catalog: Union[Path, str, RegionCatalog],
    model_path: Path,
    output_root: Path,
    config: ProjectConfig = DEFAULT_CONFIG,
    *,
    client_factory: Optional[ClientFactory] = None,
    progress: Optional[Callable[[int, str], None]] = None,
    cancel_token: Optional[CancelToken] = None,
    log_file: Optional[str] = None,
) -> BatchReport:
    """Crop, segment and store every region that is not already complete.

    Parameters
    ----------
    source_image : path or numpy.ndarray
        Source TIFF (first plane is used) or an already loaded 2D array.
    catalog : path or RegionCatalog
        Region archive or catalog instance.
    model_path : pathlib.Path
        Model artifact handed to every new segmentation client.
    output_root : pathlib.Path
        Root of the artifact layout; created if needed.
    config : ProjectConfig
        Padding, retry and timeout settings come from ``config.prepare``.
    client_factory : callable, optional
        Builds a fresh client per attempt; defaults to ``ModelClient``.
    log_file : str, optional
        File name under ``output_root`` that mirrors the run's log. It is
        opened only after every configuration check has passed.

    Raises
    ------
    ConfigurationError
        Raised before anything is written under ``output_root``.
    """
    config.validate()
    regions = _load_regions(catalog)
    image = _load_source(source_image)
    model_path = Path(model_path)
    store = ArtifactStore(Path(output_root))
    preparer = BatchPreparer(
        client_factory or ModelClient,
        config.prepare,
        progress=progress,
        cancel_token=cancel_token,
    )
    preparer.check_configuration(image, regions, model_path, store)
    handler = log_to_file(store.root / log_file) if log_file else None
    try:
        report = preparer.prepare(image, regions, model_path, store)
        save_config(store.config_path, config)
    finally:
        detach_handler(handler)
    return report


def open_results(output_root: Path) -> ResultStore:
    """Load the autosaved results table under ``output_root``."""
    return ResultStore.load(ArtifactStore(Path(output_root)).results_path)


def analyze(
    output_root: Path,
    ui_input: Input,
    ui_output: Output,
    config: ProjectConfig = DEFAULT_CONFIG,
    start_index: Optional[int] = None,
    *,
    progress: Optional[Callable[[int, str], None]] = None,
) -> AnalysisReport:
    """Run interactive counting over the prepared regions.

    Raises
    ------
    ConfigurationError
        If the output root or its region catalog backup is missing or empty.
    """
    config.validate()
    store = ArtifactStore(Path(output_root))
    if not store.root.is_dir():
        raise ConfigurationError(f"Output root not found: {store.root}")
    if not store.catalog_path.is_file():
        raise ConfigurationError(
            f"No region catalog backup in {store.root}",
            suggestions=["Run prepare first."],
        )
    regions = load_catalog(store.catalog_path)
    if len(regions) == 0:
        raise ConfigurationError("Region catalog is empty.")
    results = ResultStore.load(store.results_path)
    LOGGER.info("Loaded %d existing measurements from %s", len(results), store.results_path)
    session = InteractiveSession(ui_input, ui_output, config.counting)
    report = analyze_regions(regions, store, results, session, start_index=start_index, progress=progress)
    results.persist()
    return report


def export(output_root: Path, destination: Path) -> Path:
    """Copy the autosaved results table to ``destination``."""
    store = ArtifactStore(Path(output_root))
    if not store.results_path.is_file():
        raise ConfigurationError(f"No results table in {store.root}")
    return ResultStore.load(store.results_path).export(Path(destination))
