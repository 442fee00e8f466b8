"""Durable per-region artifact storage.

Layout under the output root::

    <root>/raw_crops/<name>.tif          padded crop of the source image
    <root>/probability_maps/<name>.tif   single-channel probability map
    <root>/metadata/<name>.txt           key=value metadata record
    <root>/regions.json                  region catalog backup
    <root>/results.csv                   autosaved results table

Write order is raw crop, metadata, probability map. The probability map is
written last through an atomic rename, so its presence marks the region as
complete; a crash between writes leaves the region incomplete, never torn.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import numpy as np

from cristae_density.errors import ArtifactMissingError, ConfigurationError
from cristae_density.io import read_raster, write_raster
from cristae_density.logger import get_logger

LOGGER = get_logger(__name__)

RAW_DIR = "raw_crops"
PROB_DIR = "probability_maps"
META_DIR = "metadata"
CATALOG_FILE = "regions.json"
RESULTS_FILE = "results.csv"
CONFIG_FILE = "config.json"

_META_KEYS = ("offset_x", "offset_y", "roi_width", "roi_height", "roi_index")


@dataclass(frozen=True)
class RegionMetadata:
    """Metadata record: region offset inside its crop, region size and index."""

    offset_x: int
    offset_y: int
    roi_width: int
    roi_height: int
    roi_index: int

    def to_text(self) -> str:
        return "".join(f"{key}={getattr(self, key)}\n" for key in _META_KEYS)

    @classmethod
    def from_text(cls, text: str) -> "RegionMetadata":
        values: Dict[str, str] = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            values[key.strip()] = value.strip()
        missing = [k for k in _META_KEYS if k not in values]
        if missing:
            raise ValueError(f"Metadata record missing keys: {missing}")
        return cls(**{k: int(float(values[k])) for k in _META_KEYS})


@dataclass
class ArtifactTriple:
    """Raw crop, probability map and metadata for one region (crop space)."""

    name: str
    raw_crop: np.ndarray
    probability: np.ndarray
    metadata: RegionMetadata


class ArtifactStore:
    """Idempotent artifact storage keyed by region name."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def raw_dir(self) -> Path:
        return self.root / RAW_DIR

    @property
    def probability_dir(self) -> Path:
        return self.root / PROB_DIR

    @property
    def metadata_dir(self) -> Path:
        return self.root / META_DIR

    @property
    def catalog_path(self) -> Path:
        return self.root / CATALOG_FILE

    @property
    def results_path(self) -> Path:
        return self.root / RESULTS_FILE

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILE

    def raw_path(self, name: str) -> Path:
        return self.raw_dir / f"{name}.tif"

    def probability_path(self, name: str) -> Path:
        return self.probability_dir / f"{name}.tif"

    def metadata_path(self, name: str) -> Path:
        return self.metadata_dir / f"{name}.txt"

    def ensure_writable(self) -> None:
        """Create the layout and prove the root is writable.

        Raises
        ------
        ConfigurationError
            If any store directory cannot be created or written.
        """
        try:
            for directory in (self.root, self.raw_dir, self.probability_dir, self.metadata_dir):
                directory.mkdir(parents=True, exist_ok=True)
            probe = self.root / f".write-probe-{uuid.uuid4().hex[:8]}"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink()
        except OSError as exc:
            raise ConfigurationError(
                f"Output location is not writable: {self.root}",
                context={"root": str(self.root), "error": str(exc)},
            ) from exc

    def is_complete(self, name: str) -> bool:
        """A region is done iff both its raw crop and probability map exist."""
        return self.raw_path(name).is_file() and self.probability_path(name).is_file()

    def completed_names(self) -> List[str]:
        if not self.probability_dir.is_dir():
            return []
        names = [p.stem for p in self.probability_dir.glob("*.tif") if ".partial" not in p.name]
        return sorted(n for n in names if self.raw_path(n).is_file())

    def save(self, name: str, raw_crop: np.ndarray, probability: np.ndarray, metadata: RegionMetadata) -> None:
        """Persist one region; the probability map is written last."""
        if raw_crop.shape[:2] != probability.shape[:2]:
            raise ValueError(
                f"Probability map shape {probability.shape} does not match raw crop {raw_crop.shape}"
            )
        if probability.ndim != 2:
            raise ValueError(f"Probability map must be single-channel, got shape {probability.shape}")
        write_raster(self.raw_path(name), raw_crop)
        meta_path = self.metadata_path(name)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        temp_meta = meta_path.with_name(meta_path.name + ".tmp")
        temp_meta.write_text(metadata.to_text(), encoding="utf-8")
        os.replace(temp_meta, meta_path)
        write_raster(self.probability_path(name), probability)
        LOGGER.debug("Artifacts written", extra={"region": name})

    def load_metadata(self, name: str) -> RegionMetadata:
        path = self.metadata_path(name)
        if not path.is_file():
            raise ArtifactMissingError(f"Metadata missing for region {name}", context={"region": name})
        return RegionMetadata.from_text(path.read_text(encoding="utf-8"))

    def load(self, name: str) -> ArtifactTriple:
        """Load a complete triple.

        Raises
        ------
        ArtifactMissingError
            If the raw/probability pair or the metadata is absent or unreadable,
            or the pair has mismatched dimensions.
        """
        if not self.is_complete(name):
            raise ArtifactMissingError(
                f"Raw crop or probability map missing for region {name}", context={"region": name}
            )
        try:
            metadata = self.load_metadata(name)
            raw = read_raster(self.raw_path(name))
            prob = read_raster(self.probability_path(name))
        except (OSError, ValueError) as exc:
            # tifffile.TiffFileError derives from ValueError
            raise ArtifactMissingError(
                f"Artifacts for region {name} are unreadable: {exc}",
                context={"region": name, "error": str(exc)},
            ) from exc
        if raw.shape[:2] != prob.shape[:2]:
            raise ArtifactMissingError(
                f"Artifacts for region {name} have mismatched shapes {raw.shape} vs {prob.shape}",
                context={"region": name},
            )
        return ArtifactTriple(name=name, raw_crop=raw, probability=prob, metadata=metadata)
