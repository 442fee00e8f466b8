"""Per-region measurements and the durable results table.

Schema (CSV, columns in order)::

    Mito_Label, ROI_Area_px2, Cristae_Count, Line_Length_px, Density_per_1000px2

Density is always recomputed from count and area; the stored column is
informational and ignored on load.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import pandas as pd

from cristae_density.errors import InvariantViolation
from cristae_density.logger import get_logger

LOGGER = get_logger(__name__)

__all__ = ["RESULT_COLUMNS", "Measurement", "ResultStore"]

RESULT_COLUMNS = [
    "Mito_Label",
    "ROI_Area_px2",
    "Cristae_Count",
    "Line_Length_px",
    "Density_per_1000px2",
]


@dataclass(frozen=True)
class Measurement:
    """Linear-intercept measurement for one region.

    Parameters
    ----------
    name : str
        Region name (unique within a results table).
    area : float
        Region area in px^2; must be positive.
    count : int
        Crossing count; must be >= 0.
    length : float
        Total drawn line length in px; must be >= 0.
    """

    name: str
    area: float
    count: int
    length: float

    def __post_init__(self) -> None:
        if not self.name:
            raise InvariantViolation("Measurement requires a region name.")
        if isinstance(self.count, bool) or int(self.count) != self.count:
            raise InvariantViolation(f"Count must be an integer, got {self.count!r}", context={"region": self.name})
        if self.count < 0:
            raise InvariantViolation(f"Negative count {self.count}", context={"region": self.name})
        if not self.area > 0:
            raise InvariantViolation(f"Area must be positive, got {self.area}", context={"region": self.name})
        if not self.length >= 0:
            raise InvariantViolation(f"Negative line length {self.length}", context={"region": self.name})
        object.__setattr__(self, "count", int(self.count))

    @property
    def density(self) -> float:
        return self.count / self.area * 1000.0

    @classmethod
    def skipped(cls, name: str, area: float) -> "Measurement":
        return cls(name=name, area=area, count=0, length=0.0)

    def to_row(self) -> Dict[str, object]:
        return {
            "Mito_Label": self.name,
            "ROI_Area_px2": self.area,
            "Cristae_Count": self.count,
            "Line_Length_px": self.length,
            "Density_per_1000px2": self.density,
        }


class ResultStore:
    """Ordered results table persisted after every mutation.

    Rows are appended in processing order; the only removal is
    ``remove_last`` used by GO BACK.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._rows: List[Measurement] = []

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[Measurement]:
        return iter(self._rows)

    def __contains__(self, name: object) -> bool:
        return any(m.name == name for m in self._rows)

    @property
    def rows(self) -> List[Measurement]:
        return list(self._rows)

    def last(self) -> Optional[Measurement]:
        return self._rows[-1] if self._rows else None

    def append(self, measurement: Measurement) -> None:
        if measurement.name in self:
            raise InvariantViolation(
                f"Region {measurement.name} already has a measurement.", context={"region": measurement.name}
            )
        self._rows.append(measurement)

    def remove_last(self) -> Optional[Measurement]:
        """Remove and return the newest row; no-op on an empty store."""
        if not self._rows:
            return None
        return self._rows.pop()

    def to_dataframe(self) -> pd.DataFrame:
        if not self._rows:
            return pd.DataFrame(columns=RESULT_COLUMNS)
        return pd.DataFrame([m.to_row() for m in self._rows], columns=RESULT_COLUMNS)

    def persist(self) -> None:
        """Write the table to ``self.path`` atomically."""
        if self.path is None:
            raise ValueError("ResultStore has no path to persist to.")
        _write_csv(self.to_dataframe(), self.path)

    def export(self, destination: Path) -> Path:
        """Write the same schema to ``destination`` without touching the store."""
        destination = Path(destination)
        _write_csv(self.to_dataframe(), destination)
        LOGGER.info("Exported %d rows to %s", len(self._rows), destination)
        return destination

    @classmethod
    def load(cls, path: Path) -> "ResultStore":
        """Load a results table; a missing file gives an empty store."""
        store = cls(path)
        path = Path(path)
        if not path.exists():
            return store
        df = pd.read_csv(
            path, dtype={"Mito_Label": str}, keep_default_na=False, float_precision="round_trip"
        )
        missing = [c for c in RESULT_COLUMNS[:4] if c not in df.columns]
        if missing:
            raise ValueError(f"Missing columns in results table {path}: {missing}")
        for row in df.itertuples(index=False):
            store.append(
                Measurement(
                    name=str(row.Mito_Label),
                    area=float(row.ROI_Area_px2),
                    count=int(row.Cristae_Count),
                    length=float(row.Line_Length_px),
                )
            )
        return store

    def summary(self) -> Dict[str, float]:
        """Totals plus mean/std density over rows with a non-zero count."""
        df = self.to_dataframe()
        measured = df[df["Cristae_Count"] > 0] if len(df) else df
        densities = measured["Density_per_1000px2"].astype(float) if len(measured) else pd.Series(dtype=float)
        return {
            "regions": int(len(df)),
            "measured": int(len(measured)),
            "total_count": int(df["Cristae_Count"].sum()) if len(df) else 0,
            "total_length_px": float(df["Line_Length_px"].sum()) if len(df) else 0.0,
            "mean_density": float(densities.mean()) if len(densities) else float("nan"),
            "std_density": float(densities.std(ddof=1)) if len(densities) > 1 else float("nan"),
        }


def _write_csv(df: pd.DataFrame, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with temp_path.open("w", encoding="utf-8", newline="") as handle:
            df.to_csv(handle, index=False)
        os.replace(temp_path, path)
    except Exception as e:
        if temp_path.exists():
            temp_path.unlink()
        raise IOError(f"Failed to write results table: {e}") from e
