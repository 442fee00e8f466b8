"""Region catalog data model and JSON archive I/O.

A catalog is an ordered set of named regions. Names are unique and are used
as file stems for every per-region artifact, so they must be safe file names.

Example archive
---------------
{
  "tool": "cristae-density",
  "version": 1,
  "regions": [
    {"name": "M1", "bbox": [10, 10, 50, 50]},
    {"name": "M2", "bbox": [80, 5, 30, 22], "points": [[80, 5], [110, 5], [95, 27]]}
  ]
}

Archives written by the ROI manager (``{"rois": [...]}`` with box/polygon
entries) are accepted on load as well.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from cristae_density.analysis import polygon_pixel_area
from cristae_density.errors import ConfigurationError, GeometryError, InvariantViolation

__all__ = ["Region", "RegionCatalog", "region_to_dict", "region_from_dict", "save_catalog", "load_catalog"]

_ARCHIVE_TOOL = "cristae-density"
_ARCHIVE_VERSION = 1
_BAD_NAME = re.compile(r"[\\/:*?\"<>|\x00-\x1f]")


def validate_region_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvariantViolation("Region name must be a non-empty string.", context={"name": name})
    if name in (".", "..") or _BAD_NAME.search(name) or name != name.strip():
        raise InvariantViolation(f"Region name is not a safe file name: {name!r}", context={"name": name})
    return name


@dataclass(frozen=True)
class Region:
    """Named region in source-image coordinates.

    ``bbox`` is (X, Y, W, H). ``points`` optionally holds a polygon outline;
    when present the area is the polygon's pixel count, otherwise ``W * H``.
    """

    name: str
    bbox: Tuple[int, int, int, int]
    points: Tuple[Tuple[float, float], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        validate_region_name(self.name)
        if len(self.bbox) != 4:
            raise InvariantViolation(f"Region bbox must have 4 values: {self.bbox}", context={"name": self.name})
        object.__setattr__(self, "bbox", tuple(int(round(v)) for v in self.bbox))
        object.__setattr__(self, "points", tuple((float(x), float(y)) for x, y in self.points))

    @property
    def area(self) -> int:
        if len(self.points) >= 3:
            return polygon_pixel_area(self.points)
        _, _, w, h = self.bbox
        return max(0, w) * max(0, h)

    @property
    def outline(self) -> List[Tuple[float, float]]:
        """Closed outline in source coordinates (polygon or bbox corners)."""
        if len(self.points) >= 3:
            return list(self.points)
        x, y, w, h = self.bbox
        return [(x, y), (x + w, y), (x + w, y + h), (x, y + h)]

    def validate_geometry(self) -> None:
        """Raise ``GeometryError`` unless width, height and area are positive."""
        _, _, w, h = self.bbox
        if w <= 0 or h <= 0:
            raise GeometryError(f"Region {self.name} has zero size ({w}x{h}).", context={"region": self.name})
        if self.area <= 0:
            raise GeometryError(f"Region {self.name} has zero area.", context={"region": self.name})


class RegionCatalog:
    """Ordered collection of uniquely named regions."""

    def __init__(self, regions: Optional[List[Region]] = None) -> None:
        self._regions: List[Region] = []
        self._index: Dict[str, int] = {}
        for region in regions or []:
            self.add(region)

    def add(self, region: Region) -> None:
        if region.name in self._index:
            raise InvariantViolation(f"Duplicate region name: {region.name}", context={"name": region.name})
        self._index[region.name] = len(self._regions)
        self._regions.append(region)

    def get(self, name: str) -> Region:
        return self._regions[self._index[name]]

    def index_of(self, name: str) -> int:
        return self._index[name]

    def names(self) -> List[str]:
        return [r.name for r in self._regions]

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __getitem__(self, idx: int) -> Region:
        return self._regions[idx]

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions)

    def __len__(self) -> int:
        return len(self._regions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RegionCatalog):
            return NotImplemented
        return self._regions == other._regions


def region_to_dict(region: Region) -> dict:
    data = {"name": region.name, "bbox": list(region.bbox)}
    if region.points:
        data["points"] = [list(p) for p in region.points]
    return data


def region_from_dict(data: dict) -> Region:
    return Region(
        name=str(data["name"]),
        bbox=tuple(data["bbox"]),
        points=tuple(tuple(p) for p in data.get("points", [])),
    )


def _region_from_roi_entry(entry: dict, fallback_id: int) -> Optional[Region]:
    pts = [tuple(p) for p in entry.get("points", [])]
    if len(pts) < 2:
        return None
    xs = [p[0] for p in pts]
    ys = [p[1] for p in pts]
    x0, y0 = int(round(min(xs))), int(round(min(ys)))
    bbox = (x0, y0, int(round(max(xs))) - x0, int(round(max(ys))) - y0)
    roi_type = str(entry.get("type", "box"))
    name = str(entry.get("name", f"ROI {fallback_id}"))
    points = tuple(pts) if roi_type in ("polygon", "polyline") and len(pts) >= 3 else ()
    return Region(name=name, bbox=bbox, points=points)


def save_catalog(path: Path, catalog: RegionCatalog) -> None:
    """Write the catalog archive atomically."""
    payload = {
        "tool": _ARCHIVE_TOOL,
        "version": _ARCHIVE_VERSION,
        "regions": [region_to_dict(r) for r in catalog],
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with temp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        temp_path.replace(path)
    except Exception as e:
        if temp_path.exists():
            temp_path.unlink()
        raise IOError(f"Failed to save region catalog: {e}") from e


def load_catalog(path: Path) -> RegionCatalog:
    """Load a catalog archive.

    Raises
    ------
    ConfigurationError
        If the file is missing or unreadable.
    InvariantViolation
        If a region name is malformed or duplicated.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Region catalog not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Region catalog is not valid JSON: {path}") from exc
    catalog = RegionCatalog()
    if isinstance(data, dict) and "regions" in data:
        for entry in data["regions"]:
            catalog.add(region_from_dict(entry))
    elif isinstance(data, dict) and "rois" in data:
        for idx, entry in enumerate(data["rois"]):
            if isinstance(entry, dict):
                region = _region_from_roi_entry(entry, idx)
                if region is not None:
                    catalog.add(region)
    else:
        raise ConfigurationError(f"Unrecognized region catalog format: {path}")
    return catalog
