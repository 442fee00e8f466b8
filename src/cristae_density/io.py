"""TIFF loading, axis normalization and atomic raster writes.

The source image is standardized into (T, Z, Y, X) order and a single plane
is taken for cropping. Raw crops and probability maps are plain 2D TIFFs.

Conventions
-----------
- Arrays are standardized to (T, Z, Y, X) before a plane is selected.
- OME metadata has priority when available and consistent with array shape.
- Heuristic fallback uses axis0 <= 5 to interpret 3D as time.
- Trailing RGB(A) sample axes are folded to luminance.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import numpy as np
import tifffile as tif

__all__ = [
    "standardize_axes",
    "load_plane",
    "read_raster",
    "write_raster",
]

_LUMA = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def standardize_axes(
    arr: np.ndarray, interpret_3d_as: str = "auto", ome_axes: Optional[str] = None
) -> tuple[np.ndarray, bool, bool]:
    """Standardize an array to (T, Z, Y, X) and report time/Z presence.

    Parameters
    ----------
    arr : numpy.ndarray
        Input array in an unknown axis order.
    interpret_3d_as : {"auto", "time", "depth"}
        Interpretation for 3D stacks when metadata is unavailable.
    ome_axes : str, optional
        OME axes string (e.g., "TCZYX") when available.

    Returns
    -------
    tuple[numpy.ndarray, bool, bool]
        Standardized array, has_time, has_z flags.
    """
    if ome_axes:
        axes = ome_axes.upper()
        if len(axes) == arr.ndim:
            keep_axes = []
            squeeze_axes = []
            for idx, ax in enumerate(axes):
                if ax in {"T", "Z", "Y", "X"}:
                    keep_axes.append((idx, ax))
                elif arr.shape[idx] == 1:
                    squeeze_axes.append(idx)
                else:
                    keep_axes = []
                    break
            if keep_axes:
                if squeeze_axes:
                    arr = np.squeeze(arr, axis=tuple(squeeze_axes))
                axes_kept = "".join(ax for _, ax in keep_axes)
                order = [axes_kept.index(ax) for ax in "TZYX" if ax in axes_kept]
                arr = np.transpose(arr, order)
                for pos, ax in enumerate("TZYX"):
                    if ax not in axes_kept:
                        arr = np.expand_dims(arr, axis=pos)
                return arr, "T" in axes_kept, "Z" in axes_kept

    ndim = arr.ndim
    if ndim == 2:
        arr = arr[np.newaxis, np.newaxis, :, :]
        has_time, has_z = False, False
    elif ndim == 3:
        mode = interpret_3d_as.lower()
        if mode not in {"auto", "time", "depth"}:
            raise ValueError(f"Invalid interpret_3d_as: {interpret_3d_as}")
        if mode == "auto":
            mode = "time" if arr.shape[0] <= 5 else "depth"
        if mode == "time":
            arr = arr[:, np.newaxis, :, :]
            has_time, has_z = True, False
        else:
            arr = arr[np.newaxis, :, :, :]
            has_time, has_z = False, True
    elif ndim == 4:
        has_time, has_z = True, True
    else:
        raise ValueError(f"Unsupported image ndim={ndim}, shape={arr.shape}")
    return arr, has_time, has_z


def _fold_rgb(arr: np.ndarray) -> np.ndarray:
    if arr.ndim >= 3 and arr.shape[-1] in (3, 4) and arr.shape[-2] > 4:
        rgb = arr[..., :3].astype(np.float64)
        luma = rgb @ _LUMA
        if np.issubdtype(arr.dtype, np.integer):
            return np.clip(np.round(luma), 0, np.iinfo(arr.dtype).max).astype(arr.dtype)
        return luma.astype(arr.dtype, copy=False)
    return arr


def load_plane(path: Path, t: int = 0, z: int = 0, interpret_3d_as: str = "auto") -> np.ndarray:
    """Load a TIFF/OME-TIFF and return the (Y, X) plane at ``t``/``z``."""
    axes = None
    with tif.TiffFile(str(path)) as tf:
        series = tf.series[0]
        if tf.is_ome:
            axes = series.axes
        arr = series.asarray()
    if axes is not None and axes.endswith("S"):
        arr = _fold_rgb(arr)
        axes = axes[:-1]
    elif axes is None:
        arr = _fold_rgb(arr)
    std, _, _ = standardize_axes(arr, interpret_3d_as=interpret_3d_as, ome_axes=axes)
    t = min(max(0, t), std.shape[0] - 1)
    z = min(max(0, z), std.shape[1] - 1)
    return np.ascontiguousarray(std[t, z, :, :])


def read_raster(path: Path) -> np.ndarray:
    """Read a 2D raster artifact."""
    return tif.imread(str(path))


def write_raster(path: Path, data: np.ndarray) -> None:
    """Write ``data`` to ``path`` through a temporary file and an atomic rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f"{path.stem}.partial{path.suffix}")
    try:
        tif.imwrite(str(temp_path), np.asarray(data))
        os.replace(temp_path, path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise
