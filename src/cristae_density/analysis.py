"""Pure geometry and sampling helpers (no Qt dependencies).

Functions in this module operate on numpy arrays and plain tuples and are
shared by batch preparation and interactive counting.

Conventions
-----------
- Rectangles are (X, Y, W, H) in integer pixel coordinates.
- Images are 2D arrays indexed ``[y, x]``.
- Points are (x, y) pairs; lines are ((x0, y0), (x1, y1)).
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

import numpy as np
from scipy.ndimage import map_coordinates

from cristae_density.errors import GeometryError

Rect = Tuple[int, int, int, int]
Point = Tuple[float, float]
Line = Tuple[Point, Point]


def crop_bounds(
    bbox: Rect, padding: int, image_shape: Tuple[int, int]
) -> Tuple[Rect, Tuple[int, int], Rect]:
    """Expand a region bbox by ``padding`` and clip it to the image extent.

    Parameters
    ----------
    bbox : tuple[int, int, int, int]
        Region bounding box (X, Y, W, H) in source-image coordinates.
    padding : int
        Margin added on every side before clipping.
    image_shape : tuple[int, int]
        (H, W) of the source image.

    Returns
    -------
    crop_rect : tuple[int, int, int, int]
        Padded, clipped crop rectangle (X, Y, W, H).
    offset : tuple[int, int]
        Region origin minus crop origin; never negative.
    region_rect : tuple[int, int, int, int]
        The region bbox clipped to the image.

    Raises
    ------
    GeometryError
        If the region has zero width/height or lies outside the image.
    """
    x, y, w, h = (int(v) for v in bbox)
    img_h, img_w = int(image_shape[0]), int(image_shape[1])
    if w <= 0 or h <= 0:
        raise GeometryError(f"Region has zero size: w={w}, h={h}", context={"bbox": bbox})
    rx0, ry0 = max(0, x), max(0, y)
    rx1, ry1 = min(img_w, x + w), min(img_h, y + h)
    if rx1 <= rx0 or ry1 <= ry0:
        raise GeometryError(
            f"Region {bbox} lies outside image of size {img_w}x{img_h}",
            context={"bbox": bbox, "image_shape": image_shape},
        )
    cx0 = max(0, rx0 - padding)
    cy0 = max(0, ry0 - padding)
    cx1 = min(img_w, rx1 + padding)
    cy1 = min(img_h, ry1 + padding)
    crop_rect = (cx0, cy0, cx1 - cx0, cy1 - cy0)
    offset = (rx0 - cx0, ry0 - cy0)
    region_rect = (rx0, ry0, rx1 - rx0, ry1 - ry0)
    return crop_rect, offset, region_rect


def apply_crop_rect(frame: np.ndarray, crop_rect: Tuple[float, float, float, float]) -> np.ndarray:
    """Apply a rectangular crop to a 2D frame."""
    x, y, w, h = crop_rect
    if w <= 0 or h <= 0:
        return frame
    x0 = int(max(0, x))
    y0 = int(max(0, y))
    x1 = int(min(frame.shape[1], x + w))
    y1 = int(min(frame.shape[0], y + h))
    return frame[y0:y1, x0:x1]


def line_length(line: Line) -> float:
    """Euclidean length of a line in pixels."""
    (x0, y0), (x1, y1) = line
    return float(np.hypot(x1 - x0, y1 - y0))


def sample_line_profile(image: np.ndarray, line: Line) -> np.ndarray:
    """Sample ``image`` along a straight line with bilinear interpolation.

    ``round(length)`` steps give ``round(length) + 1`` samples including both
    endpoints; a zero-length line yields a single sample.
    """
    if image.ndim != 2:
        raise ValueError(f"Profile sampling expects a 2D image, got shape {image.shape}")
    (x0, y0), (x1, y1) = line
    n = int(round(line_length(line)))
    xs = np.linspace(x0, x1, n + 1)
    ys = np.linspace(y0, y1, n + 1)
    values = map_coordinates(
        np.asarray(image, dtype=np.float64), np.vstack([ys, xs]), order=1, mode="nearest"
    )
    return values


def positions_to_points(line: Line, positions: Iterable[float]) -> List[Point]:
    """Map normalized positions along ``line`` back to (x, y) coordinates."""
    (x0, y0), (x1, y1) = line
    return [(x0 + t * (x1 - x0), y0 + t * (y1 - y0)) for t in positions]


def native_threshold(threshold: float, image: np.ndarray, rescale: bool = True) -> float:
    """Express an 8-bit threshold in the native range of ``image``.

    Floating-point maps are assumed to be probabilities in 0..1; an 8-bit style
    threshold (> 1) is divided by 255 for them.
    """
    if rescale and np.issubdtype(image.dtype, np.floating) and threshold > 1.0:
        return float(threshold) / 255.0
    return float(threshold)


def to_single_channel(prob: np.ndarray, channel: int = 0) -> np.ndarray:
    """Reduce a probability result to one 2D channel.

    Accepts (H, W), channels-first (C, H, W) and channels-last (H, W, C)
    results; leading singleton axes are squeezed.
    """
    arr = np.asarray(prob)
    while arr.ndim > 2 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim == 2:
        return arr
    if arr.ndim != 3:
        raise ValueError(f"Unexpected probability map shape: {prob.shape}")
    channels_last = arr.shape[-1] <= 4 and arr.shape[0] > 4
    n_channels = arr.shape[-1] if channels_last else arr.shape[0]
    idx = min(int(channel), n_channels - 1)
    return arr[..., idx] if channels_last else arr[idx]


def roi_mask_for_polygon(
    shape: Tuple[int, int], points: Iterable[Tuple[float, float]]
) -> np.ndarray:
    """Return a polygon mask using matplotlib Path."""
    from matplotlib.path import Path

    h, w = shape
    yy, xx = np.mgrid[0:h, 0:w]
    coords = np.vstack((xx.ravel(), yy.ravel())).T
    poly = Path(list(points))
    mask = poly.contains_points(coords).reshape(h, w)
    return mask


def polygon_pixel_area(points: Sequence[Tuple[float, float]]) -> int:
    """Count pixel centers inside a polygon, evaluated over its bounding box."""
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[0] < 3:
        return 0
    x0, y0 = np.floor(pts.min(axis=0)).astype(int)
    x1, y1 = np.ceil(pts.max(axis=0)).astype(int)
    local = [(px - x0, py - y0) for px, py in pts]
    mask = roi_mask_for_polygon((int(y1 - y0) + 1, int(x1 - x0) + 1), local)
    return int(mask.sum())
