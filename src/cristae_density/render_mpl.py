"""Matplotlib rendering of the counting overlay (``Output`` capability)."""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
from matplotlib.axes import Axes
from matplotlib.patches import Polygon

from cristae_density.analysis import Line, Point
from cristae_density.logger import get_logger
from cristae_density.session import Output

LOGGER = get_logger(__name__)


class FigureOutput(Output):
    """Draw the raw crop, region outline, lines and crossing markers on an Axes.

    Markers accumulate across ADD LINE and are removed together by
    ``clear_markers``; the outline and image stay until the next region.
    """

    def __init__(
        self,
        ax: Axes,
        outline_color: str = "#ffcc00",
        line_color: str = "#00e5ff",
        marker_color: str = "#ff3355",
        marker_size: float = 40.0,
    ) -> None:
        self.ax = ax
        self.outline_color = outline_color
        self.line_color = line_color
        self.marker_color = marker_color
        self.marker_size = marker_size
        self.region_name: Optional[str] = None
        self._marker_artists: List[object] = []
        self._outline_artist: Optional[Polygon] = None

    @property
    def marker_count(self) -> int:
        return len(self._marker_artists)

    def show_region(self, name: str, raw_crop: np.ndarray) -> None:
        self.ax.clear()
        self._marker_artists = []
        self._outline_artist = None
        self.region_name = name
        self.ax.imshow(raw_crop, cmap="gray", interpolation="nearest")
        self.ax.set_title(name)
        self.ax.set_axis_off()
        self._draw()

    def render_outline(self, points: Sequence[Point]) -> None:
        if self._outline_artist is not None:
            self._outline_artist.remove()
        patch = Polygon(
            np.asarray(points, dtype=float),
            closed=True,
            fill=False,
            edgecolor=self.outline_color,
            linewidth=1.5,
        )
        self._outline_artist = self.ax.add_patch(patch)
        self._draw()

    def render_markers(self, line: Line, points: Sequence[Point]) -> None:
        (x0, y0), (x1, y1) = line
        (line_artist,) = self.ax.plot([x0, x1], [y0, y1], color=self.line_color, linewidth=1.0)
        self._marker_artists.append(line_artist)
        if points:
            xs, ys = zip(*points)
            scatter = self.ax.scatter(xs, ys, s=self.marker_size, c=self.marker_color, marker="o", zorder=3)
            self._marker_artists.append(scatter)
        self._draw()

    def clear_markers(self) -> None:
        for artist in self._marker_artists:
            artist.remove()
        self._marker_artists = []
        self._draw()

    def notify(self, message: str) -> None:
        title = f"{self.region_name}: {message}" if self.region_name else message
        self.ax.set_title(title)
        LOGGER.info("%s", message, extra={"region": self.region_name or "-"})
        self._draw()

    def _draw(self) -> None:
        canvas = self.ax.figure.canvas
        if canvas is not None:
            canvas.draw_idle()
