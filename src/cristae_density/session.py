"""Interactive linear-intercept counting.

One ``InteractiveSession`` resolves one region at a time::

    AwaitLine --line--> PreviewConfirm --ACCEPT--> Accepted
        ^                  |  |  |
        +---ADD LINE-------+  |  +--SKIP / GO BACK / QUIT--> terminal
        +---REDRAW------------+

``analyze_regions`` walks the catalog, runs the session for each region and
applies the terminal state to the results table, persisting after every
mutation. The session never talks to a UI toolkit directly; the host injects
``Input`` and ``Output`` implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from cristae_density.analysis import (
    Line,
    Point,
    line_length,
    native_threshold,
    positions_to_points,
    sample_line_profile,
)
from cristae_density.artifacts import ArtifactStore, ArtifactTriple
from cristae_density.config import CountingConfig
from cristae_density.errors import ArtifactMissingError, InvariantViolation, UserAbort
from cristae_density.logger import get_logger
from cristae_density.peaks import detect_peaks
from cristae_density.regions import Region, RegionCatalog
from cristae_density.results import Measurement, ResultStore

LOGGER = get_logger(__name__)

# User choices
ACCEPT = "accept"
ADD_LINE = "add_line"
REDRAW = "redraw"
SKIP = "skip"
GO_BACK = "go_back"
QUIT = "quit"

CONFIRM_OPTIONS = (ACCEPT, ADD_LINE, REDRAW, SKIP, GO_BACK, QUIT)
LINE_OPTIONS = (SKIP, GO_BACK, QUIT)

# Session states
AWAIT_LINE = "await_line"
PREVIEW_CONFIRM = "preview_confirm"
ACCEPTED = "accepted"
SKIPPED = "skipped"
WENT_BACK = "went_back"
QUITTED = "quit"

_TERMINAL_FOR_CHOICE = {SKIP: SKIPPED, GO_BACK: WENT_BACK, QUIT: QUITTED}


class Input(ABC):
    """Host capability that collects lines, menu choices and numbers."""

    @abstractmethod
    def request_line(self, prompt: str) -> Union[Line, str, None]:
        """Return two endpoints, one of SKIP/GO_BACK/QUIT, or None for no line."""

    @abstractmethod
    def request_choice(self, prompt: str, options: Sequence[str], default: str) -> str:
        """Return one of ``options``."""

    @abstractmethod
    def request_number(self, prompt: str, default: int) -> Optional[int]:
        """Return an edited integer; None keeps ``default``."""


class Output(ABC):
    """Host capability that renders feedback in crop coordinates."""

    @abstractmethod
    def show_region(self, name: str, raw_crop: np.ndarray) -> None:
        ...

    @abstractmethod
    def render_outline(self, points: Sequence[Point]) -> None:
        ...

    @abstractmethod
    def render_markers(self, line: Line, points: Sequence[Point]) -> None:
        ...

    @abstractmethod
    def clear_markers(self) -> None:
        ...

    @abstractmethod
    def notify(self, message: str) -> None:
        ...


@dataclass
class SessionState:
    """Running totals for the region in flight."""

    count: int = 0
    length: float = 0.0
    lines: int = 0
    positions: List[float] = field(default_factory=list)

    def reset(self) -> None:
        self.count = 0
        self.length = 0.0
        self.lines = 0
        self.positions = []


@dataclass(frozen=True)
class RegionResult:
    """Terminal state of one region with the finalized totals."""

    state: str
    count: int = 0
    length: float = 0.0


@dataclass(frozen=True)
class LinePreview:
    line: Line
    auto_count: int
    positions: Tuple[float, ...]
    length: float


class InteractiveSession:
    """State machine turning drawn lines into a reproducible crossing count."""

    def __init__(self, ui_input: Input, ui_output: Output, config: Optional[CountingConfig] = None) -> None:
        self.input = ui_input
        self.output = ui_output
        self.config = config or CountingConfig()
        self.state = AWAIT_LINE
        self.totals = SessionState()

    def preview_line(self, probability: np.ndarray, line: Line) -> LinePreview:
        """Sample ``probability`` along ``line`` and count its peaks."""
        profile = sample_line_profile(probability, line)
        threshold = native_threshold(self.config.threshold, probability, self.config.scale_threshold_to_map)
        count, positions = detect_peaks(profile, threshold, self.config.min_width, self.config.min_distance)
        return LinePreview(line=line, auto_count=count, positions=tuple(positions), length=line_length(line))

    def run(self, region: Region, artifacts: ArtifactTriple) -> RegionResult:
        """Resolve ``region`` to exactly one terminal state."""
        try:
            return self._run(region, artifacts)
        except UserAbort:
            LOGGER.info("Host aborted the session", extra={"region": region.name})
            self.state = QUITTED
            self.totals.reset()
            return RegionResult(QUITTED)

    def _run(self, region: Region, artifacts: ArtifactTriple) -> RegionResult:
        log_extra = {"region": region.name}
        self.totals.reset()
        self.state = AWAIT_LINE
        outline = crop_outline(region, artifacts)
        self.output.show_region(region.name, artifacts.raw_crop)
        self.output.render_outline(outline)
        preview: Optional[LinePreview] = None
        while True:
            if self.state == AWAIT_LINE:
                reply = self.input.request_line(self._line_prompt(region))
                if isinstance(reply, str):
                    if reply in _TERMINAL_FOR_CHOICE:
                        return self._terminate(_TERMINAL_FOR_CHOICE[reply])
                    LOGGER.warning("Ignoring unknown choice %r", reply, extra=log_extra)
                    continue
                if reply is None:
                    if self.totals.lines == 0:
                        return self._terminate(SKIPPED)
                    self.state = ACCEPTED
                    return RegionResult(ACCEPTED, self.totals.count, self.totals.length)
                preview = self.preview_line(artifacts.probability, reply)
                self.totals.positions = list(preview.positions)
                self.output.render_markers(preview.line, positions_to_points(preview.line, preview.positions))
                LOGGER.debug(
                    "Line %d: %d crossings over %.1f px",
                    self.totals.lines + 1,
                    preview.auto_count,
                    preview.length,
                    extra=log_extra,
                )
                self.state = PREVIEW_CONFIRM
            elif self.state == PREVIEW_CONFIRM:
                if preview is None:
                    raise InvariantViolation("No line to confirm", context={"region": region.name})
                default = self.totals.count + preview.auto_count if self.totals.lines else preview.auto_count
                choice = self.input.request_choice(self._confirm_prompt(region, preview, default), CONFIRM_OPTIONS, ACCEPT)
                if choice in (ACCEPT, ADD_LINE):
                    value = self.input.request_number(f"Crossings for {region.name}", default)
                    value = default if value is None else int(value)
                    if value < 0:
                        self.output.notify("Count cannot be negative.")
                        LOGGER.warning("Rejected negative count %d", value, extra=log_extra)
                        continue
                    if choice == ACCEPT:
                        self.state = ACCEPTED
                        return RegionResult(ACCEPTED, value, self.totals.length + preview.length)
                    self.totals.count = value
                    self.totals.length += preview.length
                    self.totals.lines += 1
                    self.state = AWAIT_LINE
                elif choice == REDRAW:
                    self.totals.reset()
                    self.output.clear_markers()
                    self.state = AWAIT_LINE
                elif choice in _TERMINAL_FOR_CHOICE:
                    return self._terminate(_TERMINAL_FOR_CHOICE[choice])
                else:
                    LOGGER.warning("Ignoring unknown choice %r", choice, extra=log_extra)

    def _terminate(self, state: str) -> RegionResult:
        self.state = state
        self.totals.reset()
        return RegionResult(state)

    def _line_prompt(self, region: Region) -> str:
        if self.totals.lines:
            return (
                f"{region.name}: draw another line, or finish with {self.totals.count} crossings "
                f"over {self.totals.length:.1f} px"
            )
        return f"{region.name}: draw a line across the region"

    def _confirm_prompt(self, region: Region, preview: LinePreview, default: int) -> str:
        return (
            f"{region.name}: {preview.auto_count} crossings on this line "
            f"({preview.length:.1f} px); running total {default}"
        )


def crop_outline(region: Region, artifacts: ArtifactTriple) -> List[Point]:
    """Region outline translated into crop coordinates."""
    meta = artifacts.metadata
    x, y, _, _ = region.bbox
    origin_x = max(0, x) - meta.offset_x
    origin_y = max(0, y) - meta.offset_y
    return [(px - origin_x, py - origin_y) for px, py in region.outline]


def measured_area(region: Region, artifacts: ArtifactTriple) -> int:
    """Area in px^2 over the imaged part of the region.

    Rectangular regions use the clipped size stored with the artifacts, so a
    region hanging off the image edge is not credited with unimaged pixels.
    Polygon regions keep their mask pixel count.
    """
    if len(region.points) >= 3:
        return region.area
    meta = artifacts.metadata
    clipped = meta.roi_width * meta.roi_height
    return clipped if clipped > 0 else region.area


@dataclass
class AnalysisReport:
    accepted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    rewinds: int = 0
    quit: bool = False
    cursor: int = 0

    @property
    def finished(self) -> bool:
        return not self.quit


def first_unmeasured(catalog: RegionCatalog, results: ResultStore) -> int:
    for idx, region in enumerate(catalog):
        if region.name not in results:
            return idx
    return len(catalog)


def analyze_regions(
    catalog: RegionCatalog,
    artifacts: ArtifactStore,
    results: ResultStore,
    session: InteractiveSession,
    start_index: Optional[int] = None,
    progress: Optional[Callable[[int, str], None]] = None,
) -> AnalysisReport:
    """Run the session over the catalog, one region at a time.

    Regions that already have a row in ``results`` are passed over, so a
    restarted run continues at the first unmeasured region. GO BACK removes
    the newest row and re-enters the region it belonged to.
    """
    total = len(catalog)
    if start_index is None:
        cursor = first_unmeasured(catalog, results)
    else:
        cursor = min(max(0, int(start_index)), total)
    report = AnalysisReport(cursor=cursor)
    while cursor < total:
        region = catalog[cursor]
        log_extra = {"region": region.name}
        if region.name in results:
            LOGGER.debug("Already measured; passing over", extra=log_extra)
            cursor += 1
            continue
        try:
            triple = artifacts.load(region.name)
        except ArtifactMissingError as exc:
            LOGGER.warning("Skipping region: %s", exc.message, extra=log_extra)
            report.missing.append(region.name)
            cursor += 1
            continue
        outcome = session.run(region, triple)
        if outcome.state == QUITTED:
            results.persist()
            report.quit = True
            LOGGER.info("Quit requested; results saved", extra=log_extra)
            break
        if outcome.state == WENT_BACK:
            cursor = _go_back(catalog, results, cursor, report)
            continue
        if outcome.state == ACCEPTED:
            measurement = Measurement(region.name, measured_area(region, triple), outcome.count, outcome.length)
        else:
            measurement = Measurement.skipped(region.name, measured_area(region, triple))
        try:
            results.append(measurement)
        except InvariantViolation as exc:
            LOGGER.warning("Row rejected: %s", exc.message, extra=log_extra)
            cursor += 1
            continue
        results.persist()
        if outcome.state == ACCEPTED:
            report.accepted.append(region.name)
            LOGGER.info(
                "Recorded %d crossings over %.1f px (density %.4f)",
                measurement.count,
                measurement.length,
                measurement.density,
                extra=log_extra,
            )
        else:
            report.skipped.append(region.name)
            LOGGER.info("Recorded as skipped", extra=log_extra)
        cursor += 1
        if progress is not None:
            progress(int(cursor * 100 / total), f"{cursor}/{total} regions")
    report.cursor = cursor
    return report


def _go_back(catalog: RegionCatalog, results: ResultStore, cursor: int, report: AnalysisReport) -> int:
    if cursor == 0 or len(results) == 0:
        LOGGER.info("Nothing to go back to")
        return cursor
    removed = results.remove_last()
    results.persist()
    report.rewinds += 1
    for names in (report.accepted, report.skipped):
        if removed.name in names:
            names.remove(removed.name)
    LOGGER.info("Removed last measurement", extra={"region": removed.name})
    if removed.name in catalog:
        return catalog.index_of(removed.name)
    return max(0, cursor - 1)
