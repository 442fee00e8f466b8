"""Checkpointed batch preparation of per-region probability maps.

For every region of the catalog, in order, the preparer crops the padded
region out of the source image, drives a fresh segmentation client to a
probability map, and writes the artifact triple. Regions whose artifacts are
already complete are skipped, so re-running after a crash resumes where the
previous run stopped.

Failure handling is per region: timeouts and client failures are retried up
to ``PrepareConfig.max_attempts`` with a new client instance each time, and
an exhausted budget marks only that region as failed. Configuration problems
abort before the first region is touched.
"""

from __future__ import annotations

import gc
import sys
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from cristae_density.analysis import apply_crop_rect, crop_bounds, to_single_channel
from cristae_density.artifacts import ArtifactStore, RegionMetadata
from cristae_density.config import PrepareConfig
from cristae_density.errors import ConfigurationError, GeometryError, TransientClientError
from cristae_density.jobs import READY, CancelToken, JobHandle
from cristae_density.logger import get_logger
from cristae_density.regions import Region, RegionCatalog, save_catalog
from cristae_density.segmentation import ClientFactory, SegmentationClient

LOGGER = get_logger(__name__)

PREPARED = "prepared"
SKIPPED = "skipped"
FAILED = "failed"
INVALID = "invalid"


@dataclass
class RegionOutcome:
    """Result of preparing one region."""

    name: str
    index: int
    status: str  # prepared|skipped|failed|invalid
    attempts: int = 0
    message: str = ""
    seconds: float = 0.0


@dataclass
class BatchReport:
    outcomes: List[RegionOutcome] = field(default_factory=list)
    elapsed_s: float = 0.0
    cancelled: bool = False

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def names(self, status: str) -> List[str]:
        return [o.name for o in self.outcomes if o.status == status]

    def summary_text(self) -> str:
        return (
            f"{self.count(PREPARED)} prepared, {self.count(SKIPPED)} already done, "
            f"{self.count(FAILED)} failed, {self.count(INVALID)} invalid "
            f"in {timedelta(seconds=round(self.elapsed_s))}"
        )


class BatchPreparer:
    """Drive a segmentation client over a region catalog with retry and resume.

    Parameters
    ----------
    client_factory : callable
        Returns a fresh ``SegmentationClient``; called once per attempt.
    config : PrepareConfig
        Padding, attempt budget, timeouts, poll interval and reclaim cadence.
    progress : callable, optional
        ``progress(percent, message)`` called after every region.
    cancel_token : CancelToken, optional
        Checked between regions only; a running region always resolves first.
    sleep, clock, collect : callable, optional
        Injection points for the polling loop and memory reclaim.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        config: Optional[PrepareConfig] = None,
        *,
        progress: Optional[Callable[[int, str], None]] = None,
        cancel_token: Optional[CancelToken] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        collect: Callable[..., int] = gc.collect,
    ) -> None:
        self.client_factory = client_factory
        self.config = config or PrepareConfig()
        self.progress = progress
        self.cancel_token = cancel_token
        self._sleep = sleep
        self._clock = clock
        self._collect = collect
        self._clients: List[SegmentationClient] = []
        self._durations: List[float] = []
        self._processed = 0

    def prepare(
        self,
        image: np.ndarray,
        catalog: RegionCatalog,
        model_path: Path,
        store: ArtifactStore,
    ) -> BatchReport:
        """Prepare artifacts for every region of ``catalog``.

        Raises
        ------
        ConfigurationError
            Invalid settings, missing model artifact, empty catalog, non-2D
            source image or unwritable output root. Raised before any region
            is processed.
        """
        self.check_configuration(image, catalog, model_path, store)
        model_path = Path(model_path)
        report = BatchReport()
        started = self._clock()
        total = len(catalog)
        LOGGER.info("Preparing %d regions into %s", total, store.root)
        for idx, region in enumerate(catalog):
            if self.cancel_token is not None and self.cancel_token.is_cancelled():
                LOGGER.info("Preparation cancelled before region %d/%d", idx + 1, total)
                report.cancelled = True
                break
            if store.is_complete(region.name):
                LOGGER.debug("Artifacts already complete; skipping", extra={"region": region.name})
                report.outcomes.append(RegionOutcome(region.name, idx, SKIPPED))
                continue
            outcome = self._prepare_region(idx, region, image, model_path, store)
            report.outcomes.append(outcome)
            if outcome.status in (PREPARED, FAILED):
                self._report_timing(idx, total, outcome)
        report.elapsed_s = self._clock() - started
        save_catalog(store.catalog_path, catalog)
        LOGGER.info("Preparation finished: %s", report.summary_text())
        return report

    def check_configuration(
        self, image: np.ndarray, catalog: RegionCatalog, model_path: Path, store: ArtifactStore
    ) -> None:
        """Raise ``ConfigurationError`` for a bad setup; the output root is created last."""
        self.config.validate()
        if model_path is None or not Path(model_path).exists():
            raise ConfigurationError(
                f"Model artifact not found: {model_path}",
                suggestions=["Check the model path passed to prepare."],
            )
        if len(catalog) == 0:
            raise ConfigurationError("Region catalog is empty.")
        if np.asarray(image).ndim != 2:
            raise ConfigurationError(f"Source image must be 2D, got shape {np.asarray(image).shape}")
        store.ensure_writable()

    def _prepare_region(
        self, idx: int, region: Region, image: np.ndarray, model_path: Path, store: ArtifactStore
    ) -> RegionOutcome:
        log_extra = {"region": region.name}
        start = self._clock()
        outcome = RegionOutcome(region.name, idx, FAILED)
        try:
            region.validate_geometry()
            crop_rect, offset, region_rect = crop_bounds(region.bbox, self.config.padding, image.shape)
            raw = np.array(apply_crop_rect(image, crop_rect), copy=True)
            prob, attempts = self._segment(region, raw, model_path)
            outcome.attempts = attempts
            prob = to_single_channel(prob, self.config.probability_channel)
            if prob.shape != raw.shape:
                raise ValueError(f"Probability map shape {prob.shape} does not match crop {raw.shape}")
            metadata = RegionMetadata(
                offset_x=offset[0],
                offset_y=offset[1],
                roi_width=region_rect[2],
                roi_height=region_rect[3],
                roi_index=idx,
            )
            store.save(region.name, raw, prob, metadata)
            outcome.status = PREPARED
            LOGGER.info("Prepared crop %s offset %s", crop_rect, offset, extra=log_extra)
        except GeometryError as exc:
            outcome.status = INVALID
            outcome.message = exc.message
            LOGGER.warning("Skipping region: %s", exc.message, extra=log_extra)
        except TransientClientError as exc:
            outcome.attempts = self.config.max_attempts
            outcome.message = exc.message
            LOGGER.warning("Region failed: %s", exc.message, extra=log_extra)
        except Exception as exc:
            outcome.message = str(exc)
            LOGGER.exception("Unexpected error while preparing region", extra=log_extra)
        finally:
            self._teardown_clients()
            if outcome.status != INVALID:
                self._processed += 1
                self._reclaim()
        outcome.seconds = self._clock() - start
        return outcome

    def _segment(self, region: Region, raw: np.ndarray, model_path: Path):
        log_extra = {"region": region.name}
        attempts = self.config.max_attempts
        last_error: Optional[TransientClientError] = None
        for attempt in range(1, attempts + 1):
            client = self._open_client()
            try:
                load = client.load_model(model_path)
                self._await(load, self.config.load_timeout_s, "load", region.name)
                job = client.compute_probability(raw)
                prob = self._await(job, self.config.compute_timeout_s, "compute", region.name, notify=True)
                return np.asarray(prob), attempt
            except TransientClientError as exc:
                last_error = exc
                LOGGER.warning(
                    "Attempt %d/%d failed: %s", attempt, attempts, exc.message, extra=log_extra
                )
                self._teardown_clients()
        raise TransientClientError(
            f"Segmentation failed after {attempts} attempts: {last_error.message if last_error else ''}",
            stage=last_error.stage if last_error else "",
            context={"region": region.name},
        )

    def _await(self, handle: JobHandle, timeout: float, stage: str, name: str, notify: bool = False):
        """Poll ``handle`` until it resolves or ``timeout`` seconds pass."""
        start = self._clock()
        last_notice = start
        while not handle.done():
            now = self._clock()
            elapsed = now - start
            if elapsed >= timeout:
                handle.cancel()
                raise TransientClientError(f"{stage} timed out after {timeout:.1f}s", stage=stage)
            if notify and now - last_notice >= self.config.progress_interval_s:
                value, message = handle.progress
                LOGGER.info(
                    "Still computing (%.0fs elapsed, %d%% %s)", elapsed, value, message, extra={"region": name}
                )
                last_notice = now
            self._sleep(min(self.config.poll_interval_s, max(0.0, timeout - elapsed)))
        if handle.status != READY:
            try:
                handle.result()
            except Exception as exc:
                raise TransientClientError(f"{stage} failed: {exc}", stage=stage) from exc
            raise TransientClientError(f"{stage} ended with status {handle.status}", stage=stage)
        return handle.result()

    def _open_client(self) -> SegmentationClient:
        client = self.client_factory()
        self._clients.append(client)
        return client

    def _teardown_clients(self) -> None:
        """Close every client opened for the current region, duplicates included."""
        while self._clients:
            client = self._clients.pop()
            try:
                client.close()
            except Exception:
                LOGGER.warning("Client teardown failed", exc_info=True)

    def _reclaim(self) -> None:
        self._collect()
        if self._processed % self.config.gc_batch_size == 0:
            LOGGER.info("Deep memory reclaim after %d regions", self._processed)
            self._collect(2)
            _release_device_memory()

    def _report_timing(self, idx: int, total: int, outcome: RegionOutcome) -> None:
        self._durations.append(outcome.seconds)
        avg = sum(self._durations) / len(self._durations)
        remaining = avg * (total - idx - 1)
        message = (
            f"Region {idx + 1}/{total} {outcome.status} in {outcome.seconds:.1f}s; "
            f"avg {avg:.1f}s/region, ~{timedelta(seconds=round(remaining))} remaining"
        )
        LOGGER.info("%s", message, extra={"region": outcome.name})
        if self.progress is not None:
            self.progress(int((idx + 1) * 100 / total), message)


def _release_device_memory() -> None:
    torch = sys.modules.get("torch")
    if torch is not None and torch.cuda.is_available():
        torch.cuda.empty_cache()
