"""Segmentation client abstraction and a model-backed implementation.

The batch stage talks to segmentation through ``SegmentationClient``:

- ``load_model(path)`` returns a handle that resolves Ready or Failed.
- ``compute_probability(image)`` returns a handle resolving to a probability
  map (or Failed).
- ``close()`` tears the instance down and cancels anything still running.

Handles are typed objects returned directly by the call, so the caller never
has to locate results by name. No latency bound is promised: callers wait
with their own timeouts and treat a missing result as a failure.
"""

from __future__ import annotations

import importlib.util
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from cristae_density.jobs import CancelToken, JobHandle, submit
from cristae_density.logger import get_logger

LOGGER = get_logger(__name__)

__all__ = ["SegmentationClient", "ClientFactory", "ModelOptions", "ModelClient"]


class SegmentationClient(ABC):
    """Asynchronous, failure-prone producer of probability maps."""

    @abstractmethod
    def load_model(self, path: Path) -> JobHandle:
        """Start loading the model artifact at ``path``."""

    @abstractmethod
    def compute_probability(self, image: np.ndarray) -> JobHandle:
        """Start computing a probability map for a 2D image."""

    @abstractmethod
    def close(self) -> None:
        """Release the instance; must be safe to call more than once."""


ClientFactory = Callable[[], SegmentationClient]


@dataclass(frozen=True)
class ModelOptions:
    """Input normalization and device selection for ``ModelClient``."""

    device: str = "auto"
    normalize: str = "percentile"
    p_low: float = 1.0
    p_high: float = 99.0
    invert: bool = False
    expected_channels: int = 1
    output: str = "auto"  # auto|probability|logits
    model_definition: Optional[str] = None


class ModelClient(SegmentationClient):
    """Run a torchscript (or state_dict) pixel classifier on a worker thread."""

    def __init__(self, options: Optional[ModelOptions] = None) -> None:
        self.options = options or ModelOptions()
        self._model = None
        self._device = "cpu"
        self._handles: List[JobHandle] = []
        self._token = CancelToken()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def load_model(self, path: Path) -> JobHandle:
        path = Path(path)

        def _load() -> bool:
            model, device = _load_model(path, self.options)
            with self._lock:
                if not self._closed:
                    self._model, self._device = model, device
                    LOGGER.info("Loaded model: %s (%s)", path, device)
                    return True
            # the client was torn down while loading; nothing may keep the model
            LOGGER.debug("Discarding model loaded after close: %s", path)
            del model
            _empty_device_cache(device)
            return False

        return self._track(submit(_load, name="load_model", cancel_token=self._token))

    def compute_probability(self, image: np.ndarray) -> JobHandle:
        image = np.asarray(image)

        def _compute(progress, cancel_token) -> np.ndarray:
            if self._model is None:
                raise RuntimeError("Model not loaded.")
            progress(10, "preparing input")
            arr = _prepare_input(image, self.options)
            if cancel_token.is_cancelled():
                return np.empty((0, 0), dtype=np.float32)
            progress(30, "running model")
            out = _run_model(self._model, self._device, arr)
            progress(100, "done")
            return _to_probability(out, self.options.output)

        return self._track(submit(_compute, name="compute_probability", cancel_token=self._token))

    def close(self) -> None:
        with self._lock:
            self._closed = True
            model, self._model = self._model, None
        self._token.cancel()
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        if model is not None:
            del model
            _empty_device_cache(self._device)

    def _track(self, handle: JobHandle) -> JobHandle:
        if self._closed:
            handle.cancel()
        self._handles = [h for h in self._handles if not h.done()]
        self._handles.append(handle)
        return handle


def _load_model(path: Path, options: ModelOptions):
    """Load a torchscript model or a state_dict with a provided definition."""
    import torch

    if not path.exists():
        raise FileNotFoundError(f"Model artifact not found: {path}")
    device = options.device
    if device == "auto":
        device = "cuda" if torch.cuda.is_available() else "cpu"
    model = None
    if path.suffix in (".pt", ".pth"):
        try:
            model = torch.jit.load(str(path), map_location=device)
        except Exception:
            if options.model_definition is None:
                raise
    if model is None:
        if options.model_definition is None:
            raise ValueError("State_dict checkpoint requires a model_definition with build_model().")
        model = _load_state_dict(path, options.model_definition, device)
    model.eval()
    return model, device


def _run_model(model, device: str, arr: np.ndarray) -> np.ndarray:
    import torch

    tensor = torch.from_numpy(arr).to(device)
    with torch.no_grad():
        out = model(tensor)
    return out.detach().float().cpu().numpy()


def _prepare_input(image2d: np.ndarray, options: ModelOptions) -> np.ndarray:
    if image2d.ndim != 2:
        raise ValueError("compute_probability expects a 2D array.")
    arr = image2d.astype(np.float32, copy=False)
    if options.invert:
        arr = arr.max() - arr
    arr = _normalize(arr, options)
    if options.expected_channels == 1:
        return arr[None, None, :, :]
    return np.repeat(arr[None, None, :, :], options.expected_channels, axis=1)


def _normalize(arr: np.ndarray, options: ModelOptions) -> np.ndarray:
    mode = options.normalize
    if mode == "minmax":
        vmin, vmax = float(arr.min()), float(arr.max())
        if vmax > vmin:
            arr = (arr - vmin) / (vmax - vmin)
    elif mode == "zscore":
        mean = float(arr.mean())
        std = float(arr.std())
        if std > 0:
            arr = (arr - mean) / std
    elif mode == "percentile":
        low = np.percentile(arr, options.p_low)
        high = np.percentile(arr, options.p_high)
        if high > low:
            arr = np.clip((arr - low) / (high - low), 0.0, 1.0)
    return arr


def _to_probability(out: np.ndarray, mode: str) -> np.ndarray:
    """Squeeze the batch axis and map logits to 0..1 probabilities."""
    if out.ndim == 4:
        out = out[0]
    if out.ndim == 3 and out.shape[0] == 1:
        out = out[0]
    if out.ndim not in (2, 3):
        raise ValueError(f"Unexpected model output shape: {out.shape}")
    as_logits = mode == "logits" or (mode == "auto" and (out.min() < 0.0 or out.max() > 1.0))
    if as_logits:
        if out.ndim == 3:
            shifted = np.exp(out - out.max(axis=0, keepdims=True))
            out = shifted / shifted.sum(axis=0, keepdims=True)
        else:
            out = 1.0 / (1.0 + np.exp(-out))
    return out.astype(np.float32, copy=False)


def _empty_device_cache(device: str) -> None:
    if not str(device).startswith("cuda"):
        return
    try:
        import torch
    except ImportError:
        return
    torch.cuda.empty_cache()


def _load_state_dict(path: Path, definition_path: str, device: str):
    import torch

    module = _import_definition(definition_path)
    if not hasattr(module, "build_model"):
        raise ValueError("model_definition must define build_model().")
    model = module.build_model()
    state = torch.load(str(path), map_location=device)
    if isinstance(state, dict) and "state_dict" in state:
        state = state["state_dict"]
    model.load_state_dict(state)
    model.to(device)
    return model


def _import_definition(definition_path: str):
    path = Path(definition_path)
    spec = importlib.util.spec_from_file_location("segmentation_model_definition", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Unable to load model definition: {definition_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[arg-type]
    return module
