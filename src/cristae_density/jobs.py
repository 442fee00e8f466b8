"""Background job handles with bounded waits and cooperative cancellation.

A job runs a callable on a daemon worker thread and exposes a handle the
caller polls: ``done()``, ``wait(timeout)``, ``result()`` and ``cancel()``.
The caller's control flow stays single-threaded; the worker only produces a
value (or an error) that the caller observes through the handle.
"""

from __future__ import annotations

import inspect
import threading
import traceback
import uuid
from typing import Any, Callable, Optional, Tuple

from cristae_density.logger import get_logger

LOGGER = get_logger(__name__)

PENDING = "pending"
READY = "ready"
FAILED = "failed"
CANCELLED = "cancelled"


class CancelToken:
    """Thread-safe cancellation token.

    Notes
    -----
    Cancellation is cooperative: workers must check ``is_cancelled()``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True

    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled


class JobHandle:
    """Observable completion handle for one background job.

    Attributes
    ----------
    name : str
        Job name used for logging.
    job_id : str
        Unique identifier for job tracking and logging.
    cancel_token : CancelToken
        Cooperative cancellation token for this job.
    """

    def __init__(self, name: str, cancel_token: Optional[CancelToken] = None) -> None:
        self.name = name
        self.job_id = f"job-{uuid.uuid4().hex[:8]}"
        self.cancel_token = cancel_token or CancelToken()
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._status = PENDING
        self._value: Any = None
        self._error: Optional[BaseException] = None
        self._traceback = ""
        self._progress: Tuple[int, str] = (0, "")

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    @property
    def progress(self) -> Tuple[int, str]:
        with self._lock:
            return self._progress

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    def done(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; return True once the job resolved."""
        return self._event.wait(timeout)

    def result(self) -> Any:
        """Return the job's value, re-raising its error if it failed."""
        if not self._event.is_set():
            raise RuntimeError(f"Job {self.name} has not finished.")
        with self._lock:
            if self._status == FAILED and self._error is not None:
                raise self._error
            if self._status == CANCELLED:
                raise RuntimeError(f"Job {self.name} was cancelled.")
            return self._value

    def cancel(self) -> None:
        """Request cancellation; a pending handle resolves as cancelled."""
        self.cancel_token.cancel()
        self._resolve(CANCELLED)

    def set_progress(self, value: Optional[int] = None, message: str = "") -> None:
        val = 0 if value is None else int(max(0, min(100, value)))
        with self._lock:
            self._progress = (val, message)

    def set_result(self, value: Any) -> None:
        self._resolve(READY, value=value)

    def set_error(self, error: BaseException, tb: str = "") -> None:
        self._resolve(FAILED, error=error, tb=tb)

    def _resolve(self, status: str, value: Any = None, error: Optional[BaseException] = None, tb: str = "") -> None:
        with self._lock:
            if self._status != PENDING:
                return
            self._status = status
            self._value = value
            self._error = error
            self._traceback = tb
        self._event.set()


def submit(
    fn: Callable[..., Any],
    *,
    name: Optional[str] = None,
    cancel_token: Optional[CancelToken] = None,
) -> JobHandle:
    """Run ``fn`` on a daemon thread and return its handle."""
    handle = JobHandle(name or getattr(fn, "__name__", "Job"), cancel_token)

    def _run() -> None:
        LOGGER.debug("Job started: %s (%s)", handle.name, handle.job_id)
        if handle.cancel_token.is_cancelled():
            handle.cancel()
            return
        try:
            value = _call_job(fn, handle.set_progress, handle.cancel_token)
        except Exception as exc:
            err = traceback.format_exc()
            LOGGER.debug("Job error: %s\n%s", handle.name, err)
            handle.set_error(exc, err)
            return
        if handle.cancel_token.is_cancelled():
            handle.cancel()
        else:
            handle.set_result(value)

    thread = threading.Thread(target=_run, name=f"{handle.name}-{handle.job_id}", daemon=True)
    thread.start()
    return handle


def _call_job(fn: Callable[..., Any], progress: Callable[..., Any], cancel_token: CancelToken) -> Any:
    """Invoke a job function with an optional (progress, cancel_token) signature.

    The helper inspects the function signature to support:
    - fn()
    - fn(progress)
    - fn(progress, cancel_token)
    """
    signature = inspect.signature(fn)
    params = list(signature.parameters.values())
    if any(p.kind == p.VAR_POSITIONAL for p in params):
        return fn(progress, cancel_token)
    if len(params) == 0:
        return fn()
    if len(params) == 1:
        return fn(progress)
    return fn(progress, cancel_token)
