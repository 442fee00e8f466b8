import os
from typing import List, Optional

import matplotlib
import numpy as np
import pytest

from cristae_density.config import CountingConfig, PrepareConfig
from cristae_density.errors import UserAbort
from cristae_density.jobs import JobHandle
from cristae_density.regions import Region, RegionCatalog
from cristae_density.segmentation import SegmentationClient
from cristae_density.session import Input, Output


def pytest_addoption(parser):
    parser.addoption(
        "--run-gui",
        action="store_true",
        default=False,
        help="Run GUI tests (requires Qt backend / Xvfb).",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "gui: GUI tests that require a Qt backend/Xvfb")


def pytest_collection_modifyitems(config, items):
    run_gui = config.getoption("--run-gui")
    selected_marker = config.getoption("-m")
    marker_includes_gui = selected_marker and "gui" in selected_marker

    if run_gui or marker_includes_gui:
        return

    skip_gui = pytest.mark.skip(reason="Use --run-gui or -m gui to run GUI tests.")
    for item in items:
        if "gui" in item.keywords:
            item.add_marker(skip_gui)


# Ensure a safe backend/environment for GUI tests under CI/headless
if "CI" in os.environ:
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    os.environ.setdefault("QT_XCB_GL_INTEGRATION", "none")
    os.environ.setdefault("QT_OPENGL", "software")
    os.environ.setdefault("MPLBACKEND", "Agg")
matplotlib.use(os.environ.get("MPLBACKEND", "Agg"), force=True)


# ---------------------------------------------------------------------------
# Segmentation fakes
# ---------------------------------------------------------------------------

OK = "ok"
HANG = "hang"
FAIL = "fail"


def striped_map(shape, columns, value=255, dtype=np.uint8):
    """Zero map with full-height stripes at the given x columns."""
    prob = np.zeros(shape, dtype=dtype)
    for x in columns:
        prob[:, x] = value
    return prob


class FakeClient(SegmentationClient):
    """Client whose load/compute resolve immediately, hang, or fail."""

    def __init__(self, load=OK, compute=OK, result=None):
        self.load_behaviour = load
        self.compute_behaviour = compute
        self.result = result
        self.loaded_paths = []
        self.computed_shapes = []
        self.handles: List[JobHandle] = []
        self.close_calls = 0

    def _handle(self, name, behaviour, value):
        handle = JobHandle(name)
        if behaviour == OK:
            handle.set_result(value)
        elif behaviour == FAIL:
            handle.set_error(RuntimeError(f"{name} failed"))
        self.handles.append(handle)
        return handle

    def load_model(self, path):
        self.loaded_paths.append(path)
        return self._handle("load_model", self.load_behaviour, True)

    def compute_probability(self, image):
        self.computed_shapes.append(image.shape)
        if self.result is None:
            value = np.full(image.shape, 0.5, dtype=np.float32)
        elif callable(self.result):
            value = self.result(image)
        else:
            value = self.result
        return self._handle("compute_probability", self.compute_behaviour, value)

    def close(self):
        self.close_calls += 1
        for handle in self.handles:
            handle.cancel()


class FakeClientFactory:
    """Builds one FakeClient per call following a plan of (load, compute) behaviours.

    The last plan entry repeats once the plan is exhausted.
    """

    def __init__(self, plan=None, result=None):
        self.plan = list(plan or [(OK, OK)])
        self.result = result
        self.instances: List[FakeClient] = []

    def __call__(self):
        step = self.plan[min(len(self.instances), len(self.plan) - 1)]
        client = FakeClient(load=step[0], compute=step[1], result=self.result)
        self.instances.append(client)
        return client

    @property
    def calls(self):
        return len(self.instances)


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class CollectRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)
        return 0


# ---------------------------------------------------------------------------
# Scripted UI
# ---------------------------------------------------------------------------


class ScriptedInput(Input):
    """Replays queued lines, choices and numbers.

    Running out of scripted lines or choices raises ``UserAbort``, the way a
    host window being closed would.
    """

    def __init__(self, lines=None, choices=None, numbers=None):
        self.lines = list(lines or [])
        self.choices = list(choices or [])
        self.numbers = list(numbers or [])
        self.prompts: List[str] = []
        self.defaults: List[int] = []

    def request_line(self, prompt):
        self.prompts.append(prompt)
        if not self.lines:
            raise UserAbort("script exhausted")
        return self.lines.pop(0)

    def request_choice(self, prompt, options, default):
        self.prompts.append(prompt)
        if not self.choices:
            raise UserAbort("script exhausted")
        return self.choices.pop(0)

    def request_number(self, prompt, default):
        self.defaults.append(default)
        return self.numbers.pop(0) if self.numbers else None


class RecordingOutput(Output):
    def __init__(self):
        self.events = []

    def show_region(self, name, raw_crop):
        self.events.append(("show", name, raw_crop.shape))

    def render_outline(self, points):
        self.events.append(("outline", list(points)))

    def render_markers(self, line, points):
        self.events.append(("markers", line, list(points)))

    def clear_markers(self):
        self.events.append(("clear",))

    def notify(self, message):
        self.events.append(("notify", message))

    def kinds(self):
        return [e[0] for e in self.events]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_prepare_config():
    return PrepareConfig(
        padding=20,
        max_attempts=2,
        load_timeout_s=1.0,
        compute_timeout_s=2.0,
        poll_interval_s=0.25,
        progress_interval_s=0.5,
        gc_batch_size=50,
    )


@pytest.fixture
def counting_config():
    return CountingConfig(threshold=128, min_width=2, min_distance=3)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def collect_recorder():
    return CollectRecorder()


@pytest.fixture
def source_image():
    rng = np.random.default_rng(0)
    return rng.integers(0, 255, size=(120, 160), dtype=np.uint8)


@pytest.fixture
def catalog():
    return RegionCatalog(
        [
            Region("M1", (10, 10, 50, 50)),
            Region("M2", (70, 20, 30, 30)),
            Region("M3", (110, 60, 40, 40)),
        ]
    )


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "model.pt"
    path.write_bytes(b"model")
    return path


def make_line(x0, y0, x1, y1) -> tuple:
    return ((float(x0), float(y0)), (float(x1), float(y1)))


def scripted(lines=None, choices=None, numbers: Optional[list] = None):
    return ScriptedInput(lines=lines, choices=choices, numbers=numbers)
