import threading

import pytest

from cristae_density.jobs import CANCELLED, FAILED, PENDING, READY, CancelToken, JobHandle, _call_job, submit


class TestJobHandle:
    def test_first_resolution_wins(self) -> None:
        handle = JobHandle("job")
        assert handle.status == PENDING
        assert not handle.done()
        handle.set_result(5)
        handle.set_error(RuntimeError("late"))
        handle.cancel()
        assert handle.status == READY
        assert handle.result() == 5

    def test_error_reraised(self) -> None:
        handle = JobHandle("job")
        handle.set_error(KeyError("boom"))
        assert handle.status == FAILED
        with pytest.raises(KeyError):
            handle.result()

    def test_cancel_pending(self) -> None:
        handle = JobHandle("job")
        handle.cancel()
        assert handle.status == CANCELLED
        assert handle.cancel_token.is_cancelled()
        with pytest.raises(RuntimeError):
            handle.result()

    def test_result_before_done(self) -> None:
        with pytest.raises(RuntimeError):
            JobHandle("job").result()

    def test_wait_times_out(self) -> None:
        assert JobHandle("job").wait(0.01) is False

    def test_progress_clamped(self) -> None:
        handle = JobHandle("job")
        handle.set_progress(150, "almost")
        assert handle.progress == (100, "almost")
        handle.set_progress(None)
        assert handle.progress == (0, "")


class TestSubmit:
    def test_value(self) -> None:
        handle = submit(lambda: 42, name="answer")
        assert handle.wait(5)
        assert handle.status == READY
        assert handle.result() == 42

    def test_error(self) -> None:
        def _fail():
            raise ValueError("bad")

        handle = submit(_fail)
        assert handle.wait(5)
        assert handle.status == FAILED
        assert isinstance(handle.error, ValueError)

    def test_progress_and_cancel_token_passed(self) -> None:
        seen = {}

        def _job(progress, cancel_token):
            progress(30, "working")
            seen["token"] = cancel_token
            return "done"

        token = CancelToken()
        handle = submit(_job, cancel_token=token)
        assert handle.wait(5)
        assert seen["token"] is token
        assert handle.progress == (30, "working")

    def test_cancelled_while_running(self) -> None:
        started = threading.Event()
        release = threading.Event()

        def _job(progress, cancel_token):
            started.set()
            release.wait(5)
            return 1

        handle = submit(_job)
        assert started.wait(5)
        handle.cancel()
        release.set()
        assert handle.status == CANCELLED

    def test_pre_cancelled_token(self) -> None:
        token = CancelToken()
        token.cancel()
        handle = submit(lambda: 1, cancel_token=token)
        assert handle.wait(5)
        assert handle.status == CANCELLED


def test_call_job_signatures() -> None:
    calls = []

    def progress(*_):
        calls.append("p")

    token = CancelToken()
    assert _call_job(lambda: 1, progress, token) == 1
    assert _call_job(lambda p: p is progress, progress, token) is True
    assert _call_job(lambda p, c: c is token, progress, token) is True
    assert _call_job(lambda *args: len(args), progress, token) == 2
