import threading
from concurrent.futures import Executor, Future
from pathlib import Path

import pytest

from abr_packager.engine import EncodeOutcome, EncodeRequest, EncodingEngine
from abr_packager.models import ErrorDetail


class FakeEngine(EncodingEngine):
    """Engine that completes instantly, or fails/raises for chosen heights.

    Successful encodes write a one-line media playlist so the on-disk layout
    looks like a real package.
    """

    def __init__(self, fail=None, raise_for=None, write_output=True):
        self.fail = dict(fail or {})
        self.raise_for = set(raise_for or ())
        self.write_output = write_output
        self.requests = []
        self._lock = threading.Lock()

    def encode(self, request: EncodeRequest) -> EncodeOutcome:
        with self._lock:
            self.requests.append(request)

        if request.height in self.raise_for:
            raise RuntimeError(f"engine crashed on {request.height}p")
        if request.height in self.fail:
            return EncodeOutcome.failed(
                ErrorDetail(message=self.fail[request.height], error_type="permanent")
            )

        if self.write_output:
            Path(request.playlist_path).write_text("#EXTM3U\n#EXT-X-ENDLIST\n")
        return EncodeOutcome.completed(0.01)


class InlineExecutor(Executor):
    """Runs each task synchronously inside ``submit``."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """Holds submitted tasks until the test runs them, in any order it likes."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run(self, position):
        future, fn, args, kwargs = self.pending[position]
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)

    def run_in_order(self, order):
        for position in order:
            self.run(position)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def input_video(tmp_path):
    """A dummy source file (content is irrelevant to the fake engine)."""
    path = tmp_path / "upload.mp4"
    path.write_bytes(b"test video content" * 1000)
    return path


@pytest.fixture
def output_root(tmp_path):
    return tmp_path / "package"
