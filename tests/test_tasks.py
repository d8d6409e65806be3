"""Tests for background tasks and cancellation."""

import threading
import time

import pytest

from pvl.errors import TaskCancelled
from pvl.tasks import BackgroundRunner, CancellationToken


def _wait_for_cancel(token, started):
    started.set()
    while True:
        token.raise_if_cancelled()
        time.sleep(0.005)


def test_token():
    token = CancellationToken()
    assert not token.cancelled
    token.raise_if_cancelled()
    token.cancel()
    assert token.cancelled
    with pytest.raises(TaskCancelled):
        token.raise_if_cancelled()


def test_submit_returns_result():
    runner = BackgroundRunner()
    try:
        handle = runner.submit("add", lambda token, a, b: a + b, 2, 3)
        assert handle.result(timeout=5) == 5
        assert handle.done()
    finally:
        runner.shutdown()


def test_cancelled_task_yields_none():
    runner = BackgroundRunner()
    started = threading.Event()
    try:
        handle = runner.submit("loop", _wait_for_cancel, started)
        assert started.wait(timeout=5)
        handle.cancel()
        assert handle.result(timeout=5) is None
        assert handle.cancelled
    finally:
        runner.shutdown()


def test_exclusive_submission_supersedes_previous():
    runner = BackgroundRunner(max_workers=2)
    started = threading.Event()
    try:
        first = runner.submit_exclusive("recluster", _wait_for_cancel, started)
        assert started.wait(timeout=5)
        second = runner.submit_exclusive("recluster", lambda token: "fresh")
        assert first.result(timeout=5) is None
        assert first.cancelled
        assert second.result(timeout=5) == "fresh"
    finally:
        runner.shutdown()


def test_task_errors_propagate():
    def _boom(token):
        raise RuntimeError("broken pass")

    runner = BackgroundRunner()
    try:
        handle = runner.submit("boom", _boom)
        with pytest.raises(RuntimeError):
            handle.result(timeout=5)
    finally:
        runner.shutdown()
