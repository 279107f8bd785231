"""
Tests for the run lock behind disable_concurrent_builds
"""

import threading
import time

import pytest

from stagerun.dsl import pipeline, sh, stage
from stagerun.errors import ConcurrentRunError
from stagerun.lock import FileRunLock, RedisRunLock, lock_key
from stagerun.reporter import FAILURE, SKIPPED
from stagerun.ui.console import Console


class FakeRedis:
    """Just enough of redis.Redis for SET NX EX / GET / DELETE."""

    def __init__(self):
        self.data = {}
        self.ttl = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttl[key] = ex
        return True

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        self.data.pop(key, None)


class TestFileRunLock:
    """flock-based lock per pipeline name"""

    def test_reject_while_held(self, tmp_path):
        first = FileRunLock("app", tmp_path, policy="reject")
        second = FileRunLock("app", tmp_path, policy="reject")

        with first:
            with pytest.raises(ConcurrentRunError, match="already running"):
                second.acquire()
        with second:
            assert second.held

    def test_different_pipelines_do_not_conflict(self, tmp_path):
        with FileRunLock("app", tmp_path, policy="reject"):
            with FileRunLock("other", tmp_path, policy="reject") as other:
                assert other.held

    def test_wait_queues_until_release(self, tmp_path):
        holder = FileRunLock("app", tmp_path)
        holder.acquire()
        messages = []
        waiter = FileRunLock("app", tmp_path, poll_interval=0.02, on_wait=messages.append)

        timer = threading.Timer(0.3, holder.release)
        timer.start()
        started = time.monotonic()
        with waiter:
            waited = time.monotonic() - started
        timer.join()

        assert waited >= 0.2
        assert len(messages) == 1

    def test_invalid_policy(self, tmp_path):
        with pytest.raises(ValueError):
            FileRunLock("app", tmp_path, policy="maybe")


class TestRedisRunLock:
    """SET NX EX lock for runners on several hosts"""

    def test_acquire_reject_and_release(self):
        client = FakeRedis()
        first = RedisRunLock("app", client, policy="reject", ttl_seconds=60)
        second = RedisRunLock("app", client, policy="reject")

        first.acquire()
        assert client.get(lock_key("app")) == first.owner
        assert client.ttl[lock_key("app")] == 60
        with pytest.raises(ConcurrentRunError):
            second.acquire()

        first.release()
        assert second.try_acquire()

    def test_release_only_by_owner(self):
        client = FakeRedis()
        lock = RedisRunLock("app", client)
        lock.acquire()
        client.data[lock_key("app")] = "someone-else"

        lock.release()

        assert client.get(lock_key("app")) == "someone-else"


def _serial_pipeline():
    return pipeline(
        "serial",
        stage("work", sh("echo start >> runs.log; sleep 0.3; echo end >> runs.log")),
        disable_concurrent_builds=True,
    )


class TestDisableConcurrentBuilds:
    """Overlapping triggers of one pipeline"""

    def test_overlapping_runs_queue(self, run, workspace):
        results = []

        def trigger():
            results.append(run(_serial_pipeline(), console=Console()))

        threads = [threading.Thread(target=trigger) for _ in range(2)]
        for t in threads:
            t.start()
            time.sleep(0.05)
        for t in threads:
            t.join(timeout=10)

        assert [r.ok for r in results] == [True, True]
        assert (workspace / "runs.log").read_text().split() == ["start", "end", "start", "end"]

    def test_reject_policy_fails_without_running(self, run, workspace, tmp_path):
        held = FileRunLock("serial", tmp_path / "locks", policy="reject")
        rejecting = FileRunLock("serial", tmp_path / "locks", policy="reject")

        with held:
            result = run(_serial_pipeline(), lock=rejecting)

        assert result.status == FAILURE
        assert isinstance(result.error, ConcurrentRunError)
        assert [s.status for s in result.stages] == [SKIPPED]
        assert not (workspace / "runs.log").exists()

    def test_lock_released_after_failed_run(self, run, tmp_path):
        failing = pipeline("serial", stage("boom", sh("exit 1")), disable_concurrent_builds=True)

        assert run(failing).status == FAILURE

        with FileRunLock("serial", tmp_path / "locks", policy="reject") as lock:
            assert lock.held
