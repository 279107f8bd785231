# lock.py
from __future__ import annotations

import fcntl
import os
import re
import socket
import time
import uuid
from pathlib import Path
from typing import IO, Callable, Optional

import redis

from .errors import ConcurrentRunError

# Runs of the same pipeline serialize on one lock per pipeline name.
# policy="wait": queue behind the active run; policy="reject": fail at once.


def _safe_name(pipeline: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", pipeline)


def lock_key(pipeline: str) -> str:
    return f"stagerun:run_lock:{pipeline}"


class RunLock:
    """Base class; subclasses implement try_acquire() / release()."""

    def __init__(
        self,
        pipeline: str,
        *,
        policy: str = "wait",
        poll_interval: float = 2.0,
        on_wait: Optional[Callable[[str], None]] = None,
    ):
        if policy not in ("wait", "reject"):
            raise ValueError(f"policy must be 'wait' or 'reject', got {policy!r}")
        self.pipeline = pipeline
        self.policy = policy
        self.poll_interval = poll_interval
        self.on_wait = on_wait
        self.held = False

    def try_acquire(self) -> bool:
        raise NotImplementedError

    def release(self) -> None:
        raise NotImplementedError

    def acquire(self) -> None:
        announced = False
        while not self.try_acquire():
            if self.policy == "reject":
                raise ConcurrentRunError(
                    f"Pipeline '{self.pipeline}' is already running and concurrent builds are disabled"
                )
            if not announced and self.on_wait is not None:
                self.on_wait(f"Waiting for the running build of '{self.pipeline}' to finish")
                announced = True
            time.sleep(self.poll_interval)
        self.held = True

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.held:
            self.release()
            self.held = False


class FileRunLock(RunLock):
    """Exclusive flock() on <lock_dir>/<pipeline>.lock; released by the OS if the process dies."""

    def __init__(self, pipeline: str, lock_dir: str | Path, **kwargs):
        super().__init__(pipeline, **kwargs)
        self.path = Path(lock_dir) / f"{_safe_name(pipeline)}.lock"
        self._fh: Optional[IO[str]] = None

    def try_acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = self.path.open("a+")
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.close()
            return False
        fh.seek(0)
        fh.truncate()
        fh.write(f"{socket.gethostname()}:{os.getpid()}\n")
        fh.flush()
        self._fh = fh
        return True

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None


class RedisRunLock(RunLock):
    """
    SET key owner NX EX ttl in Redis, for runners spread across hosts.
    The ttl bounds how long a crashed runner can block the pipeline.
    """

    def __init__(self, pipeline: str, client, *, ttl_seconds: int = 6 * 3600, **kwargs):
        super().__init__(pipeline, **kwargs)
        self.client = client
        self.key = lock_key(pipeline)
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex}"
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, pipeline: str, url: str, **kwargs) -> "RedisRunLock":
        return cls(pipeline, redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def try_acquire(self) -> bool:
        return bool(self.client.set(self.key, self.owner, nx=True, ex=self.ttl_seconds))

    def release(self) -> None:
        # only the owner may delete; an expired-and-retaken lock belongs to someone else
        if self.client.get(self.key) == self.owner:
            self.client.delete(self.key)
