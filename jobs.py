"""
jobs.py — in-flight discovery jobs and their cancellation flags.

A JobRegistry is owned by whoever builds the pipeline (the web server, a
test, a script) and passed in explicitly. Each running job holds one
JobSession; the fetcher and the batch scheduler read it at their checkpoints
(page boundaries, group boundaries) and bump its counters as they go.

Mutation rules:
  • counters only ever increase
  • the cancellation flag only ever goes False → True
Both are plain attribute writes on the event loop, so no lock is needed.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class DuplicateJobError(ValueError):
    """A job with the requested id is already running."""


class JobSession:

    def __init__(
        self,
        job_id: str,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.job_id = job_id
        self.timeout = timeout
        self._clock = clock
        self.started_at = clock()
        self._cancelled = False

        self.pages_fetched = 0
        self.fetched = 0
        self.text_passed = 0
        self.image_evaluated = 0
        self.image_passed = 0

    # ── Cancellation ──────────────────────────────────────────────────────────

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            logger.info("[%s] Cancellation requested", self.job_id)
        self._cancelled = True

    # ── Wall-clock limit ──────────────────────────────────────────────────────

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def expired(self) -> bool:
        return self.timeout is not None and self.elapsed() >= self.timeout

    # ── Progress counters ─────────────────────────────────────────────────────

    def record_page(self, item_count: int) -> None:
        self.pages_fetched += 1
        self.fetched += max(0, item_count)

    def record_text_passed(self, count: int) -> None:
        self.text_passed += max(0, count)

    def record_image(self, evaluated: int, passed: int) -> None:
        self.image_evaluated += max(0, evaluated)
        self.image_passed += max(0, passed)

    def progress(self) -> dict:
        return {
            "job_id":          self.job_id,
            "cancelled":       self._cancelled,
            "elapsed_s":       round(self.elapsed(), 1),
            "pages_fetched":   self.pages_fetched,
            "fetched":         self.fetched,
            "text_passed":     self.text_passed,
            "image_evaluated": self.image_evaluated,
            "image_passed":    self.image_passed,
        }


class JobRegistry:
    """Table of live sessions keyed by job id."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._sessions: dict[str, JobSession] = {}
        self._clock = clock

    def start(self, job_id: Optional[str] = None, timeout: Optional[float] = None) -> JobSession:
        job_id = job_id or uuid.uuid4().hex[:12]
        if job_id in self._sessions:
            raise DuplicateJobError(f"Job {job_id} is already running")
        session = JobSession(job_id, timeout=timeout, clock=self._clock)
        self._sessions[job_id] = session
        logger.info("[%s] Job registered (%d live)", job_id, len(self._sessions))
        return session

    def get(self, job_id: str) -> Optional[JobSession]:
        return self._sessions.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """Flag a job for cancellation. Returns False when no such job is live."""
        session = self._sessions.get(job_id)
        if session is None:
            return False
        session.cancel()
        return True

    def is_cancelled(self, job_id: str) -> bool:
        session = self._sessions.get(job_id)
        return session is not None and session.cancelled

    def end(self, job_id: str) -> None:
        if self._sessions.pop(job_id, None) is not None:
            logger.info("[%s] Job removed (%d live)", job_id, len(self._sessions))

    def cancel_all(self) -> int:
        sessions = list(self._sessions.values())
        for session in sessions:
            session.cancel()
        return len(sessions)

    def active(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._sessions
