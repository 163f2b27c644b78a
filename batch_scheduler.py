"""
batch_scheduler.py — runs the image classifier over the text survivors.

Survivors are split into groups of BATCH_SIZE. Every member of a group is
classified concurrently; the next group only starts once the whole group is
done. Checkpoint before each group:

  • cancelled?  → stop, keep the groups already completed
  • timed out?  → stop, keep the groups already completed, flag timed_out

A group in flight is never interrupted, and output follows input order, not
completion order. Survivors past MAX_IMAGE_ITEMS are never submitted; they
count as "not evaluated" and are not part of the result.

Items without an image URL cannot be checked and pass through unclassified.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import config
from image_classifier import Classification, ImageClassifier
from jobs import JobSession
from models import FilterOutcome

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    passed: list[FilterOutcome] = field(default_factory=list)
    evaluated: int = 0
    errors: int = 0                 # classified with a failure and passed through
    not_evaluated: int = 0
    groups_completed: int = 0
    cancelled: bool = False
    timed_out: bool = False

    @property
    def partial(self) -> bool:
        return self.cancelled or self.timed_out or self.not_evaluated > 0


class BatchScheduler:

    def __init__(
        self,
        classifier: ImageClassifier,
        *,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        max_items: Optional[int] = None,
    ) -> None:
        self._classifier = classifier
        self._batch_size = max(1, config.BATCH_SIZE if batch_size is None else batch_size)
        self._batch_delay = config.BATCH_DELAY if batch_delay is None else batch_delay
        self._max_items = config.MAX_IMAGE_ITEMS if max_items is None else max_items

    async def run(
        self,
        survivors: list[FilterOutcome],
        keyword: str,
        session: JobSession,
    ) -> BatchResult:
        result = BatchResult()

        eligible = survivors[: self._max_items]
        if len(survivors) > len(eligible):
            logger.warning(
                "[%s] %d text survivors exceed the image cap of %d — %d skipped",
                session.job_id, len(survivors), self._max_items, len(survivors) - len(eligible),
            )

        groups = [
            eligible[i : i + self._batch_size]
            for i in range(0, len(eligible), self._batch_size)
        ]

        done = 0
        for index, group in enumerate(groups):
            if index > 0:
                await self._cooldown()

            if session.cancelled:
                logger.info("[%s] Cancelled before image group %d/%d", session.job_id, index + 1, len(groups))
                result.cancelled = True
                break
            if session.expired():
                logger.warning(
                    "[%s] Job timeout (%.0fs) before image group %d/%d",
                    session.job_id, session.timeout or 0, index + 1, len(groups),
                )
                result.timed_out = True
                break

            verdicts = await asyncio.gather(
                *[self._classify(outcome, keyword) for outcome in group]
            )

            group_passed = 0
            for outcome, verdict in zip(group, verdicts):
                if verdict is not None:
                    outcome.passed_image = verdict.passed
                    outcome.labels = verdict.labels
                    outcome.image_error = verdict.error
                    if verdict.error:
                        result.errors += 1
                else:
                    outcome.passed_image = True
                if outcome.passed_image:
                    result.passed.append(outcome)
                    group_passed += 1

            result.evaluated += len(group)
            result.groups_completed += 1
            done += len(group)
            session.record_image(len(group), group_passed)
            logger.info(
                "[%s] Image group %d/%d: %d/%d passed",
                session.job_id, index + 1, len(groups), group_passed, len(group),
            )

        result.not_evaluated = len(survivors) - done
        return result

    async def _classify(self, outcome: FilterOutcome, keyword: str) -> Optional[Classification]:
        if not outcome.item.image_url:
            return None
        return await self._classifier.classify(outcome.item.image_url, keyword)

    async def _cooldown(self) -> None:
        """Pause between groups to stay under the label service's rate limits."""
        if self._batch_delay > 0:
            await asyncio.sleep(self._batch_delay)
