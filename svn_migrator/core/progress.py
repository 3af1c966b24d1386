"""
Progress derivation for revision-driven phases.

The tracker turns revision counters into a percentage inside the band the
current phase owns (the fetch owns 20-70% of the whole job), plus throughput
and ETA. Percentages only ever move up, and small moves are suppressed.
Snapshots go to the progress channel every few revisions, never per line.
"""

from __future__ import annotations
import json
import logging
import time
from dataclasses import dataclass, asdict
from typing import Callable, List, Optional, Protocol, Tuple
import redis
from svn_migrator.db.models import Job

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    job_id: str
    progress_percentage: int
    current_revision: Optional[int]
    total_revisions: Optional[int]
    processing_speed: float
    eta: Optional[int]


class ProgressChannel(Protocol):
    def publish(self, snapshot: ProgressSnapshot) -> None: ...


class NullProgressChannel:
    def publish(self, snapshot: ProgressSnapshot) -> None:
        return None


class RecordingProgressChannel:
    """Keeps every snapshot in memory; handy for inspection."""

    def __init__(self):
        self.snapshots: List[ProgressSnapshot] = []

    def publish(self, snapshot: ProgressSnapshot) -> None:
        self.snapshots.append(snapshot)


class RedisProgressChannel:
    """Fire-and-forget publish on ``job_progress:<job_id>``."""

    def __init__(self, redis_url: str, client: "redis.Redis | None" = None):
        self.client = client or redis.Redis.from_url(redis_url, socket_timeout=2, socket_connect_timeout=2)

    @staticmethod
    def channel_name(job_id: str) -> str:
        return f"job_progress:{job_id}"

    def publish(self, snapshot: ProgressSnapshot) -> None:
        try:
            self.client.publish(self.channel_name(snapshot.job_id), json.dumps(asdict(snapshot)))
        except redis.RedisError as e:
            log.warning("Progress publish failed for job %s: %s", snapshot.job_id, e)


def band_percentage(revision: int, total: int, band: Tuple[int, int]) -> int:
    low, high = band
    if total <= 0:
        return low
    fraction = min(max(revision / total, 0.0), 1.0)
    return int(low + fraction * (high - low))


def estimate_eta(remaining: int, speed: float) -> Optional[int]:
    if speed <= 0:
        return None
    return int(max(remaining, 0) / speed)


class ProgressTracker:
    def __init__(self, job: Job, channel: ProgressChannel | None = None, band: Tuple[int, int] = (20, 70),
                 min_delta: int = 1, publish_every: int = 5, speed_interval: float = 10.0,
                 clock: Callable[[], float] = time.monotonic):
        self.job = job
        self.channel = channel or NullProgressChannel()
        self.band = band
        self.min_delta = min_delta
        self.publish_every = publish_every
        self.speed_interval = speed_interval
        self.clock = clock

        self._started_at = clock()
        self._speed_at = self._started_at
        self._start_revision = 0
        self._processed = 0

    @classmethod
    def from_settings(cls, job: Job, channel: ProgressChannel | None, settings, band=(20, 70)) -> "ProgressTracker":
        return cls(job, channel, band=band, min_delta=settings.progress_min_delta,
                   publish_every=settings.progress_publish_every,
                   speed_interval=settings.progress_speed_interval)

    def start(self, start_revision: int, total_revisions: Optional[int]) -> None:
        self._started_at = self._speed_at = self.clock()
        self._start_revision = start_revision
        self._processed = 0
        if total_revisions is not None:
            self.job.total_revisions = total_revisions

    def advance_to(self, percent: int) -> bool:
        """Raise overall progress to ``percent``; never lowers it."""
        percent = min(int(percent), 100)
        if percent <= (self.job.progress or 0):
            return False
        self.job.progress = percent
        return True

    def _propose(self, percent: int) -> bool:
        current = self.job.progress or 0
        if percent > current and percent - current >= self.min_delta:
            self.job.progress = percent
            return True
        return False

    def _refresh_speed(self, force: bool = False) -> None:
        now = self.clock()
        if not force and now - self._speed_at < self.speed_interval:
            return
        self._speed_at = now
        elapsed = now - self._started_at
        speed = self._processed / elapsed if elapsed > 0 else 0.0
        self.job.processing_speed = round(speed, 2)
        total = self.job.total_revisions
        if total:
            self.job.eta_seconds = estimate_eta(total - (self.job.current_revision or 0), speed)
        else:
            self.job.eta_seconds = None

    def observe(self, revision: int) -> Optional[ProgressSnapshot]:
        """Record a confirmed revision; returns the snapshot when one was published."""
        if self.job.current_revision is not None and revision <= self.job.current_revision:
            return None
        self.job.current_revision = revision
        self._processed += 1

        total = self.job.total_revisions
        if total:
            self._propose(band_percentage(revision, total, self.band))
        self._refresh_speed()

        if self._processed % self.publish_every == 0:
            return self.publish()
        return None

    def finish_band(self) -> ProgressSnapshot:
        self._refresh_speed(force=True)
        self.advance_to(self.band[1])
        return self.publish()

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            job_id=str(self.job.id),
            progress_percentage=self.job.progress or 0,
            current_revision=self.job.current_revision,
            total_revisions=self.job.total_revisions,
            processing_speed=self.job.processing_speed or 0.0,
            eta=self.job.eta_seconds,
        )

    def publish(self) -> ProgressSnapshot:
        snapshot = self.snapshot()
        self.channel.publish(snapshot)
        return snapshot
