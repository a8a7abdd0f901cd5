"""
Duel lifecycle: time-derived status, reconciliation and explicit transitions.

    waiting --start()--> starting --pre-roll elapses--> active --duration--> completed
    waiting --scheduled start reached without start()--> starting/active   (clock path)
    waiting|active --cancel()--> cancelled

The stored status only ever moves forward along that path. ``start()`` does
not add a second mechanism: it pulls the scheduled start in to
``now + pre-roll`` so the clock path takes over afterwards.
"""

import math
import threading
from datetime import datetime, timedelta
from typing import Callable

from duels.config import PREROLL_SECONDS
from duels.errors import Forbidden, InvalidTransition, NotFound
from duels.log import get_logger
from duels.models import (
    ACTIVE, CANCELLED, COMPLETED, STARTING, STATUS_ORDER, TERMINAL_STATUSES, WAITING,
    Match, utcnow,
)
from duels.store import MatchStore

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════
#  PURE TIME MATH
# ═══════════════════════════════════════════════════════════════════════

def end_time(match: Match) -> datetime:
    return match.scheduled_start_time + timedelta(minutes=match.duration_minutes)


def time_status(scheduled_start: datetime, duration_minutes: int, now: datetime,
                preroll: int = PREROLL_SECONDS) -> str:
    """Status implied by the schedule alone."""
    if now < scheduled_start:
        if (scheduled_start - now).total_seconds() <= preroll:
            return STARTING
        return WAITING
    if now <= scheduled_start + timedelta(minutes=duration_minutes):
        return ACTIVE
    return COMPLETED


def effective_status(match: Match, now: datetime, preroll: int = PREROLL_SECONDS) -> str:
    """Status a reader should see at ``now``.

    Terminal statuses are sticky. Otherwise the furthest of the stored status and
    the schedule-derived status wins, so a read never moves a match backward.
    """
    if match.status in TERMINAL_STATUSES:
        return match.status
    derived = time_status(match.scheduled_start_time, match.duration_minutes, now, preroll)
    if STATUS_ORDER[derived] >= STATUS_ORDER[match.status]:
        return derived
    return match.status


def threshold_timestamps(match: Match, status: str, preroll: int = PREROLL_SECONDS) -> dict:
    """Schedule instants for every threshold passed on the way to ``status``."""
    start = match.scheduled_start_time
    stamps = {}
    order = STATUS_ORDER.get(status, -1)
    if order >= STATUS_ORDER[STARTING]:
        stamps["starting_at"] = start - timedelta(seconds=preroll)
    if order >= STATUS_ORDER[ACTIVE]:
        stamps["started_at"] = start
    if order >= STATUS_ORDER[COMPLETED]:
        stamps["ended_at"] = end_time(match)
    return stamps


def time_until_start(match: Match, now: datetime) -> int:
    return max(0, math.floor((match.scheduled_start_time - now).total_seconds()))


def elapsed_time(match: Match, now: datetime) -> int:
    until = now
    if match.status == COMPLETED and match.ended_at is not None:
        until = min(now, match.ended_at)
    if until < match.scheduled_start_time:
        return 0
    elapsed = math.floor((until - match.scheduled_start_time).total_seconds())
    return min(elapsed, match.duration_minutes * 60)


def remaining_time(match: Match, now: datetime) -> int:
    if match.status in TERMINAL_STATUSES:
        return 0
    if now < match.scheduled_start_time:
        return match.duration_minutes * 60
    return max(0, math.floor((end_time(match) - now).total_seconds()))


def countdown(match: Match, now: datetime, preroll: int = PREROLL_SECONDS) -> int:
    """Seconds left in the pre-roll; 0 outside of ``starting``."""
    if match.status != STARTING:
        return 0
    left = (match.scheduled_start_time - now).total_seconds()
    return max(0, min(preroll, math.ceil(left)))


def status_message(status: str, until_start: int, remaining: int, count: int) -> str:
    if status == WAITING:
        if until_start > 0:
            return f"Duel starts in {until_start // 60} minutes and {until_start % 60} seconds"
        return "Waiting for duel to start"
    if status == STARTING:
        return f"Duel starting in {count} seconds..." if count > 0 else "Starting now!"
    if status == ACTIVE:
        return f"Duel is active! {remaining // 60} minutes and {remaining % 60} seconds remaining"
    if status == COMPLETED:
        return "Duel has completed"
    return f"Duel is {status}"


def status_report(match: Match, now: datetime, preroll: int = PREROLL_SECONDS) -> dict:
    until_start = time_until_start(match, now)
    remaining = remaining_time(match, now)
    count = countdown(match, now, preroll)
    report = {
        "status": match.status,
        "timeUntilStart": until_start,
        "remainingTime": remaining,
        "elapsedTime": elapsed_time(match, now),
        "message": status_message(match.status, until_start, remaining, count),
    }
    if match.status == STARTING:
        report["countdownSeconds"] = count
    return report


# ═══════════════════════════════════════════════════════════════════════
#  DEFERRED PROMOTION
# ═══════════════════════════════════════════════════════════════════════

class PromotionScheduler:
    """One cancellable one-shot timer per match."""

    def __init__(self):
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, match_id: str, delay: float, callback: Callable[[str], None]) -> None:
        timer = threading.Timer(max(0.0, delay), self._fire, args=(match_id, callback))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(match_id, None)
            self._timers[match_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _fire(self, match_id: str, callback: Callable[[str], None]) -> None:
        with self._lock:
            timer = self._timers.get(match_id)
            if timer is not None and timer is threading.current_thread():
                del self._timers[match_id]
        try:
            callback(match_id)
        except Exception:
            logger.exception("Deferred promotion for duel %s failed", match_id)

    def cancel(self, match_id: str) -> bool:
        with self._lock:
            timer = self._timers.pop(match_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()


# ═══════════════════════════════════════════════════════════════════════
#  ENGINE
# ═══════════════════════════════════════════════════════════════════════

class LifecycleEngine:
    """Applies status transitions to stored matches through conditional writes."""

    def __init__(self, store: MatchStore, scheduler: PromotionScheduler | None = None,
                 clock: Callable[[], datetime] = utcnow, preroll: int = PREROLL_SECONDS):
        self.store = store
        self.scheduler = scheduler or PromotionScheduler()
        self.clock = clock
        self.preroll = preroll

    def reconcile(self, match_id: str, now: datetime | None = None) -> Match:
        """Bring the stored status in line with ``effective_status`` and return the record."""
        now = now or self.clock()
        while True:
            match = self.store.get(match_id)
            target = effective_status(match, now, self.preroll)
            if target == match.status:
                return match
            record, applied = self.store.compare_and_set_status(
                match_id, [match.status], target,
                timestamps=threshold_timestamps(match, target, self.preroll),
            )
            if applied:
                logger.info("Duel %s: %s -> %s", match_id, match.status, target)
                return record
            # Another reader moved it first; look again

    def start(self, match_id: str, requester: str | None = None, now: datetime | None = None) -> Match:
        now = now or self.clock()
        match = self.reconcile(match_id, now)
        if match.status != WAITING:
            raise InvalidTransition(
                f'Cannot start a duel with status "{match.status}". Only waiting duels can be started.'
            )
        if requester and requester != match.creator:
            raise Forbidden("Only the creator can start this duel")
        record, applied = self.store.compare_and_set_status(
            match_id, [WAITING], STARTING,
            timestamps={"starting_at": now},
            scheduled_start_time=now + timedelta(seconds=self.preroll),
        )
        if not applied:
            raise InvalidTransition(
                f'Cannot start a duel with status "{record.status}". Only waiting duels can be started.'
            )
        self.scheduler.schedule(match_id, self.preroll, self.promote)
        logger.info("Duel %s starting in %ds", match_id, self.preroll)
        return record

    def promote(self, match_id: str) -> bool:
        """Deferred ``starting -> active``; a no-op unless the match is still starting."""
        now = self.clock()
        try:
            match = self.store.get(match_id)
        except NotFound:
            logger.debug("Duel %s vanished before promotion", match_id)
            return False
        if match.status != STARTING:
            logger.debug("Duel %s is %s, promotion skipped", match_id, match.status)
            return False
        _, applied = self.store.compare_and_set_status(
            match_id, [STARTING], ACTIVE,
            timestamps={"started_at": max(now, match.scheduled_start_time)},
        )
        if applied:
            logger.info("Duel %s automatically transitioned to active", match_id)
        return applied

    def cancel(self, match_id: str, now: datetime | None = None) -> Match:
        match = self.reconcile(match_id, now)
        if match.status not in (WAITING, ACTIVE):
            raise InvalidTransition(f"Cannot cancel a {match.status} duel")
        record, applied = self.store.compare_and_set_status(match_id, [WAITING, ACTIVE], CANCELLED)
        if not applied:
            raise InvalidTransition(f"Cannot cancel a {record.status} duel")
        self.scheduler.cancel(match_id)
        logger.info("Duel %s cancelled", match_id)
        return record

    def complete(self, match_id: str, winner: str | None, now: datetime | None = None) -> tuple[Match, bool]:
        """Finish an active match early (all problems solved)."""
        now = now or self.clock()
        record, applied = self.store.compare_and_set_status(
            match_id, [ACTIVE], COMPLETED, timestamps={"ended_at": now}, winner=winner,
        )
        if applied:
            logger.info("Duel %s completed, winner %s", match_id, winner)
        return record, applied
