"""
Match operations exposed to the HTTP layer.

Validates input, then delegates to the store (record invariants), the
lifecycle engine (status), the selector (problem assignment) and the scoring
pass. Every read of a match reconciles its status first.
"""

import random
from datetime import datetime
from typing import Callable

from duels import config
from duels.catalog import ProblemCatalog
from duels.config import Settings
from duels.errors import (
    AlreadyGenerated, Forbidden, InvalidTransition, NoCandidates, NotFound, ValidationError,
)
from duels.lifecycle import LifecycleEngine, PromotionScheduler, status_report
from duels.log import get_logger
from duels.models import (
    ACTIVE, STATUSES, TERMINAL_STATUSES, WAITING,
    Match, generate_match_id, parse_timestamp, problem_key, utcnow,
)
from duels.scoring import ScoringResult, check_submissions
from duels.selector import select_problems
from duels.store import DuplicateMatchId, MatchStore

logger = get_logger(__name__)

SORT_FIELDS = {
    "createdAt": lambda m: m.created_at,
    "scheduledStartTime": lambda m: m.scheduled_start_time,
    "name": lambda m: m.name.lower(),
    "status": lambda m: m.status,
}


# ── Input coercion ────────────────────────────────────────────────────

def _as_int(value, name: str, lo: int | None = None, hi: int | None = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float) and value != number:
        raise ValidationError(f"{name} must be an integer")
    if lo is not None and number < lo:
        raise ValidationError(f"{name} must be at least {lo}")
    if hi is not None and number > hi:
        raise ValidationError(f"{name} must be at most {hi}")
    return number


def _as_handle(value, name: str = "handle") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


class MatchService:

    def __init__(self, judge, catalog: ProblemCatalog | None = None, store: MatchStore | None = None,
                 settings: Settings | None = None, clock: Callable[[], datetime] = utcnow,
                 scheduler: PromotionScheduler | None = None, rng: random.Random | None = None):
        self.judge = judge
        self.catalog = catalog if catalog is not None else ProblemCatalog()
        self.store = store if store is not None else MatchStore()
        self.settings = settings or Settings()
        self.clock = clock
        self.rng = rng
        self.lifecycle = LifecycleEngine(self.store, scheduler, clock, self.settings.preroll_seconds)

    def shutdown(self) -> None:
        self.lifecycle.scheduler.shutdown()

    # ═══════════════════════════════════════════════════════════════════
    #  MATCH RECORD
    # ═══════════════════════════════════════════════════════════════════

    def create(self, name, participants, creator, scheduled_start_time,
               duration_minutes=config.DEFAULT_DURATION_MINUTES,
               rating_min=config.DEFAULT_MIN_RATING, rating_max=config.DEFAULT_MAX_RATING,
               problem_count=config.DEFAULT_PROBLEM_COUNT, is_private=False) -> Match:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Duel name is required")
        name = name.strip()
        if len(name) > config.MAX_NAME_LENGTH:
            raise ValidationError(f"Duel name cannot exceed {config.MAX_NAME_LENGTH} characters")
        creator = _as_handle(creator, "creator")
        if participants is None:
            participants = []
        if not isinstance(participants, (list, tuple)):
            raise ValidationError("participants must be a list of handles")
        handles = [_as_handle(h) for h in participants]
        if creator not in handles:
            handles.insert(0, creator)
        handles = list(dict.fromkeys(handles))

        if scheduled_start_time is None:
            raise ValidationError("Scheduled start time is required")
        try:
            start = parse_timestamp(scheduled_start_time)
        except (TypeError, ValueError):
            raise ValidationError("Invalid scheduled start time format")
        now = self.clock()
        if start <= now:
            raise ValidationError("Scheduled start time must be in the future")

        duration = _as_int(duration_minutes, "durationMinutes")
        if not config.MIN_DURATION_MINUTES <= duration <= config.MAX_DURATION_MINUTES:
            raise ValidationError(
                f"Duel duration must be between {config.MIN_DURATION_MINUTES} "
                f"and {config.MAX_DURATION_MINUTES} minutes"
            )
        rating_min = _as_int(rating_min, "ratingMin", 0)
        rating_max = _as_int(rating_max, "ratingMax", 0)
        if rating_min > rating_max:
            raise ValidationError("ratingMin cannot exceed ratingMax")
        count = _as_int(problem_count, "problemCount", 1, config.MAX_PROBLEM_COUNT)

        for _ in range(5):
            match = Match(
                id=generate_match_id(),
                name=name,
                creator=creator,
                participants=handles,
                scheduled_start_time=start,
                duration_minutes=duration,
                rating_min=rating_min,
                rating_max=rating_max,
                problem_count=count,
                is_private=bool(is_private),
                created_at=now,
                scores={h: 0 for h in handles},
            )
            try:
                stored = self.store.insert(match)
            except DuplicateMatchId:
                continue
            logger.info("Duel %s created by %s (%d participants)", stored.id, creator, len(handles))
            return stored
        raise RuntimeError("Could not allocate a unique duel id")

    def get(self, match_id: str) -> Match:
        return self.lifecycle.reconcile(match_id)

    def add_participant(self, match_id: str, handle) -> Match:
        handle = _as_handle(handle)
        self.lifecycle.reconcile(match_id)
        match, added = self.store.add_participant(match_id, handle, allowed_statuses=(WAITING, ACTIVE))
        if added:
            logger.info("%s joined duel %s", handle, match_id)
        return match

    def record_score(self, match_id: str, handle, score) -> Match:
        handle = _as_handle(handle)
        value = _as_int(score, "score", 0)
        match, _ = self.store.set_score(match_id, handle, value)
        return match

    def delete(self, match_id: str, requester: str | None = None) -> Match:
        match = self.store.get(match_id)
        if requester and requester != match.creator:
            raise Forbidden("Only the creator can delete this duel")
        self.lifecycle.scheduler.cancel(match_id)
        removed = self.store.delete(match_id)
        logger.info("Duel %s deleted", match_id)
        return removed

    def clear_all(self) -> int:
        removed = 0
        for match_id in self.store.ids():
            self.lifecycle.scheduler.cancel(match_id)
            try:
                self.store.delete(match_id)
            except NotFound:
                continue
            removed += 1
        return removed

    # ═══════════════════════════════════════════════════════════════════
    #  LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════

    def start(self, match_id: str, requester: str | None = None) -> Match:
        return self.lifecycle.start(match_id, requester or None)

    def cancel(self, match_id: str) -> Match:
        return self.lifecycle.cancel(match_id)

    def status(self, match_id: str) -> tuple[Match, dict]:
        now = self.clock()
        match = self.lifecycle.reconcile(match_id, now)
        return match, status_report(match, now, self.settings.preroll_seconds)

    # ═══════════════════════════════════════════════════════════════════
    #  PROBLEMS & SCORING
    # ═══════════════════════════════════════════════════════════════════

    def ensure_catalog(self) -> None:
        if len(self.catalog) == 0:
            logger.info("Problem catalog empty, refreshing from the judge")
            self.catalog.refresh(self.judge)

    def generate_problems(self, match_id: str) -> Match:
        match = self.lifecycle.reconcile(match_id)
        if match.problems_generated:
            return match
        if match.status in TERMINAL_STATUSES:
            raise InvalidTransition(f"Cannot generate problems for a {match.status} duel")
        self.ensure_catalog()
        picks = select_problems(
            self.judge, self.catalog, match.rating_min, match.rating_max,
            match.participants, match.problem_count,
            rng=self.rng, workers=self.settings.judge_workers,
        )
        if not picks:
            raise NoCandidates("No problems found matching the duel criteria")
        try:
            match = self.store.set_problems(match_id, [p.to_problem() for p in picks])
        except AlreadyGenerated:
            return self.store.get(match_id)
        logger.info("Duel %s: %d problems generated", match_id, len(match.problems))
        return match

    def check_submissions(self, match_id: str) -> ScoringResult:
        return check_submissions(self.store, self.lifecycle, self.judge, match_id,
                                 workers=self.settings.judge_workers)

    # ═══════════════════════════════════════════════════════════════════
    #  LISTING
    # ═══════════════════════════════════════════════════════════════════

    def _page(self, predicate, limit, skip, sort, order) -> tuple[list[Match], int]:
        limit = _as_int(limit, "limit", 1, 100)
        skip = _as_int(skip, "skip", 0)
        key = SORT_FIELDS.get(sort)
        if key is None:
            raise ValidationError(f"Cannot sort by {sort}. Use one of: {', '.join(SORT_FIELDS)}")
        self.reconcile_all()
        return self.store.query(
            predicate, sort_key=key, reverse=(order != "asc"), skip=skip, limit=limit,
        )

    def reconcile_all(self) -> None:
        """Bring every stored status up to the clock before filtering on it."""
        now = self.clock()
        for match_id in self.store.ids():
            try:
                self.lifecycle.reconcile(match_id, now)
            except NotFound:
                continue

    @staticmethod
    def _status_filter(status):
        if status in (None, "", "all"):
            return None
        if status not in STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(STATUSES)}")
        return status

    def list_matches(self, status="all", include_private=False, limit=20, skip=0,
                     sort="createdAt", order="desc") -> tuple[list[Match], int]:
        status = self._status_filter(status)

        def wanted(m):
            if status and m.status != status:
                return False
            return include_private or not m.is_private

        return self._page(wanted, limit, skip, sort, order)

    def matches_for_handle(self, handle, status="all", limit=20, skip=0,
                           sort="createdAt", order="desc") -> tuple[list[Match], int]:
        handle = _as_handle(handle)
        status = self._status_filter(status)
        return self._page(
            lambda m: handle in m.participants and (not status or m.status == status),
            limit, skip, sort, order,
        )

    def matches_by_creator(self, creator, limit=100, skip=0) -> tuple[list[Match], int]:
        creator = _as_handle(creator, "creator")
        return self._page(lambda m: m.creator == creator, limit, skip, "createdAt", "desc")

    def recent(self, limit=10) -> list[Match]:
        matches, _ = self._page(None, limit, 0, "createdAt", "desc")
        return matches

    # ═══════════════════════════════════════════════════════════════════
    #  TASKS (selector and judge lookups outside of a match)
    # ═══════════════════════════════════════════════════════════════════

    def pick_problems(self, rating_min, rating_max, handles, count=5, tags=None) -> list:
        rating_min = _as_int(rating_min, "ratingMin", 0)
        rating_max = _as_int(rating_max, "ratingMax", 0)
        count = _as_int(count, "count", 1, 50)
        if not isinstance(handles, (list, tuple)) or not handles:
            raise ValidationError("At least one handle is required")
        handles = [_as_handle(h) for h in handles]
        self.ensure_catalog()
        return select_problems(self.judge, self.catalog, rating_min, rating_max, handles, count,
                               tags=tags, rng=self.rng, workers=self.settings.judge_workers)

    def random_problems(self, min_rating=800, max_rating=3000, tags=None, count=3, handle=None) -> list:
        """Catalog sample by rating/tags, minus what ``handle`` (if given) has solved."""
        min_rating = _as_int(min_rating, "minRating", 0)
        max_rating = _as_int(max_rating, "maxRating", 0)
        count = _as_int(count, "count", 1, 50)
        self.ensure_catalog()
        handles = [handle.strip()] if isinstance(handle, str) and handle.strip() else []
        return select_problems(self.judge, self.catalog, min_rating, max_rating, handles, count,
                               tags=tags, rng=self.rng, workers=self.settings.judge_workers)

    def user_solves(self, handle, contest_id, index, limit=10) -> list:
        handle = _as_handle(handle)
        contest_id = _as_int(contest_id, "contestId", 1)
        if not isinstance(index, str) or not index.strip():
            raise ValidationError("Problem index is required")
        limit = _as_int(limit, "limit", 1, 100)
        return self.judge.get_user_solves(handle, problem_key(contest_id, index), limit)

    def verify_handle(self, handle) -> bool:
        handle = _as_handle(handle)
        return self.judge.is_valid_handle(handle)

    def user_profile(self, handle) -> dict:
        profile = self.judge.get_user_profile(_as_handle(handle))
        return {
            "handle": profile["handle"],
            "rating": profile.get("rating") or 0,
            "maxRating": profile.get("maxRating") or 0,
            "rank": profile.get("rank") or "unrated",
        }

    def update_problemset(self) -> dict:
        return self.catalog.refresh(self.judge)

    def clear_catalog(self) -> int:
        removed = self.catalog.clear()
        logger.info("Problem catalog cleared (%d problems)", removed)
        return removed

    def browse_catalog(self, min_rating=None, max_rating=None, tags=None) -> list:
        lo = None if min_rating in (None, "") else _as_int(min_rating, "minRating", 0)
        hi = None if max_rating in (None, "") else _as_int(max_rating, "maxRating", 0)
        return self.catalog.query(lo, hi, tags)
