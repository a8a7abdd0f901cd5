"""
Scoring: poll the judge for each participant's verdicts on the match problems.

A (problem, participant) pair is credited at most once, through the store's
atomic credit-if-not-credited write, so concurrent pollers that see the same
accepted submission cannot double-count it. A participant's newest submission
on a problem decides: if it is accepted the participant earns the problem's
rating. The match completes once every problem is credited to somebody.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from duels.errors import UpstreamError
from duels.lifecycle import LifecycleEngine
from duels.log import get_logger
from duels.models import ACTIVE, COMPLETED, Match, Submission
from duels.store import MatchStore

logger = get_logger(__name__)


@dataclass
class ScoringResult:
    scores: dict[str, int]
    completed: bool
    winner: str | None = None
    status: str = ACTIVE
    # (problem key, handle) pairs credited during this pass
    credited: list[tuple[str, str]] = field(default_factory=list)
    failed_handles: list[str] = field(default_factory=list)
    # every judge call in the pass failed; nothing could be checked
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            "scores": dict(self.scores),
            "completed": self.completed,
            "winner": self.winner,
            "status": self.status,
            "credited": [{"problemKey": k, "handle": h} for k, h in self.credited],
            "failedHandles": list(self.failed_handles),
            "stale": self.stale,
        }


def determine_winner(match: Match) -> tuple[str | None, int]:
    """Highest cumulative score; an exact tie goes to the earliest-listed participant.

    No winner when nobody scored.
    """
    return match.leader()


def all_problems_credited(match: Match) -> bool:
    if not match.problems:
        return False
    return all(match.credits.get(p.key) for p in match.problems)


def latest_verdict_accepted(subs: list[Submission], key: str) -> bool:
    relevant = [s for s in subs if s.problem_key == key]
    if not relevant:
        return False
    newest = max(relevant, key=lambda s: s.submitted_at)
    return newest.accepted


def _result(match: Match, **kwargs) -> ScoringResult:
    completed = match.status == COMPLETED
    winner = None
    if completed:
        winner = match.winner or determine_winner(match)[0]
    return ScoringResult(
        scores={h: match.scores.get(h, 0) for h in match.participants},
        completed=completed,
        winner=winner,
        status=match.status,
        **kwargs,
    )


def check_submissions(store: MatchStore, lifecycle: LifecycleEngine, judge, match_id: str,
                      now: datetime | None = None, workers: int = 8) -> ScoringResult:
    """Run one scoring pass; safe to call repeatedly and concurrently.

    Judge failures only skip the affected participant for this pass.
    """
    match = lifecycle.reconcile(match_id, now)
    if match.status != ACTIVE or not match.problems:
        return _result(match)

    pending = {}
    for handle in match.participants:
        todo = [p for p in match.problems if not match.is_credited(p.key, handle)]
        if todo:
            pending[handle] = todo

    credited = []
    failed = []
    if pending:
        def fetch(handle):
            try:
                return handle, judge.get_submissions(handle), None
            except UpstreamError as exc:
                return handle, None, exc

        with ThreadPoolExecutor(max_workers=min(workers, len(pending))) as pool:
            outcomes = list(pool.map(fetch, pending))

        for handle, subs, exc in outcomes:
            if exc is not None:
                logger.warning("Skipping %s in duel %s this pass: %s", handle, match_id, exc)
                failed.append(handle)
                continue
            for problem in pending[handle]:
                if not latest_verdict_accepted(subs, problem.key):
                    continue
                if store.credit(match_id, problem.key, handle, problem.points):
                    logger.info("%s solved %s in duel %s (+%d)", handle, problem.key, match_id, problem.points)
                    credited.append((problem.key, handle))

    stale = bool(pending) and len(failed) == len(pending)

    match = store.get(match_id)
    if match.status == ACTIVE and all_problems_credited(match):
        winner, _ = determine_winner(match)
        match, _ = lifecycle.complete(match_id, winner, now)

    return _result(match, credited=credited, failed_handles=failed, stale=stale)
