#!/usr/bin/env python3
"""
Offline judge for demos and tests.
====================================
Stands in for the Codeforces client without touching the network: serves a
generated problemset, user profiles, and a submission log that callers can
append to (``submit``) to script verdicts. Every call is counted per method so
tests can assert how often the judge was consulted.

Usage:
    python -m duels.sample [--output catalog.json] [--seed 42] [--contests 40]
"""

import argparse
import random
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path

from duels.catalog import ProblemCatalog
from duels.errors import UnknownHandle, UpstreamError
from duels.models import ACCEPTED_VERDICT, CatalogProblem, Submission

HANDLES = [
    "Yassine_CP", "Amine_DZ", "Fatima_Code", "Khaled_ACM",
    "Meriem_Algo", "Raouf_Master", "Sara_Dev", "Mourad_IOI",
    "Lina_Solver", "Nabil_Pro", "Amira_DZ", "Zakaria_CP",
]

PROBLEM_NAMES = [
    "Array Warmup", "Binary Beauty", "Counting Paths", "Dynamic Grid",
    "Edge Coloring", "Flow Network", "Graph Decomposition",
]

TAGS = [
    "implementation", "math", "greedy", "dp", "graphs", "strings",
    "data structures", "binary search", "constructive algorithms", "trees",
]

WRONG_VERDICTS = ["WRONG_ANSWER", "TIME_LIMIT_EXCEEDED", "RUNTIME_ERROR"]


def generate_sample_catalog(seed: int = 42, n_contests: int = 40,
                            first_contest_id: int = 1800) -> list[CatalogProblem]:
    """A plausible problemset: later problems in a contest are rated higher."""
    rng = random.Random(seed)
    problems = []
    for c in range(n_contests):
        contest_id = first_contest_id + c
        base = rng.choice([800, 900, 1000, 1100, 1200])
        for j, name in enumerate(PROBLEM_NAMES):
            rating = min(3500, base + j * rng.choice([200, 300, 400]))
            problems.append(CatalogProblem(
                contest_id=contest_id,
                index="ABCDEFG"[j],
                name=name,
                rating=rating,
                tags=tuple(sorted(rng.sample(TAGS, rng.randint(1, 3)))),
            ))
    return problems


class SampleJudge:
    """In-memory judge with the same surface as ``CodeforcesClient``."""

    def __init__(self, catalog=None, profiles: dict | None = None):
        self._catalog = list(catalog or [])
        self._profiles = dict(profiles or {})
        self._subs: dict[str, list[Submission]] = {}
        self._lock = threading.Lock()
        self._next_id = 100000
        self.calls = Counter()
        # handles whose lookups fail as if the API were down
        self.failing = set()

    def add_user(self, handle: str, rating: int = 1500, rank: str = "specialist") -> None:
        self._profiles[handle] = {"handle": handle, "rating": rating, "rank": rank,
                                  "maxRating": rating, "maxRank": rank}
        with self._lock:
            self._subs.setdefault(handle, [])

    def submit(self, handle: str, key: str, verdict: str = ACCEPTED_VERDICT,
               at: datetime | None = None) -> Submission:
        with self._lock:
            self._next_id += 1
            sub = Submission(
                handle=handle,
                problem_key=key,
                verdict=verdict,
                submitted_at=at or datetime.now(timezone.utc),
                submission_id=self._next_id,
            )
            self._subs.setdefault(handle, []).append(sub)
        if handle not in self._profiles:
            self.add_user(handle)
        return sub

    def _check(self, handle: str) -> None:
        if handle in self.failing:
            raise UpstreamError(f"Codeforces API unreachable for {handle}")

    # ── Judge surface ─────────────────────────────────────────────────

    def get_submissions(self, handle: str, count: int | None = None) -> list[Submission]:
        self.calls["get_submissions"] += 1
        self._check(handle)
        if handle not in self._profiles:
            raise UnknownHandle(f"handle: User with handle {handle} not found")
        with self._lock:
            subs = sorted(self._subs.get(handle, []), key=lambda s: s.submitted_at, reverse=True)
        return subs[:count] if count else subs

    def get_user_solves(self, handle: str, key: str, limit: int = 10) -> list[Submission]:
        subs = [s for s in self.get_submissions(handle) if s.problem_key == key]
        return subs[:limit]

    def get_problem_catalog(self) -> list[CatalogProblem]:
        self.calls["get_problem_catalog"] += 1
        return list(self._catalog)

    def get_user_profile(self, handle: str) -> dict:
        self.calls["get_user_profile"] += 1
        self._check(handle)
        profile = self._profiles.get(handle)
        if profile is None:
            raise UnknownHandle(f"handle: User with handle {handle} not found")
        return dict(profile)

    def is_valid_handle(self, handle: str) -> bool:
        try:
            return self.get_user_profile(handle)["handle"] == handle
        except UpstreamError:
            return False


def build_sample_judge(seed: int = 42, n_contests: int = 40, solve_rate: float = 0.15) -> SampleJudge:
    """A judge preloaded with a catalog, the demo handles, and some past solves."""
    rng = random.Random(seed)
    catalog = generate_sample_catalog(seed, n_contests)
    judge = SampleJudge(catalog)
    past = datetime.now(timezone.utc) - timedelta(days=30)
    for handle in HANDLES:
        judge.add_user(handle, rating=rng.randrange(1000, 2400, 50))
        for problem in catalog:
            if rng.random() >= solve_rate:
                continue
            for _ in range(rng.randint(0, 2)):
                judge.submit(handle, problem.key, rng.choice(WRONG_VERDICTS),
                             at=past + timedelta(minutes=rng.randint(0, 40000)))
            judge.submit(handle, problem.key, ACCEPTED_VERDICT,
                         at=past + timedelta(minutes=rng.randint(40001, 43000)))
    return judge


def main():
    parser = argparse.ArgumentParser(description="Generate a sample problemset snapshot")
    parser.add_argument("--output", type=str, default="catalog_sample.json", help="Output JSON path")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--contests", type=int, default=40, help="Number of contests")
    args = parser.parse_args()

    catalog = ProblemCatalog(generate_sample_catalog(args.seed, args.contests))
    catalog.save(args.output)
    print(f"✅ Generated sample problemset: {len(catalog)} problems")
    print(f"📁 Saved to: {Path(args.output).resolve()}")


if __name__ == "__main__":
    main()
