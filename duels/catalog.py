import json
import threading
from pathlib import Path

from duels.log import get_logger
from duels.models import CatalogProblem

logger = get_logger(__name__)


class ProblemCatalog:
    """Local copy of the judge's problemset, queried by rating range and tags."""

    def __init__(self, problems=None):
        self._problems: dict[str, CatalogProblem] = {}
        self._lock = threading.Lock()
        if problems:
            self.add_many(problems)

    def __len__(self) -> int:
        with self._lock:
            return len(self._problems)

    def all(self) -> list[CatalogProblem]:
        with self._lock:
            return list(self._problems.values())

    def add_many(self, problems) -> int:
        """Insert problems not already present (by key); returns how many were new."""
        added = 0
        with self._lock:
            for problem in problems:
                if problem.key in self._problems:
                    continue
                self._problems[problem.key] = problem
                added += 1
        return added

    def clear(self) -> int:
        with self._lock:
            n = len(self._problems)
            self._problems.clear()
        return n

    def query(self, rating_min: int | None = None, rating_max: int | None = None,
              tags=None) -> list[CatalogProblem]:
        """Problems with rating in [rating_min, rating_max] carrying any of ``tags``.

        Unrated problems never match a rating bound.
        """
        wanted = {t.strip().lower() for t in tags or [] if t and t.strip()}
        result = []
        for problem in self.all():
            if rating_min is not None or rating_max is not None:
                if problem.rating is None:
                    continue
                if rating_min is not None and problem.rating < rating_min:
                    continue
                if rating_max is not None and problem.rating > rating_max:
                    continue
            if wanted and not wanted.intersection(problem.tags):
                continue
            result.append(problem)
        result.sort(key=lambda p: (p.contest_id, p.index))
        return result

    def refresh(self, judge) -> dict:
        """Pull the problemset from the judge and add what is new."""
        problems = judge.get_problem_catalog()
        added = self.add_many(problems)
        logger.info("Problemset refresh: %d fetched, %d new", len(problems), added)
        return {
            "success": True,
            "totalProblems": len(problems),
            "newProblems": added,
            "message": f"Added {added} new problems" if added else "No new problems to add",
        }

    # ── Snapshots ──────────────────────────────────────────────────────

    def save(self, path) -> None:
        data = [p.to_dict() for p in self.all()]
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"problems": data}, f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path) -> "ProblemCatalog":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        catalog = cls(CatalogProblem.from_api(raw) for raw in data.get("problems", []))
        logger.info("Loaded %d problems from %s", len(catalog), path)
        return catalog
