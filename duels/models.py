from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone

# Match lifecycle states
WAITING = "waiting"
STARTING = "starting"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"

STATUSES = (WAITING, STARTING, ACTIVE, COMPLETED, CANCELLED)

# Position along the time-driven path; cancelled sits outside of it
STATUS_ORDER = {WAITING: 0, STARTING: 1, ACTIVE: 2, COMPLETED: 3}
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})

ACCEPTED_VERDICT = "OK"

# No 0/O, 1/I so ids can be read aloud and typed back
ID_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
ID_LENGTH = 8

_id_rng = random.SystemRandom()


def generate_match_id(rng: random.Random | None = None) -> str:
    rng = rng or _id_rng
    return "".join(rng.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


# ── Time helpers ──────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime:
    """Accept an aware datetime, an ISO-8601 string (``Z`` allowed) or epoch seconds."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if dt.tzinfo is None:
        raise ValueError("timestamp must carry a timezone")
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    dt_utc = dt.astimezone(timezone.utc)
    text = dt_utc.isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def problem_key(contest_id, index: str) -> str:
    return f"{contest_id}-{str(index).strip().upper()}"


# ── Problems & submissions ────────────────────────────────────────────

@dataclass(frozen=True)
class Problem:
    """A problem assigned to a match."""
    contest_id: int
    index: str
    name: str = ""
    rating: int | None = None

    @property
    def key(self) -> str:
        return problem_key(self.contest_id, self.index)

    @property
    def points(self) -> int:
        return self.rating or 0

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "contestId": self.contest_id,
            "index": self.index,
            "name": self.name,
            "rating": self.rating,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Problem":
        return cls(
            contest_id=int(data["contestId"]),
            index=str(data["index"]).strip().upper(),
            name=data.get("name", "") or "",
            rating=data.get("rating"),
        )


@dataclass(frozen=True)
class CatalogProblem:
    """A problem as listed in the judge's problemset."""
    contest_id: int
    index: str
    name: str
    rating: int | None = None
    tags: tuple[str, ...] = ()
    points: float | None = None

    @property
    def key(self) -> str:
        return problem_key(self.contest_id, self.index)

    def to_problem(self) -> Problem:
        return Problem(self.contest_id, self.index, self.name, self.rating)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "contestId": self.contest_id,
            "index": self.index,
            "name": self.name,
            "rating": self.rating,
            "tags": list(self.tags),
            "points": self.points,
        }

    @classmethod
    def from_api(cls, data: dict) -> "CatalogProblem":
        return cls(
            contest_id=int(data["contestId"]),
            index=str(data["index"]).strip().upper(),
            name=data.get("name", "") or "",
            rating=data.get("rating"),
            tags=tuple(t.strip().lower() for t in data.get("tags", [])),
            points=data.get("points"),
        )


@dataclass(frozen=True)
class Submission:
    """One judge-reported submission; never persisted."""
    handle: str
    problem_key: str
    verdict: str | None
    submitted_at: datetime
    submission_id: int | None = None

    @property
    def accepted(self) -> bool:
        return self.verdict == ACCEPTED_VERDICT

    def to_dict(self) -> dict:
        return {
            "id": self.submission_id,
            "handle": self.handle,
            "problemKey": self.problem_key,
            "verdict": self.verdict,
            "submittedAt": isoformat_z(self.submitted_at),
        }

    @classmethod
    def from_api(cls, handle: str, data: dict) -> "Submission":
        problem = data.get("problem", {})
        return cls(
            handle=handle,
            problem_key=problem_key(problem.get("contestId"), problem.get("index", "")),
            verdict=data.get("verdict"),
            submitted_at=datetime.fromtimestamp(data.get("creationTimeSeconds", 0), timezone.utc),
            submission_id=data.get("id"),
        )


# ── Match record ──────────────────────────────────────────────────────

@dataclass
class Match:
    id: str
    name: str
    creator: str
    participants: list[str]
    scheduled_start_time: datetime
    duration_minutes: int
    rating_min: int
    rating_max: int
    problem_count: int
    is_private: bool = False
    status: str = WAITING
    created_at: datetime = field(default_factory=utcnow)
    starting_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    problems: list[Problem] = field(default_factory=list)
    problems_generated: bool = False
    scores: dict[str, int] = field(default_factory=dict)
    # problem key -> handles already credited for it
    credits: dict[str, list[str]] = field(default_factory=dict)
    winner: str | None = None

    def has_participant(self, handle: str) -> bool:
        return handle in self.participants

    def is_credited(self, key: str, handle: str) -> bool:
        return handle in self.credits.get(key, ())

    def leader(self) -> tuple[str | None, int]:
        """Highest score; ties go to whoever appears first in participant order.

        Nobody leads while every score is 0.
        """
        best_handle, best_score = None, -1
        for handle in self.participants:
            score = self.scores.get(handle, 0)
            if score > best_score:
                best_handle, best_score = handle, score
        if best_score <= 0:
            return None, 0
        return best_handle, best_score

    def to_dict(self) -> dict:
        winner = self.winner
        if winner is None and self.status == COMPLETED:
            winner = self.leader()[0]
        return {
            "id": self.id,
            "name": self.name,
            "creator": self.creator,
            "participants": list(self.participants),
            "status": self.status,
            "isPrivate": self.is_private,
            "scheduledStartTime": isoformat_z(self.scheduled_start_time),
            "durationMinutes": self.duration_minutes,
            "createdAt": isoformat_z(self.created_at),
            "startingAt": isoformat_z(self.starting_at),
            "startedAt": isoformat_z(self.started_at),
            "endedAt": isoformat_z(self.ended_at),
            "ratingMin": self.rating_min,
            "ratingMax": self.rating_max,
            "problemCount": self.problem_count,
            "problems": [p.to_dict() for p in self.problems],
            "problemsGenerated": self.problems_generated,
            "scores": {h: self.scores.get(h, 0) for h in self.participants},
            "credits": {k: list(v) for k, v in self.credits.items()},
            "winner": winner,
        }
