"""
Codeforces API client: problem catalog, submission history and user profiles.

Pure I/O adapter. Every failure surfaces as ``UpstreamError`` (or its
``UnknownHandle`` subclass when the API reports that a handle does not exist).
"""

import time

import requests

from duels.config import Settings
from duels.errors import UnknownHandle, UpstreamError
from duels.log import get_logger
from duels.models import CatalogProblem, Submission

logger = get_logger(__name__)


class CodeforcesClient:

    def __init__(self, settings: Settings | None = None, sleep=time.sleep):
        self.settings = settings or Settings()
        self._sleep = sleep

    def api_get(self, method: str, params: dict | None = None):
        """Call a Codeforces API method with basic retry logic."""
        url = f"{self.settings.api_base}/{method}"
        attempts = self.settings.retry_attempts
        for attempt in range(attempts):
            try:
                resp = requests.get(url, params=params, timeout=self.settings.request_timeout_s)
                try:
                    data = resp.json()
                except ValueError:
                    resp.raise_for_status()
                    raise UpstreamError(f"Codeforces returned a non-JSON body for {method}")
                if data.get("status") != "OK":
                    comment = data.get("comment", "unknown")
                    if "not found" in comment.lower():
                        raise UnknownHandle(comment)
                    raise UpstreamError(f"Codeforces API error: {comment}")
                return data["result"]
            except UnknownHandle:
                raise
            except (requests.RequestException, UpstreamError) as exc:
                if attempt == attempts - 1:
                    logger.warning("Codeforces %s failed after %d attempts: %s", method, attempts, exc)
                    if isinstance(exc, UpstreamError):
                        raise
                    raise UpstreamError(f"Codeforces API unreachable: {exc}") from exc
                wait = self.settings.retry_backoff_s * (attempt + 1)
                logger.info("Attempt %d of %s failed (%s), retrying in %.1fs", attempt + 1, method, exc, wait)
                self._sleep(wait)
        raise UpstreamError(f"Codeforces {method} was not attempted")

    def get_submissions(self, handle: str, count: int | None = None) -> list[Submission]:
        """Submission history for a handle, as the API orders it (newest first)."""
        handle = (handle or "").strip()
        if not handle:
            raise UnknownHandle("Invalid handle provided")
        params = {"handle": handle}
        if count:
            params["from"] = 1
            params["count"] = count
        result = self.api_get("user.status", params)
        return [Submission.from_api(handle, sub) for sub in result]

    def get_user_solves(self, handle: str, key: str, limit: int = 10) -> list[Submission]:
        """Latest submissions of ``handle`` on one problem, newest first."""
        subs = [s for s in self.get_submissions(handle) if s.problem_key == key]
        subs.sort(key=lambda s: s.submitted_at, reverse=True)
        return subs[:limit]

    def get_problem_catalog(self) -> list[CatalogProblem]:
        result = self.api_get("problemset.problems")
        problems = []
        for raw in result.get("problems", []):
            if "contestId" not in raw:
                continue
            problems.append(CatalogProblem.from_api(raw))
        return problems

    def get_user_profile(self, handle: str) -> dict:
        handle = (handle or "").strip()
        if not handle:
            raise UnknownHandle("Invalid handle provided")
        result = self.api_get("user.info", {"handles": handle})
        if not result:
            raise UnknownHandle(f"User with handle {handle} not found")
        user = result[0]
        return {
            "handle": user.get("handle", handle),
            "rating": user.get("rating"),
            "rank": user.get("rank"),
            "maxRating": user.get("maxRating"),
            "maxRank": user.get("maxRank"),
        }

    def is_valid_handle(self, handle: str) -> bool:
        """True when Codeforces knows the handle (exact-case match)."""
        try:
            return self.get_user_profile(handle)["handle"] == handle
        except UpstreamError as exc:
            logger.info("Handle verification failed for %s: %s", handle, exc)
            return False
