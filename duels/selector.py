import random
from concurrent.futures import ThreadPoolExecutor

from duels.errors import UpstreamError
from duels.log import get_logger
from duels.models import CatalogProblem

logger = get_logger(__name__)


def solved_problem_keys(judge, handles, workers: int = 8) -> set[str]:
    """Keys of problems any of ``handles`` has an accepted submission on.

    A handle whose history cannot be fetched counts as having solved nothing.
    """
    handles = list(dict.fromkeys(handles))
    if not handles:
        return set()

    def fetch(handle):
        try:
            return judge.get_submissions(handle)
        except UpstreamError as exc:
            logger.warning("No submission history for %s, assuming nothing solved: %s", handle, exc)
            return []

    with ThreadPoolExecutor(max_workers=min(workers, len(handles))) as pool:
        histories = list(pool.map(fetch, handles))

    solved = set()
    for subs in histories:
        for sub in subs:
            if sub.accepted:
                solved.add(sub.problem_key)
    return solved


def select_problems(judge, catalog, rating_min: int, rating_max: int, participants, count: int, *,
                    tags=None, rng: random.Random | None = None, workers: int = 8) -> list[CatalogProblem]:
    """Pick up to ``count`` catalog problems in the rating range that no participant has solved.

    The sample is uniform without replacement; fewer than ``count`` come back
    when the candidate pool is smaller, and an empty list when it is empty.
    """
    excluded = solved_problem_keys(judge, participants, workers)
    candidates = [
        p for p in catalog.query(rating_min, rating_max, tags)
        if p.key not in excluded
    ]
    logger.info("Selector: %d candidates in [%d, %d] after excluding %d solved",
                len(candidates), rating_min, rating_max, len(excluded))
    if not candidates:
        return []
    rng = rng or random
    shuffled = list(candidates)
    rng.shuffle(shuffled)
    return shuffled[:count]
