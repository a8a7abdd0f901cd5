import random
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from duels.catalog import ProblemCatalog
from duels.errors import (
    Forbidden, InvalidTransition, NoCandidates, NotFound, NotParticipant, UnknownHandle,
    ValidationError,
)
from duels.lifecycle import PromotionScheduler
from duels.models import ACTIVE, CANCELLED, STARTING, WAITING
from duels.sample import SampleJudge, generate_sample_catalog
from duels.service import MatchService

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class ServiceTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = Clock(T0)
        self.judge = SampleJudge(generate_sample_catalog(seed=7, n_contests=10))
        for handle in ("alice", "bob", "carol"):
            self.judge.add_user(handle)
        self.catalog = ProblemCatalog(self.judge.get_problem_catalog())
        self.judge.calls.clear()
        self.scheduler = mock.Mock(spec=PromotionScheduler)
        self.service = MatchService(self.judge, self.catalog, clock=self.clock,
                                    scheduler=self.scheduler, rng=random.Random(11))

    def create(self, **overrides):
        params = dict(
            name="Friday duel",
            participants=["alice"],
            creator="alice",
            scheduled_start_time=(T0 + timedelta(seconds=60)).isoformat(),
            duration_minutes=5,
            rating_min=800,
            rating_max=1200,
            problem_count=2,
        )
        params.update(overrides)
        return self.service.create(**params)


class TestCreate(ServiceTestCase):

    def test_create(self):
        match = self.create(participants=["bob"])
        self.assertEqual(len(match.id), 8)
        self.assertEqual(match.status, WAITING)
        self.assertEqual(match.participants, ["alice", "bob"])
        self.assertEqual(match.scores, {"alice": 0, "bob": 0})
        self.assertEqual(match.scheduled_start_time, T0 + timedelta(seconds=60))
        self.assertIn(match.id, self.service.store.ids())

    def test_participants_deduplicated(self):
        match = self.create(participants=[" bob ", "alice", "bob"])
        self.assertEqual(match.participants, ["bob", "alice"])

    def test_start_time_must_be_in_future(self):
        with self.assertRaises(ValidationError):
            self.create(scheduled_start_time=T0.isoformat())
        with self.assertRaises(ValidationError):
            self.create(scheduled_start_time="next tuesday")
        with self.assertRaises(ValidationError):
            self.create(scheduled_start_time=None)

    def test_duration_bounds(self):
        self.assertEqual(self.create(duration_minutes=5).duration_minutes, 5)
        self.assertEqual(self.create(duration_minutes=300).duration_minutes, 300)
        for bad in (4, 301, "abc", 7.5):
            with self.assertRaises(ValidationError):
                self.create(duration_minutes=bad)

    def test_other_validation(self):
        with self.assertRaises(ValidationError):
            self.create(name="  ")
        with self.assertRaises(ValidationError):
            self.create(rating_min=1500, rating_max=1000)
        with self.assertRaises(ValidationError):
            self.create(creator="")
        with self.assertRaises(ValidationError):
            self.create(problem_count=0)
        self.assertEqual(len(self.service.store), 0)


class TestParticipantsAndScores(ServiceTestCase):

    def test_add_participant(self):
        match = self.create()
        match = self.service.add_participant(match.id, "bob")
        self.assertEqual(match.participants, ["alice", "bob"])
        self.assertEqual(match.scores, {"alice": 0, "bob": 0})
        again = self.service.add_participant(match.id, "bob")
        self.assertEqual(again.participants, ["alice", "bob"])

    def test_add_participant_while_active(self):
        match = self.create()
        self.clock.advance(120)
        self.assertIn("bob", self.service.add_participant(match.id, "bob").participants)

    def test_add_participant_rejected(self):
        match = self.create()
        self.service.cancel(match.id)
        with self.assertRaises(InvalidTransition):
            self.service.add_participant(match.id, "bob")
        with self.assertRaises(NotFound):
            self.service.add_participant("ZZZZZZZZ", "bob")

    def test_record_score(self):
        match = self.create(participants=["bob"])
        self.assertEqual(self.service.record_score(match.id, "bob", 1200).scores["bob"], 1200)
        self.assertEqual(self.service.record_score(match.id, "bob", "800").scores["bob"], 1200)
        with self.assertRaises(NotParticipant):
            self.service.record_score(match.id, "mallory", 100)
        with self.assertRaises(ValidationError):
            self.service.record_score(match.id, "bob", -5)


class TestLifecycle(ServiceTestCase):

    def test_status_reconciles(self):
        match = self.create()
        self.clock.advance(61)
        match, report = self.service.status(match.id)
        self.assertEqual(report["status"], ACTIVE)
        self.assertEqual(self.service.store.get(match.id).status, ACTIVE)
        self.assertEqual(report["elapsedTime"], 1)

    def test_start(self):
        match = self.create()
        match = self.service.start(match.id, "alice")
        self.assertEqual(match.status, STARTING)
        self.scheduler.schedule.assert_called_once()
        _, report = self.service.status(match.id)
        self.assertEqual(report["countdownSeconds"], 10)

    def test_start_active_match(self):
        match = self.create()
        self.clock.advance(61)
        with self.assertRaises(InvalidTransition):
            self.service.start(match.id, "alice")

    def test_start_forbidden(self):
        match = self.create(participants=["bob"])
        with self.assertRaises(Forbidden):
            self.service.start(match.id, "bob")
        self.assertEqual(self.service.start(match.id, "").status, STARTING)

    def test_cancel_is_terminal(self):
        match = self.create()
        self.assertEqual(self.service.cancel(match.id).status, CANCELLED)
        self.clock.advance(3600)
        self.assertEqual(self.service.get(match.id).status, CANCELLED)
        with self.assertRaises(InvalidTransition):
            self.service.cancel(match.id)
        with self.assertRaises(InvalidTransition):
            self.service.start(match.id)

    def test_delete(self):
        match = self.create()
        with self.assertRaises(Forbidden):
            self.service.delete(match.id, "bob")
        self.service.delete(match.id, "alice")
        self.scheduler.cancel.assert_called_with(match.id)
        with self.assertRaises(NotFound):
            self.service.get(match.id)

    def test_clear_all(self):
        self.create()
        self.create()
        self.assertEqual(self.service.clear_all(), 2)
        self.assertEqual(len(self.service.store), 0)


class TestProblems(ServiceTestCase):

    def test_generate_problems_once(self):
        match = self.create(participants=["bob"])
        first = self.service.generate_problems(match.id)
        self.assertTrue(first.problems_generated)
        self.assertEqual(len(first.problems), 2)
        for problem in first.problems:
            self.assertTrue(800 <= problem.rating <= 1200)
        calls = dict(self.judge.calls)

        second = self.service.generate_problems(match.id)
        self.assertEqual(second.problems, first.problems)
        self.assertEqual(dict(self.judge.calls), calls)

    def test_generate_skips_solved_problems(self):
        candidates = self.catalog.query(800, 1200)
        for problem in candidates[:-1]:
            self.judge.submit("bob", problem.key)
        match = self.create(participants=["bob"], problem_count=3)
        match = self.service.generate_problems(match.id)
        self.assertEqual([p.key for p in match.problems], [candidates[-1].key])

    def test_generate_with_no_candidates(self):
        match = self.create(rating_min=3600, rating_max=4000)
        with self.assertRaises(NoCandidates):
            self.service.generate_problems(match.id)
        self.assertFalse(self.service.get(match.id).problems_generated)

    def test_generate_bootstraps_empty_catalog(self):
        service = MatchService(self.judge, ProblemCatalog(), clock=self.clock,
                               scheduler=self.scheduler)
        match = service.create("Duel", ["alice"], "alice", T0 + timedelta(minutes=5),
                               problem_count=1)
        service.generate_problems(match.id)
        self.assertEqual(self.judge.calls["get_problem_catalog"], 1)
        self.assertGreater(len(service.catalog), 0)

    def test_generate_for_cancelled_match(self):
        match = self.create()
        self.service.cancel(match.id)
        with self.assertRaises(InvalidTransition):
            self.service.generate_problems(match.id)

    def test_full_duel(self):
        match = self.create(participants=["bob"])
        match = self.service.generate_problems(match.id)
        first, second = match.problems
        self.clock.advance(90)

        self.judge.submit("alice", first.key, at=self.clock.now)
        result = self.service.check_submissions(match.id)
        self.assertEqual(result.scores, {"alice": first.rating, "bob": 0})
        self.assertFalse(result.completed)

        self.judge.submit("bob", second.key, at=self.clock.now)
        result = self.service.check_submissions(match.id)
        self.assertTrue(result.completed)
        self.assertEqual(self.service.get(match.id).status, "completed")


class TestListing(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.public = self.create(name="Public", participants=["bob"])
        self.clock.advance(1)
        self.private = self.create(name="Private", participants=["carol"], is_private=True)
        self.clock.advance(1)
        self.other = self.create(name="Other", creator="carol", participants=[])

    def test_private_hidden_by_default(self):
        matches, total = self.service.list_matches()
        self.assertEqual(total, 2)
        self.assertEqual([m.id for m in matches], [self.other.id, self.public.id])
        _, total = self.service.list_matches(include_private=True)
        self.assertEqual(total, 3)

    def test_paging_and_sort(self):
        matches, total = self.service.list_matches(include_private=True, limit=1, skip=1,
                                                   sort="name", order="asc")
        self.assertEqual(total, 3)
        self.assertEqual([m.name for m in matches], ["Private"])

    def test_status_filter(self):
        self.service.cancel(self.public.id)
        matches, total = self.service.list_matches(status=CANCELLED)
        self.assertEqual([m.id for m in matches], [self.public.id])
        with self.assertRaises(ValidationError):
            self.service.list_matches(status="paused")
        with self.assertRaises(ValidationError):
            self.service.list_matches(sort="colour")

    def test_status_filter_follows_the_clock(self):
        self.clock.advance(120)
        matches, total = self.service.list_matches(status=ACTIVE)
        self.assertEqual(total, 2)
        self.assertEqual({m.id for m in matches}, {self.public.id, self.other.id})
        self.assertEqual({m.status for m in matches}, {ACTIVE})
        self.assertEqual(self.service.list_matches(status=WAITING), ([], 0))
        matches, _ = self.service.matches_for_handle("carol", status=ACTIVE)
        self.assertEqual({m.id for m in matches}, {self.private.id, self.other.id})

    def test_by_handle_and_creator(self):
        matches, total = self.service.matches_for_handle("carol")
        self.assertEqual({m.id for m in matches}, {self.private.id, self.other.id})
        matches, _ = self.service.matches_by_creator("alice")
        self.assertEqual({m.id for m in matches}, {self.public.id, self.private.id})
        self.assertEqual(len(self.service.recent(limit=2)), 2)

    def test_listing_reconciles(self):
        self.clock.advance(61)
        matches, _ = self.service.list_matches(status="all", include_private=True)
        self.assertEqual({m.status for m in matches}, {ACTIVE})


class TestTasks(ServiceTestCase):

    def test_pick_problems(self):
        picked = self.service.pick_problems(800, 1200, ["alice", "bob"], count=3)
        self.assertEqual(len(picked), 3)
        with self.assertRaises(ValidationError):
            self.service.pick_problems(800, 1200, [], count=3)

    def test_random_problems_for_handle(self):
        candidates = self.catalog.query(800, 1200)
        self.judge.submit("alice", candidates[0].key)
        picked = self.service.random_problems(800, 1200, count=50, handle="alice")
        self.assertNotIn(candidates[0].key, {p.key for p in picked})
        self.assertEqual(len(picked), len(candidates) - 1)

    def test_user_solves(self):
        key = self.catalog.all()[0].key
        contest_id, index = key.split("-")
        self.judge.submit("alice", key, "WRONG_ANSWER", at=T0)
        self.judge.submit("alice", key, at=T0 + timedelta(minutes=1))
        subs = self.service.user_solves("alice", contest_id, index.lower())
        self.assertEqual([s.verdict for s in subs], ["OK", "WRONG_ANSWER"])

    def test_verify_handle(self):
        self.assertTrue(self.service.verify_handle("alice"))
        self.assertFalse(self.service.verify_handle("nobody"))

    def test_user_profile(self):
        self.judge.add_user("dave", rating=1900, rank="candidate master")
        profile = self.service.user_profile(" dave ")
        self.assertEqual(profile, {"handle": "dave", "rating": 1900, "maxRating": 1900,
                                   "rank": "candidate master"})
        with self.assertRaises(UnknownHandle):
            self.service.user_profile("nobody")
        with self.assertRaises(ValidationError):
            self.service.user_profile("")

    def test_clear_catalog(self):
        size = len(self.catalog)
        self.assertEqual(self.service.clear_catalog(), size)
        self.assertEqual(len(self.catalog), 0)

    def test_update_problemset_is_insert_only(self):
        summary = self.service.update_problemset()
        self.assertEqual(summary["newProblems"], 0)
        self.assertEqual(summary["totalProblems"], len(self.catalog))

    def test_browse_catalog(self):
        problems = self.service.browse_catalog("800", "1200")
        self.assertEqual(problems, self.catalog.query(800, 1200))
        self.assertTrue(all(800 <= p.rating <= 1200 for p in problems))


if __name__ == "__main__":
    unittest.main()
