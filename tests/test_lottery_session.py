from __future__ import annotations

import random
import sched
import tempfile
import unittest
from pathlib import Path

from draw_session import DrawMode
from lottery_config import (
    InsufficientPoolError,
    InvalidConfigurationError,
    MalformedConfigError,
    parse_config_document,
    sample_document,
    write_json,
)
from lottery_session import LotterySession
from phase_sequencer import Phase, PhaseSequencer, SchedScheduler
from results_ledger import PrizeStatus


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def small_document():
    return {
        "prizes": [
            {"id": "P1", "number": 1, "name": "一等奖", "drawCount": 2},
            {"id": "P2", "number": 2, "name": "二等奖", "drawCount": 5},
        ],
        "participantLists": [
            {
                "list": {"id": "L1", "name": "员工"},
                "participants": [{"id": f"U{index}", "name": f"员工{index}"} for index in range(1, 6)],
            }
        ],
        "settings": {"allowRepeat": False, "title": "测试抽奖"},
    }


class LotterySessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = LotterySession(parse_config_document(small_document()), rng=random.Random(9))

    def test_overview_starts_pending(self) -> None:
        statuses = [progress.status for _, progress in self.session.overview()]
        self.assertEqual(statuses, [PrizeStatus.PENDING, PrizeStatus.PENDING])
        self.assertEqual(self.session.available_count(), 5)

    def test_draw_updates_ledger_and_available_count(self) -> None:
        self.session.start_prize_draw("P1")
        self.session.draw_next()
        self.assertIs(self.session.progress("P1").status, PrizeStatus.PARTIAL)
        self.session.draw_all()
        self.assertIs(self.session.progress("P1").status, PrizeStatus.COMPLETED)
        self.assertEqual(self.session.available_count(), 3)
        self.assertEqual(len(self.session.results()), 1)

    def test_short_pool_closes_the_prize_as_exhausted(self) -> None:
        self.session.start_prize_draw("P1")
        self.session.draw_all()
        self.session.back_to_overview()
        self.session.start_prize_draw("P2")
        winners = self.session.draw_all()
        self.assertEqual(len(winners), 3)
        progress = self.session.progress("P2")
        self.assertIs(progress.status, PrizeStatus.COMPLETED)
        self.assertTrue(progress.exhausted)
        with self.assertRaises(InsufficientPoolError):
            self.session.draw_all()

    def test_drawing_an_empty_pool_raises(self) -> None:
        for person in self.session.all_participants():
            person.is_selected = True
        self.session.start_prize_draw("P1")
        with self.assertRaises(InsufficientPoolError):
            self.session.draw_all()
        self.assertIs(self.session.progress("P1").status, PrizeStatus.PENDING)

    def test_draw_requires_an_open_prize(self) -> None:
        with self.assertRaises(RuntimeError):
            self.session.draw_next()
        with self.assertRaises(ValueError):
            self.session.start_prize_draw("P9")

    def test_absent_redraw_keeps_exclusions_when_the_prize_is_reopened(self) -> None:
        self.session.start_prize_draw("P1")
        first, second = self.session.draw_all()
        self.session.toggle_absent(first.participant_id)
        replacements = self.session.redraw_absent()
        self.assertEqual(len(replacements), 1)
        self.session.back_to_overview()

        self.session.start_prize_draw("P1")
        self.assertNotIn(first.participant_id, [p.participant_id for p in self.session.eligible_for("P1")])
        self.assertEqual(
            [winner.participant_id for winner in self.session.results()[0].winners],
            [second.participant_id, replacements[0].participant_id],
        )

    def test_imported_absent_flag_does_not_mark_fresh_winners(self) -> None:
        document = small_document()
        for entry in document["participantLists"][0]["participants"]:
            entry["isAbsent"] = True
        session = LotterySession(parse_config_document(document), rng=random.Random(2))
        session.start_prize_draw("P1")
        winners = session.draw_all()
        for winner in winners:
            self.assertFalse(winner.is_absent)
            self.assertFalse(session.is_marked_absent(winner.participant_id))
        self.assertEqual(session.redraw_absent(), [])
        self.assertEqual(session.current.committed_winners, winners)

    def test_absent_marker_stays_with_its_prize(self) -> None:
        document = small_document()
        document["settings"]["allowRepeat"] = True
        session = LotterySession(parse_config_document(document), rng=random.Random(5))
        session.start_prize_draw("P1")
        shared = session.draw_all()[0].participant_id
        session.back_to_overview()

        session.start_prize_draw("P2")
        session.draw_all()
        self.assertIn(shared, session.current.winner_ids())
        session.toggle_absent(shared)
        self.assertTrue(session.is_marked_absent(shared))
        session.back_to_overview()

        session.start_prize_draw("P1")
        self.assertFalse(session.is_marked_absent(shared))
        self.assertEqual(session.redraw_absent(), [])
        self.assertIn(shared, session.current.winner_ids())

    def test_reset_starts_over(self) -> None:
        self.session.start_prize_draw("P1")
        self.session.draw_all()
        self.session.reset()
        self.assertIsNone(self.session.current)
        self.assertEqual(len(self.session.ledger), 0)
        self.assertEqual(self.session.available_count(), 5)
        self.assertIs(self.session.progress("P1").status, PrizeStatus.PENDING)

    def test_rejected_import_leaves_everything_as_it_was(self) -> None:
        self.session.start_prize_draw("P1")
        self.session.draw_all()
        bad_documents = [
            {"prizes": []},
            {
                "prizes": [{"id": "X", "name": "奖", "drawCount": 1, "participantListId": "missing"}],
                "participantLists": [],
            },
        ]
        for document in bad_documents:
            with self.subTest(document=document), self.assertRaises((MalformedConfigError, InvalidConfigurationError)):
                self.session.load_document(document)
        self.assertEqual([prize.prize_id for prize in self.session.prizes], ["P1", "P2"])
        self.assertEqual(len(self.session.ledger), 1)
        self.assertIsNotNone(self.session.current)

    def test_import_replaces_the_setup(self) -> None:
        self.session.start_prize_draw("P1")
        self.session.draw_all()
        self.session.load_document(sample_document())
        self.assertEqual(len(self.session.prizes), 4)
        self.assertEqual(len(self.session.ledger), 0)
        self.assertIsNone(self.session.current)
        self.assertEqual(self.session.settings.title, "年会抽奖")

    def test_export_marks_winners_as_selected(self) -> None:
        self.session.start_prize_draw("P1")
        winners = self.session.draw_all()
        document = self.session.export_document()
        flags = {
            entry["id"]: entry["isSelected"]
            for entry in document["participantLists"][0]["participants"]
        }
        for winner in winners:
            self.assertTrue(flags[winner.participant_id])

    def test_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "lottery.json"
            write_json(path, small_document())
            session = LotterySession.from_file(path)
        self.assertEqual(session.settings.title, "测试抽奖")


class PresentationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.scheduler = SchedScheduler(sched.scheduler(self.clock.time, self.clock.sleep))
        self.sequencer = PhaseSequencer(self.scheduler)
        self.session = LotterySession(
            parse_config_document(small_document()),
            rng=random.Random(4),
            sequencer=self.sequencer,
        )
        self.session.start_prize_draw("P1")

    def test_winners_are_committed_when_the_presentation_ends(self) -> None:
        context = self.session.start_presentation(DrawMode.BATCH)
        self.assertEqual(self.session.current.committed_winners, [])
        with self.assertRaises(RuntimeError):
            self.session.draw_next()
        self.scheduler.run()
        self.assertEqual(self.session.current.committed_winners, context.winners)
        self.assertTrue(all(winner.is_selected for winner in context.winners))
        self.assertIs(self.session.progress("P1").status, PrizeStatus.COMPLETED)

    def test_cancelled_presentation_commits_nothing(self) -> None:
        self.session.start_presentation(DrawMode.STEPWISE)
        self.scheduler.call_later(11000, self.session.cancel_presentation)
        self.scheduler.run()
        self.assertIs(self.sequencer.phase, Phase.IDLE)
        self.assertEqual(self.session.current.committed_winners, [])
        self.assertEqual(len(self.session.ledger), 0)
        self.assertEqual(self.session.available_count(), 5)

    def test_leaving_the_prize_drops_the_running_presentation(self) -> None:
        self.session.start_presentation(DrawMode.BATCH)
        self.scheduler.call_later(5000, self.session.back_to_overview)
        self.scheduler.run()
        self.assertIsNone(self.session.current)
        self.assertEqual(len(self.session.ledger), 0)

    def test_reset_drops_the_running_presentation(self) -> None:
        self.session.start_presentation(DrawMode.BATCH)
        self.scheduler.call_later(12000, self.session.reset)
        self.scheduler.run()
        self.assertIs(self.sequencer.phase, Phase.IDLE)
        self.assertIsNone(self.session.current)
        self.assertEqual(len(self.session.ledger), 0)
        self.assertFalse(any(person.is_selected for person in self.session.all_participants()))

        self.session.start_prize_draw("P1")
        context = self.session.start_presentation(DrawMode.BATCH)
        self.assertIs(self.sequencer.phase, Phase.PREPARING)
        self.scheduler.run()
        self.assertEqual(self.session.current.committed_winners, context.winners)

    def test_import_drops_the_running_presentation(self) -> None:
        self.session.start_presentation(DrawMode.BATCH)
        self.scheduler.call_later(12000, lambda: self.session.load_document(small_document()))
        self.scheduler.run()
        self.assertIs(self.sequencer.phase, Phase.IDLE)
        self.assertIsNone(self.session.current)
        self.assertEqual(len(self.session.ledger), 0)
        self.assertEqual(self.session.available_count(), 5)

    def test_late_completion_for_a_closed_draw_is_dropped(self) -> None:
        context = self.session.start_presentation(DrawMode.BATCH)
        self.session.back_to_overview()
        with self.assertLogs("lottery_session", level="WARNING"):
            context.on_complete(context.winners)
        self.assertEqual(self.session.session_for("P1").committed_winners, [])
        self.assertEqual(len(self.session.ledger), 0)
        self.assertFalse(any(person.is_selected for person in self.session.all_participants()))

    def test_presentation_needs_a_sequencer(self) -> None:
        session = LotterySession(parse_config_document(small_document()))
        session.start_prize_draw("P1")
        with self.assertRaises(RuntimeError):
            session.start_presentation()


if __name__ == "__main__":
    unittest.main()
