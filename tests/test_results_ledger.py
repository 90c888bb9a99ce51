from __future__ import annotations

import unittest

from lottery_config import Participant, Prize
from results_ledger import PrizeStatus, ResultsLedger, prize_progress


class ResultsLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.first = Prize("P1", 1, "一等奖", 2)
        self.second = Prize("P2", 2, "二等奖", 1)
        self.alice = Participant("A", "Alice")
        self.bob = Participant("B", "Bob")

    def test_upsert_replaces_in_place(self) -> None:
        ledger = ResultsLedger()
        ledger.upsert(self.first, [self.alice])
        ledger.upsert(self.second, [self.bob])
        ledger.upsert(self.first, [self.alice, self.bob])
        self.assertEqual(len(ledger), 2)
        self.assertEqual([result.prize.prize_id for result in ledger.all_results()], ["P1", "P2"])
        self.assertEqual(ledger.get("P1").winners, [self.alice, self.bob])

    def test_entries_do_not_alias_the_caller_list(self) -> None:
        ledger = ResultsLedger()
        winners = [self.alice]
        ledger.upsert(self.first, winners)
        winners.append(self.bob)
        self.assertEqual(ledger.get("P1").winners, [self.alice])

    def test_reset_empties_the_history(self) -> None:
        ledger = ResultsLedger()
        ledger.upsert(self.first, [self.alice])
        ledger.reset()
        self.assertEqual(len(ledger), 0)
        self.assertIsNone(ledger.get("P1"))


class PrizeProgressTests(unittest.TestCase):
    def setUp(self) -> None:
        self.prize = Prize("P1", 1, "一等奖", 3)
        self.ledger = ResultsLedger()

    def test_untouched_prize_is_pending(self) -> None:
        progress = prize_progress(self.prize, None, 10)
        self.assertIs(progress.status, PrizeStatus.PENDING)
        self.assertEqual(progress.remaining, 3)

    def test_partly_drawn_prize_is_partial(self) -> None:
        result = self.ledger.upsert(self.prize, [Participant("A", "Alice")])
        progress = prize_progress(self.prize, result, 5)
        self.assertIs(progress.status, PrizeStatus.PARTIAL)
        self.assertEqual((progress.drawn, progress.remaining), (1, 2))
        self.assertFalse(progress.exhausted)

    def test_full_prize_is_completed(self) -> None:
        people = [Participant(pid, pid) for pid in "ABC"]
        result = self.ledger.upsert(self.prize, people)
        progress = prize_progress(self.prize, result, 5)
        self.assertIs(progress.status, PrizeStatus.COMPLETED)
        self.assertFalse(progress.exhausted)

    def test_short_prize_with_nobody_left_is_completed_and_exhausted(self) -> None:
        result = self.ledger.upsert(self.prize, [Participant("A", "Alice")])
        progress = prize_progress(self.prize, result, 0)
        self.assertIs(progress.status, PrizeStatus.COMPLETED)
        self.assertTrue(progress.exhausted)
        self.assertEqual(progress.remaining, 2)

    def test_undrawn_prize_with_an_empty_pool_stays_pending(self) -> None:
        progress = prize_progress(self.prize, None, 0)
        self.assertIs(progress.status, PrizeStatus.PENDING)
        self.assertFalse(progress.exhausted)
        self.assertEqual(progress.remaining, 3)


if __name__ == "__main__":
    unittest.main()
