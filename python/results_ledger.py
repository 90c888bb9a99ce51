#!/usr/bin/env python3
"""In-memory results history, one entry per prize."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from lottery_config import Participant, Prize


class PrizeStatus(Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"


@dataclass
class LotteryResult:
    prize: Prize
    winners: List[Participant]


@dataclass(frozen=True)
class PrizeProgress:
    """Overview status of a prize.

    ``exhausted`` is only ever true together with ``COMPLETED`` and means the
    prize was closed with fewer winners than ``target`` because nobody was
    left to draw.
    """

    status: PrizeStatus
    drawn: int
    target: int
    eligible: int
    exhausted: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.target - self.drawn)


class ResultsLedger:
    def __init__(self) -> None:
        self._results: List[LotteryResult] = []
        self._index: Dict[str, int] = {}

    def upsert(self, prize: Prize, winners: Sequence[Participant]) -> LotteryResult:
        """Replace the entry of ``prize`` in place, or append a new one."""
        result = LotteryResult(prize=prize, winners=list(winners))
        position = self._index.get(prize.prize_id)
        if position is None:
            self._index[prize.prize_id] = len(self._results)
            self._results.append(result)
        else:
            self._results[position] = result
        return result

    def get(self, prize_id: str) -> Optional[LotteryResult]:
        position = self._index.get(prize_id)
        if position is None:
            return None
        return self._results[position]

    def all_results(self) -> List[LotteryResult]:
        return list(self._results)

    def reset(self) -> None:
        self._results = []
        self._index = {}

    def __len__(self) -> int:
        return len(self._results)


def prize_progress(prize: Prize, result: Optional[LotteryResult], eligible_count: int) -> PrizeProgress:
    """Overview status of one prize.

    A prize nobody has won stays ``PENDING`` even when its pool is empty,
    although ``draw_session.is_effectively_complete`` treats it as done; the
    status reports what was drawn, the draw helper what can still be drawn.
    """
    drawn = len(result.winners) if result is not None else 0
    if drawn == 0:
        status = PrizeStatus.PENDING
        exhausted = False
    elif drawn >= prize.draw_count:
        status = PrizeStatus.COMPLETED
        exhausted = False
    elif eligible_count == 0:
        status = PrizeStatus.COMPLETED
        exhausted = True
    else:
        status = PrizeStatus.PARTIAL
        exhausted = False
    return PrizeProgress(
        status=status,
        drawn=drawn,
        target=prize.draw_count,
        eligible=eligible_count,
        exhausted=exhausted,
    )
