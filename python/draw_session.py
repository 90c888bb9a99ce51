#!/usr/bin/env python3
"""Eligibility, sampling, commit and redraw for a single prize.

This module is the only writer of ``Participant.is_selected``,
``Participant.is_absent`` and of every ``DrawSession`` field. Presentation
code reads draw state and calls these functions; it never assigns flags.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from lottery_config import (
    GlobalSettings,
    InsufficientPoolError,
    InvalidConfigurationError,
    Participant,
    ParticipantList,
    Prize,
)

logger = logging.getLogger(__name__)


class DrawMode(Enum):
    STEPWISE = "stepwise"
    BATCH = "batch"


@dataclass
class DrawSession:
    """Mutable draw state of one prize.

    ``committed_winners`` keeps draw order (first drawn, first listed).
    ``permanently_excluded`` holds every id ever redrawn as absent for this
    prize; it only grows until the whole lottery is reset.
    ``pending_absent`` holds winners flagged absent whose redraw has not run.
    """

    prize: Prize
    committed_winners: List[Participant] = field(default_factory=list)
    permanently_excluded: Set[str] = field(default_factory=set)
    pending_absent: List[str] = field(default_factory=list)

    @property
    def remaining_slots(self) -> int:
        return max(0, self.prize.draw_count - len(self.committed_winners))

    def winner_ids(self) -> List[str]:
        return [winner.participant_id for winner in self.committed_winners]


def base_pool(prize: Prize, participant_lists: Sequence[ParticipantList]) -> List[Participant]:
    """Participants of the bound list, or of every list when the prize is unbound."""
    if prize.participant_list_id is None:
        return [person for item in participant_lists for person in item.participants]
    bound = next((item for item in participant_lists if item.list_id == prize.participant_list_id), None)
    if bound is None:
        raise InvalidConfigurationError(
            f"Prize {prize.prize_id} is bound to participant list {prize.participant_list_id}, which does not exist"
        )
    return list(bound.participants)


def resolve_eligible(
    prize: Prize,
    participant_lists: Sequence[ParticipantList],
    settings: GlobalSettings,
    session: Optional[DrawSession] = None,
) -> List[Participant]:
    """Return the candidates for ``prize`` right now, in list order.

    The result may be shorter than the prize's remaining slots; callers treat
    that as an insufficient pool rather than padding it.
    """
    pool = base_pool(prize, participant_lists)
    if not settings.allow_repeat:
        pool = [person for person in pool if not person.is_selected]
    if session is not None:
        committed_ids = set(session.winner_ids())
        pool = [
            person
            for person in pool
            if person.participant_id not in committed_ids
            and person.participant_id not in session.permanently_excluded
        ]
    return pool


def sample_winners(
    pool: Sequence[Participant],
    count: int,
    rng: Optional[random.Random] = None,
) -> List[Participant]:
    """Pick ``min(count, len(pool))`` distinct participants uniformly.

    Shuffles a copy of the pool (Fisher-Yates via ``Random.shuffle``) and
    slices it. A short pool yields a short result; deciding whether that is
    enough is up to the caller.
    """
    if count < 0:
        raise ValueError(f"count must not be negative, got {count}")
    shuffled = list(pool)
    (rng or random).shuffle(shuffled)
    return shuffled[:count]


def select_winners(
    session: DrawSession,
    participant_lists: Sequence[ParticipantList],
    settings: GlobalSettings,
    count: int,
    rng: Optional[random.Random] = None,
    strict: bool = False,
) -> List[Participant]:
    """Sample up to ``count`` winners without committing them."""
    count = min(count, session.remaining_slots)
    if count <= 0:
        return []
    pool = resolve_eligible(session.prize, participant_lists, settings, session)
    if not pool or (strict and len(pool) < count):
        raise InsufficientPoolError(session.prize.name, count, len(pool))
    return sample_winners(pool, count, rng)


def commit_winners(
    session: DrawSession,
    new_winners: Sequence[Participant],
    settings: GlobalSettings,
) -> DrawSession:
    """Append ``new_winners`` and, under no-repeat, mark them selected.

    Everything is checked before the first mutation, so a rejected commit
    leaves the session and the participants as they were.
    """
    if len(session.committed_winners) + len(new_winners) > session.prize.draw_count:
        raise ValueError(
            f"{session.prize.name} only has {session.remaining_slots} open slot(s), "
            f"cannot commit {len(new_winners)} winner(s)"
        )
    seen = set(session.winner_ids())
    for person in new_winners:
        if person.participant_id in seen:
            raise ValueError(f"{person.name} ({person.participant_id}) is already a winner of {session.prize.name}")
        if person.participant_id in session.permanently_excluded:
            raise ValueError(f"{person.name} ({person.participant_id}) was marked absent for {session.prize.name}")
        if not settings.allow_repeat and person.is_selected:
            raise ValueError(f"{person.name} ({person.participant_id}) has already won another prize")
        seen.add(person.participant_id)

    for person in new_winners:
        session.committed_winners.append(person)
        if not settings.allow_repeat:
            person.is_selected = True
    if new_winners:
        logger.info(
            "Committed %d winner(s) for %s (%d/%d)",
            len(new_winners),
            session.prize.name,
            len(session.committed_winners),
            session.prize.draw_count,
        )
    return session


def draw_winners(
    session: DrawSession,
    participant_lists: Sequence[ParticipantList],
    settings: GlobalSettings,
    mode: DrawMode = DrawMode.BATCH,
    rng: Optional[random.Random] = None,
) -> List[Participant]:
    """Draw one winner (stepwise) or every open slot (batch) and commit."""
    if session.remaining_slots == 0:
        return []
    count = 1 if mode is DrawMode.STEPWISE else session.remaining_slots
    winners = select_winners(session, participant_lists, settings, count, rng)
    commit_winners(session, winners, settings)
    return winners


def is_exhausted(
    session: DrawSession,
    participant_lists: Sequence[ParticipantList],
    settings: GlobalSettings,
) -> bool:
    """True when slots remain but nobody is left to fill them."""
    if session.remaining_slots == 0:
        return False
    return not resolve_eligible(session.prize, participant_lists, settings, session)


def is_effectively_complete(
    session: DrawSession,
    participant_lists: Sequence[ParticipantList],
    settings: GlobalSettings,
) -> bool:
    return session.remaining_slots == 0 or is_exhausted(session, participant_lists, settings)


def toggle_absent(session: DrawSession, participant_id: str) -> bool:
    """Flip the pending absent marker of a winner; returns the new state.

    Nothing is removed or excluded until the redraw actually runs, so
    toggling back is a full undo.
    """
    winner = next((person for person in session.committed_winners if person.participant_id == participant_id), None)
    if winner is None:
        raise ValueError(f"{participant_id} is not a winner of {session.prize.name}")
    if participant_id in session.pending_absent:
        session.pending_absent.remove(participant_id)
        winner.is_absent = False
        return False
    session.pending_absent.append(participant_id)
    winner.is_absent = True
    return True


def mark_absent_and_redraw(
    session: DrawSession,
    absent_ids: Iterable[str],
    participant_lists: Sequence[ParticipantList],
    settings: GlobalSettings,
    rng: Optional[random.Random] = None,
) -> Tuple[DrawSession, List[Participant]]:
    """Replace absent winners with freshly drawn ones.

    Absentees leave ``committed_winners`` and join ``permanently_excluded``;
    replacements are drawn from the pool of the updated session and appended.
    Either every absentee is replaced or nothing changes.
    """
    requested = set(absent_ids)
    absentees = [person for person in session.committed_winners if person.participant_id in requested]
    if not absentees:
        return session, []
    absentee_ids = {person.participant_id for person in absentees}

    trial = DrawSession(
        prize=session.prize,
        committed_winners=[person for person in session.committed_winners if person.participant_id not in absentee_ids],
        permanently_excluded=session.permanently_excluded | absentee_ids,
    )
    pool = resolve_eligible(session.prize, participant_lists, settings, trial)
    if len(pool) < len(absentees):
        raise InsufficientPoolError(session.prize.name, len(absentees), len(pool))
    replacements = sample_winners(pool, len(absentees), rng)

    session.committed_winners[:] = trial.committed_winners
    session.permanently_excluded.update(absentee_ids)
    session.pending_absent[:] = [pid for pid in session.pending_absent if pid not in absentee_ids]
    for person in absentees:
        person.is_absent = False
        if not settings.allow_repeat:
            # They did not win after all.
            person.is_selected = False
    logger.info(
        "Redraw for %s: %s replaced",
        session.prize.name,
        ", ".join(sorted(absentee_ids)),
    )
    commit_winners(session, replacements, settings)
    return session, replacements


def redraw_pending(
    session: DrawSession,
    participant_lists: Sequence[ParticipantList],
    settings: GlobalSettings,
    rng: Optional[random.Random] = None,
) -> Tuple[DrawSession, List[Participant]]:
    return mark_absent_and_redraw(session, list(session.pending_absent), participant_lists, settings, rng)


def reset_selection(participant_lists: Iterable[ParticipantList]) -> None:
    """Clear every selection and absent flag, as on a fresh lottery."""
    for item in participant_lists:
        for person in item.participants:
            person.is_selected = False
            person.is_absent = False
