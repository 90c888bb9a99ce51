#!/usr/bin/env python3
"""One lottery session: prizes, participant lists, draw sessions and results."""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from draw_session import (
    DrawMode,
    DrawSession,
    draw_winners,
    commit_winners,
    redraw_pending,
    mark_absent_and_redraw,
    reset_selection,
    resolve_eligible,
    select_winners,
    toggle_absent,
)
from lottery_config import (
    GlobalSettings,
    LotteryConfig,
    Participant,
    ParticipantList,
    Prize,
    build_config_document,
    load_config,
    parse_config_document,
    validate_prize_bindings,
)
from phase_sequencer import DrawContext, PhaseSequencer
from results_ledger import LotteryResult, PrizeProgress, ResultsLedger, prize_progress

logger = logging.getLogger(__name__)


class LotterySession:
    """Everything the operator drives between setup and reset.

    ``current`` is the draw session of the prize on screen. Draw sessions are
    kept per prize for the life of this object, so reopening a prize keeps
    its absent exclusions.
    """

    def __init__(
        self,
        config: LotteryConfig,
        rng: Optional[random.Random] = None,
        sequencer: Optional[PhaseSequencer] = None,
    ) -> None:
        validate_prize_bindings(config.prizes, config.participant_lists)
        self.prizes: List[Prize] = config.prizes
        self.participant_lists: List[ParticipantList] = config.participant_lists
        self.settings: GlobalSettings = config.settings
        self.rng = rng
        self.sequencer = sequencer
        self.ledger = ResultsLedger()
        self.current: Optional[DrawSession] = None
        self._sessions: Dict[str, DrawSession] = {}

    @classmethod
    def from_file(cls, path: Path, **kwargs: Any) -> "LotterySession":
        return cls(load_config(path), **kwargs)

    # --- configuration ---
    def load_document(self, document: Any) -> None:
        """Replace the whole setup with an imported document.

        The document is fully parsed before anything here changes; a rejected
        document raises and leaves the session as it was.
        """
        config = parse_config_document(document)
        self.cancel_presentation()
        self.prizes = config.prizes
        self.participant_lists = config.participant_lists
        self.settings = config.settings
        self._sessions = {}
        self.current = None
        self.ledger.reset()
        logger.info("Imported %d prizes and %d participant lists", len(self.prizes), len(self.participant_lists))

    def export_document(self) -> Dict[str, Any]:
        return build_config_document(self.prizes, self.participant_lists, self.settings)

    # --- lookups ---
    def all_participants(self) -> List[Participant]:
        return [person for item in self.participant_lists for person in item.participants]

    def available_count(self) -> int:
        people = self.all_participants()
        if self.settings.allow_repeat:
            return len(people)
        return sum(1 for person in people if not person.is_selected)

    def get_prize(self, prize_id: str) -> Prize:
        prize = next((item for item in self.prizes if item.prize_id == prize_id), None)
        if prize is None:
            raise ValueError(f"未找到奖项: {prize_id}")
        return prize

    def find_participant(self, participant_id: str) -> Optional[Participant]:
        return next((person for person in self.all_participants() if person.participant_id == participant_id), None)

    def session_for(self, prize_id: str) -> DrawSession:
        session = self._sessions.get(prize_id)
        if session is None:
            session = DrawSession(prize=self.get_prize(prize_id))
            self._sessions[prize_id] = session
        return session

    def eligible_for(self, prize_id: str) -> List[Participant]:
        prize = self.get_prize(prize_id)
        return resolve_eligible(prize, self.participant_lists, self.settings, self._sessions.get(prize_id))

    def progress(self, prize_id: str) -> PrizeProgress:
        prize = self.get_prize(prize_id)
        return prize_progress(prize, self.ledger.get(prize_id), len(self.eligible_for(prize_id)))

    def overview(self) -> List[Tuple[Prize, PrizeProgress]]:
        return [(prize, self.progress(prize.prize_id)) for prize in self.prizes]

    def results(self) -> List[LotteryResult]:
        return self.ledger.all_results()

    # --- drawing ---
    def start_prize_draw(self, prize_id: str) -> DrawSession:
        self.cancel_presentation()
        if self.current is not None and self.current.prize.prize_id != prize_id:
            self._freeze_current()
        prize = self.get_prize(prize_id)
        validate_prize_bindings([prize], self.participant_lists)
        self.current = self.session_for(prize_id)
        logger.info("Drawing %s (%d/%d drawn)", prize.name, len(self.current.committed_winners), prize.draw_count)
        return self.current

    def _require_current(self) -> DrawSession:
        if self.current is None:
            raise RuntimeError("no prize draw in progress")
        if self.sequencer is not None and self.sequencer.is_running:
            raise RuntimeError("wait for the presentation to finish")
        return self.current

    def draw_next(self) -> List[Participant]:
        return self._draw(DrawMode.STEPWISE)

    def draw_all(self) -> List[Participant]:
        return self._draw(DrawMode.BATCH)

    def _draw(self, mode: DrawMode) -> List[Participant]:
        session = self._require_current()
        winners = draw_winners(session, self.participant_lists, self.settings, mode, self.rng)
        self._record(session)
        return winners

    def toggle_absent(self, participant_id: str) -> bool:
        return toggle_absent(self._require_current(), participant_id)

    def is_marked_absent(self, participant_id: str) -> bool:
        """Absent marker of a winner of the prize on screen."""
        return self.current is not None and participant_id in self.current.pending_absent

    def redraw_absent(self, absent_ids: Optional[List[str]] = None) -> List[Participant]:
        """Redraw the given ids, or every winner currently flagged absent."""
        session = self._require_current()
        if absent_ids is None:
            _, replacements = redraw_pending(session, self.participant_lists, self.settings, self.rng)
        else:
            _, replacements = mark_absent_and_redraw(
                session, absent_ids, self.participant_lists, self.settings, self.rng
            )
        self._record(session)
        return replacements

    def _record(self, session: DrawSession) -> None:
        if session.committed_winners or self.ledger.get(session.prize.prize_id) is not None:
            self.ledger.upsert(session.prize, session.committed_winners)

    def _freeze_current(self) -> None:
        if self.current is not None:
            self._record(self.current)

    # --- timed presentation ---
    def start_presentation(self, mode: DrawMode = DrawMode.BATCH) -> DrawContext:
        """Pick winners now, commit them when the presentation completes.

        A presentation cancelled before its end commits nothing, and its
        completion can never land on a session other than the one it was
        started for.
        """
        if self.sequencer is None:
            raise RuntimeError("no phase sequencer attached")
        session = self._require_current()
        count = 1 if mode is DrawMode.STEPWISE else session.remaining_slots
        pool = resolve_eligible(session.prize, self.participant_lists, self.settings, session)
        winners = select_winners(session, self.participant_lists, self.settings, count, self.rng)

        def on_complete(presented: List[Participant]) -> None:
            if self.current is not session:
                logger.warning("Dropping presentation result for %s, draw no longer active", session.prize.name)
                return
            commit_winners(session, presented, self.settings)
            self._record(session)

        context = DrawContext(prize=session.prize, participants=pool, winners=winners, on_complete=on_complete)
        self.sequencer.start(context)
        return context

    def cancel_presentation(self) -> None:
        if self.sequencer is not None:
            self.sequencer.cancel()

    # --- navigation ---
    def back_to_overview(self) -> None:
        self.cancel_presentation()
        self._freeze_current()
        self.current = None

    def reset(self) -> None:
        """Start the lottery over: no winners, no exclusions, empty history."""
        self.cancel_presentation()
        reset_selection(self.participant_lists)
        self._sessions = {}
        self.current = None
        self.ledger.reset()
        logger.info("Lottery reset")
