#!/usr/bin/env python3
"""Timed presentation phases shown before winners are announced.

The sequencer only choreographs: it never commits winners or touches draw
state. Winners are handed to it up front and given back through the
completion callback once the celebration ends.
"""

from __future__ import annotations

import logging
import sched
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from lottery_config import Participant, Prize

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    ACTIVATING = "activating"
    SHUFFLING = "shuffling"
    REVEALING = "revealing"
    CELEBRATING = "celebrating"


# Forward edges only; every phase may also drop back to IDLE.
TRANSITIONS: Dict[Phase, Phase] = {
    Phase.IDLE: Phase.PREPARING,
    Phase.PREPARING: Phase.ACTIVATING,
    Phase.ACTIVATING: Phase.SHUFFLING,
    Phase.SHUFFLING: Phase.REVEALING,
    Phase.REVEALING: Phase.CELEBRATING,
    Phase.CELEBRATING: Phase.IDLE,
}

PHASE_CUES: Dict[Phase, str] = {
    Phase.PREPARING: "countdown",
    Phase.ACTIVATING: "activation",
    Phase.SHUFFLING: "shuffling",
    Phase.REVEALING: "victory",
    Phase.CELEBRATING: "celebration",
}


@dataclass
class PhaseTimings:
    """Dwell times in milliseconds."""

    countdown_ticks: int = 3
    tick_ms: int = 1000
    countdown_grace_ms: int = 500
    activation_backup_ms: int = 6000
    shuffle_min_ms: int = 4000
    shuffle_max_ms: int = 6000
    shuffle_per_participant_ms: int = 50
    reveal_first_ms: int = 1000
    reveal_step_ms: int = 500
    reveal_hold_ms: int = 2000
    celebration_ms: int = 3000

    @classmethod
    def from_config(cls, raw: Optional[Dict[str, Any]]) -> "PhaseTimings":
        if not raw:
            return cls()
        known = {item.name for item in fields(cls)}
        overrides = {}
        for key, value in raw.items():
            if key not in known:
                logger.warning("Ignoring unknown phase timing %r", key)
                continue
            overrides[key] = int(value)
            if overrides[key] < 0:
                raise ValueError(f"phase timing {key} must not be negative")
        return cls(**overrides)

    def shuffle_duration(self, participant_count: int) -> int:
        scaled = participant_count * self.shuffle_per_participant_ms
        return min(self.shuffle_max_ms, max(self.shuffle_min_ms, scaled))

    def reveal_offsets(self, winner_count: int) -> List[int]:
        return [self.reveal_first_ms + index * self.reveal_step_ms for index in range(winner_count)]

    def reveal_duration(self, winner_count: int) -> int:
        offsets = self.reveal_offsets(winner_count)
        last = offsets[-1] if offsets else self.reveal_first_ms
        return last + self.reveal_hold_ms

    def total_duration(self, participant_count: int, winner_count: int) -> int:
        """Length of a cycle when no media signal arrives early."""
        return (
            self.countdown_ticks * self.tick_ms
            + self.countdown_grace_ms
            + self.activation_backup_ms
            + self.shuffle_duration(participant_count)
            + self.reveal_duration(winner_count)
            + self.celebration_ms
        )


@dataclass
class DrawContext:
    prize: Prize
    participants: List[Participant]
    winners: List[Participant]
    on_complete: Optional[Callable[[List[Participant]], None]] = field(default=None, repr=False)


class TkScheduler:
    """Schedules on the Tk event loop through ``after``."""

    def __init__(self, widget: Any) -> None:
        self.widget = widget

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> Any:
        return self.widget.after(max(0, int(delay_ms)), callback)

    def cancel(self, handle: Any) -> None:
        self.widget.after_cancel(handle)


class SchedScheduler:
    """Schedules on a :class:`sched.scheduler`; used by the CLI and tests."""

    def __init__(self, scheduler: Optional[sched.scheduler] = None) -> None:
        self.scheduler = scheduler or sched.scheduler()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> Any:
        return self.scheduler.enter(max(0, delay_ms) / 1000.0, 0, callback)

    def cancel(self, handle: Any) -> None:
        try:
            self.scheduler.cancel(handle)
        except ValueError:
            # Already ran.
            return

    def run(self) -> None:
        self.scheduler.run()


class SilentAudio:
    """Audio stand-in for muted or headless runs; nothing ever plays."""

    def play(self, cue: str, on_ended: Optional[Callable[[], None]] = None) -> bool:
        return False

    def stop_all(self) -> None:
        return None


class PhaseSequencer:
    """Drives ``idle -> preparing -> activating -> shuffling -> revealing -> celebrating -> idle``.

    Every scheduled callback captures the generation it was scheduled under.
    Each transition and each cancel bumps the generation, so a timer or media
    signal that outlives its phase (or a cancelled draw) does nothing.
    """

    def __init__(
        self,
        scheduler: Any,
        audio: Any = None,
        timings: Optional[PhaseTimings] = None,
        on_phase: Optional[Callable[[Phase], None]] = None,
        on_complete: Optional[Callable[[List[Participant]], None]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        on_reveal: Optional[Callable[[Participant, int], None]] = None,
    ) -> None:
        self.scheduler = scheduler
        self.audio = audio or SilentAudio()
        self.timings = timings or PhaseTimings()
        self.on_phase = on_phase
        self.on_complete = on_complete
        self.on_tick = on_tick
        self.on_reveal = on_reveal

        self.phase = Phase.IDLE
        self.countdown = 0
        self.revealed: List[Participant] = []
        self._context: Optional[DrawContext] = None
        self._generation = 0
        self._handles: List[Any] = []
        self._entry_actions: Dict[Phase, Callable[[], None]] = {
            Phase.IDLE: self._enter_idle,
            Phase.PREPARING: self._enter_preparing,
            Phase.ACTIVATING: self._enter_activating,
            Phase.SHUFFLING: self._enter_shuffling,
            Phase.REVEALING: self._enter_revealing,
            Phase.CELEBRATING: self._enter_celebrating,
        }

    @property
    def is_running(self) -> bool:
        return self.phase is not Phase.IDLE

    @property
    def context(self) -> Optional[DrawContext]:
        return self._context

    def start(self, context: DrawContext) -> None:
        if self.is_running:
            raise RuntimeError(f"a draw presentation is already running ({self.phase.value})")
        self._context = context
        logger.info(
            "Presentation started for %s: %d candidate(s), %d winner(s)",
            context.prize.name,
            len(context.participants),
            len(context.winners),
        )
        self._transition(Phase.PREPARING)

    def cancel(self) -> None:
        """Abort the running cycle. Calling it while idle does nothing."""
        if not self.is_running:
            return
        logger.info("Presentation cancelled during %s", self.phase.value)
        self.audio.stop_all()
        self._transition(Phase.IDLE)

    # --- transitions ---
    def _transition(self, target: Phase) -> None:
        if target is not Phase.IDLE and TRANSITIONS[self.phase] is not target:
            raise RuntimeError(f"illegal phase transition {self.phase.value} -> {target.value}")
        self._clear_pending()
        self.phase = target
        logger.debug("Phase -> %s", target.value)
        if self.on_phase:
            self.on_phase(target)
        # on_phase may have cancelled us.
        if self.phase is not target:
            return
        self._entry_actions[target]()

    def _clear_pending(self) -> None:
        self._generation += 1
        handles, self._handles = self._handles, []
        for handle in handles:
            self.scheduler.cancel(handle)

    def _schedule(self, delay_ms: int, callback: Callable[[], None]) -> None:
        generation = self._generation

        def fire() -> None:
            if generation != self._generation:
                return
            callback()

        self._handles.append(self.scheduler.call_later(delay_ms, fire))

    def _play(self, phase: Phase, on_ended: Optional[Callable[[], None]] = None) -> bool:
        cue = PHASE_CUES[phase]
        started = self.audio.play(cue, on_ended)
        if not started:
            logger.debug("Cue %s did not start", cue)
        return started

    # --- entry actions ---
    def _enter_idle(self) -> None:
        self.countdown = 0
        self.revealed = []
        self._context = None

    def _enter_preparing(self) -> None:
        self.countdown = self.timings.countdown_ticks
        self._play(Phase.PREPARING)
        if self.countdown <= 0:
            self._schedule(self.timings.countdown_grace_ms, lambda: self._transition(Phase.ACTIVATING))
            return
        self._schedule(self.timings.tick_ms, self._countdown_tick)

    def _countdown_tick(self) -> None:
        self.countdown -= 1
        if self.on_tick:
            self.on_tick(self.countdown)
        if self.phase is not Phase.PREPARING:
            return
        if self.countdown > 0:
            self._schedule(self.timings.tick_ms, self._countdown_tick)
        else:
            self._schedule(self.timings.countdown_grace_ms, lambda: self._transition(Phase.ACTIVATING))

    def _enter_activating(self) -> None:
        self._race_media(Phase.ACTIVATING, self.timings.activation_backup_ms, Phase.SHUFFLING)

    def _race_media(self, phase: Phase, backup_ms: int, target: Phase) -> None:
        """Leave ``phase`` when its cue ends or when the backup timer fires, whichever is first."""
        generation = self._generation

        def finish(source: str) -> None:
            if generation != self._generation or self.phase is not phase:
                return
            if source == "backup":
                logger.warning("No end signal from %s cue, continuing after %d ms", PHASE_CUES[phase], backup_ms)
            self._transition(target)

        self._schedule(backup_ms, lambda: finish("backup"))
        self._play(phase, on_ended=lambda: finish("media"))

    def _enter_shuffling(self) -> None:
        assert self._context is not None
        self._play(Phase.SHUFFLING)
        duration = self.timings.shuffle_duration(len(self._context.participants))
        self._schedule(duration, lambda: self._transition(Phase.REVEALING))

    def _enter_revealing(self) -> None:
        assert self._context is not None
        self._play(Phase.REVEALING)
        winners = list(self._context.winners)
        for index, offset in enumerate(self.timings.reveal_offsets(len(winners))):
            self._schedule(offset, lambda index=index: self._reveal(winners[index], index))
        self._schedule(self.timings.reveal_duration(len(winners)), lambda: self._transition(Phase.CELEBRATING))

    def _reveal(self, winner: Participant, index: int) -> None:
        self.revealed.append(winner)
        if self.on_reveal:
            self.on_reveal(winner, index)

    def _enter_celebrating(self) -> None:
        self._play(Phase.CELEBRATING)
        self._schedule(self.timings.celebration_ms, self._finish)

    def _finish(self) -> None:
        assert self._context is not None
        context = self._context
        winners = list(context.winners)
        self._transition(Phase.IDLE)
        logger.info("Presentation finished for %s", context.prize.name)
        if context.on_complete:
            context.on_complete(winners)
        if self.on_complete:
            self.on_complete(winners)


class ManualRevealSequencer:
    """Operator-paced variant: ``idle -> revealing -> idle`` without timers.

    Winners are revealed as the operator presses "draw next" / "draw all".
    """

    def __init__(
        self,
        on_phase: Optional[Callable[[Phase], None]] = None,
        on_complete: Optional[Callable[[List[Participant]], None]] = None,
        on_reveal: Optional[Callable[[Participant, int], None]] = None,
    ) -> None:
        self.on_phase = on_phase
        self.on_complete = on_complete
        self.on_reveal = on_reveal
        self.phase = Phase.IDLE
        self.revealed: List[Participant] = []

    @property
    def is_running(self) -> bool:
        return self.phase is not Phase.IDLE

    def begin(self) -> None:
        if self.is_running:
            raise RuntimeError("a manual reveal is already running")
        self._set_phase(Phase.REVEALING)

    def reveal(self, winners: List[Participant]) -> None:
        if self.phase is not Phase.REVEALING:
            raise RuntimeError("call begin() before revealing winners")
        for winner in winners:
            self.revealed.append(winner)
            if self.on_reveal:
                self.on_reveal(winner, len(self.revealed) - 1)

    def finish(self) -> None:
        if not self.is_running:
            return
        winners = list(self.revealed)
        self._set_phase(Phase.IDLE)
        if self.on_complete:
            self.on_complete(winners)

    def cancel(self) -> None:
        if not self.is_running:
            return
        self._set_phase(Phase.IDLE)

    def _set_phase(self, phase: Phase) -> None:
        if phase is Phase.IDLE:
            self.revealed = []
        self.phase = phase
        if self.on_phase:
            self.on_phase(phase)
