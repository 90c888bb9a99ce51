#!/usr/bin/env python3
"""pygame-backed sound cues for the presentation phases."""

from __future__ import annotations

import itertools
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pygame

from lottery_config import resolve_path

logger = logging.getLogger(__name__)

# Cue name -> config key holding its file name.
CUE_CONFIG_KEYS = {
    "countdown": "countdown_sound",
    "activation": "activation_sound",
    "shuffling": "shuffling_sound",
    "victory": "win_sound",
    "celebration": "celebration_sound",
}

DEFAULT_CUE_FILES = {
    "countdown_sound": "countdown.mp3",
    "activation_sound": "animation-sound.mp3",
    "shuffling_sound": "",
    "win_sound": "win.mp3",
    "celebration_sound": "celebration.mp3",
}


def cue_paths_from_config(base_dir: Path, config: Dict[str, Any]) -> Dict[str, Path]:
    audio_dir = resolve_path(base_dir, str(config.get("audio_dir", "audio")))
    paths = {}
    for cue, key in CUE_CONFIG_KEYS.items():
        file_name = str(config.get(key, DEFAULT_CUE_FILES[key]) or "")
        if file_name:
            paths[cue] = resolve_path(audio_dir, file_name)
    return paths


class PygameAudio:
    """Plays one-shot cues through ``pygame.mixer``.

    The end of a cue is detected by polling its channel on the caller's
    scheduler. Missing files and mixer errors are logged and reported as
    "did not start", which leaves the sequencer on its backup timers.
    """

    POLL_MS = 100

    def __init__(
        self,
        scheduler: Any,
        cue_paths: Dict[str, Path],
        volume: float = 0.7,
        muted: bool = False,
    ) -> None:
        self.scheduler = scheduler
        self.cue_paths = dict(cue_paths)
        self._volume = self._clamp(volume)
        self._muted = muted
        self._sounds: Dict[str, Any] = {}
        self._watches: Dict[int, Any] = {}
        self._watch_ids = itertools.count()
        self.audio_ready = False
        self._init_mixer()

    @staticmethod
    def _clamp(volume: float) -> float:
        return max(0.0, min(1.0, float(volume)))

    def _init_mixer(self) -> None:
        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init()
            self.audio_ready = True
        except pygame.error as exc:
            logger.warning("Audio disabled, mixer failed to start: %s", exc)
            self.audio_ready = False

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def muted(self) -> bool:
        return self._muted

    def set_volume(self, volume: float) -> None:
        self._volume = self._clamp(volume)
        self._apply_volume()

    def toggle_mute(self) -> bool:
        self._muted = not self._muted
        self._apply_volume()
        return self._muted

    def _apply_volume(self) -> None:
        if not self.audio_ready:
            return
        level = 0.0 if self._muted else self._volume
        for index in range(pygame.mixer.get_num_channels()):
            pygame.mixer.Channel(index).set_volume(level)

    def _load(self, cue: str) -> Optional[Any]:
        if cue in self._sounds:
            return self._sounds[cue]
        path = self.cue_paths.get(cue)
        if path is None:
            return None
        if not path.exists():
            logger.warning("Sound for cue %s not found: %s", cue, path)
            return None
        try:
            sound = pygame.mixer.Sound(str(path))
        except pygame.error as exc:
            logger.warning("Could not load %s: %s", path, exc)
            return None
        self._sounds[cue] = sound
        return sound

    def play(self, cue: str, on_ended: Optional[Callable[[], None]] = None) -> bool:
        if not self.audio_ready or self._muted:
            return False
        sound = self._load(cue)
        if sound is None:
            return False
        try:
            channel = sound.play()
        except pygame.error as exc:
            logger.warning("Could not play cue %s: %s", cue, exc)
            return False
        if channel is None:
            logger.warning("No free mixer channel for cue %s", cue)
            return False
        channel.set_volume(self._volume)
        if on_ended is not None:
            self._watch(channel, sound, on_ended)
        return True

    def _watch(self, channel: Any, sound: Any, on_ended: Callable[[], None]) -> None:
        watch_id = next(self._watch_ids)

        def poll() -> None:
            if channel.get_busy() and channel.get_sound() is sound:
                self._watches[watch_id] = self.scheduler.call_later(self.POLL_MS, poll)
                return
            self._watches.pop(watch_id, None)
            on_ended()

        self._watches[watch_id] = self.scheduler.call_later(self.POLL_MS, poll)

    def stop_all(self) -> None:
        watches, self._watches = self._watches, {}
        for handle in watches.values():
            self.scheduler.cancel(handle)
        if not self.audio_ready:
            return
        try:
            pygame.mixer.stop()
        except pygame.error as exc:
            logger.warning("Could not stop audio: %s", exc)
