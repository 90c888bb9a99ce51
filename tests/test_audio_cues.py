from __future__ import annotations

import sched
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import pygame

from audio_cues import PygameAudio, cue_paths_from_config
from phase_sequencer import SchedScheduler


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class CuePathTests(unittest.TestCase):
    def test_paths_follow_the_audio_dir(self) -> None:
        base = Path("/srv/lottery")
        paths = cue_paths_from_config(base, {"audio_dir": "sounds", "win_sound": "yay.ogg"})
        self.assertEqual(paths["victory"], base / "sounds" / "yay.ogg")
        self.assertEqual(paths["countdown"], base / "sounds" / "countdown.mp3")
        self.assertNotIn("shuffling", paths)


@patch("audio_cues.pygame.mixer")
class PygameAudioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.scheduler = SchedScheduler(sched.scheduler(self.clock.time, self.clock.sleep))
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.win_path = Path(self.tmp.name) / "win.mp3"
        self.win_path.write_bytes(b"ID3")

    def make_audio(self, **kwargs) -> PygameAudio:
        return PygameAudio(self.scheduler, {"victory": self.win_path}, **kwargs)

    def test_mixer_failure_disables_audio(self, mixer) -> None:
        mixer.get_init.return_value = False
        mixer.init.side_effect = pygame.error("no audio device")
        with self.assertLogs("audio_cues", level="WARNING"):
            audio = self.make_audio()
        self.assertFalse(audio.audio_ready)
        self.assertFalse(audio.play("victory"))

    def test_missing_file_does_not_start(self, mixer) -> None:
        audio = PygameAudio(self.scheduler, {"victory": Path(self.tmp.name) / "missing.mp3"})
        with self.assertLogs("audio_cues", level="WARNING"):
            self.assertFalse(audio.play("victory"))
        mixer.Sound.assert_not_called()

    def test_unknown_cue_does_not_start(self, mixer) -> None:
        self.assertFalse(self.make_audio().play("countdown"))

    def test_end_of_cue_is_reported_once(self, mixer) -> None:
        sound = mixer.Sound.return_value
        channel = sound.play.return_value
        channel.get_busy.side_effect = [True, True, False]
        channel.get_sound.return_value = sound
        ended = []

        audio = self.make_audio(volume=0.5)
        self.assertTrue(audio.play("victory", on_ended=lambda: ended.append(self.clock.now)))
        self.scheduler.run()

        self.assertEqual(len(ended), 1)
        self.assertAlmostEqual(ended[0], 0.3)
        channel.set_volume.assert_called_with(0.5)

    def test_muted_audio_never_plays(self, mixer) -> None:
        mixer.get_num_channels.return_value = 0
        audio = self.make_audio(muted=True)
        self.assertFalse(audio.play("victory"))
        mixer.Sound.assert_not_called()
        self.assertFalse(audio.toggle_mute())

    def test_volume_is_clamped_and_applied_to_channels(self, mixer) -> None:
        mixer.get_num_channels.return_value = 2
        audio = self.make_audio()
        audio.set_volume(1.5)
        self.assertEqual(audio.volume, 1.0)
        self.assertEqual(mixer.Channel.call_count, 2)
        mixer.Channel.return_value.set_volume.assert_called_with(1.0)
        audio.toggle_mute()
        mixer.Channel.return_value.set_volume.assert_called_with(0.0)

    def test_stop_all_cancels_pending_end_signals(self, mixer) -> None:
        sound = mixer.Sound.return_value
        channel = sound.play.return_value
        channel.get_busy.return_value = True
        channel.get_sound.return_value = sound
        on_ended = MagicMock()

        audio = self.make_audio()
        audio.play("victory", on_ended=on_ended)
        audio.stop_all()
        self.scheduler.run()

        on_ended.assert_not_called()
        mixer.stop.assert_called_once_with()


if __name__ == "__main__":
    unittest.main()
