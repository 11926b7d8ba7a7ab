"""Audio Cue Synthesizer.

Each notification type has a short tonal identity built from a fixed
sequence of (frequency, duration) pairs. No audio assets are shipped: the
cue is synthesized with numpy and played through sounddevice.

- Tones play back to back: each starts at the summed duration of the tones
  before it.
- One amplitude envelope spans the whole sequence, starting at START_GAIN
  and decaying exponentially towards END_GAIN (never zero).
- Playback failures (no audio device, PortAudio missing, blocked output)
  are logged and skipped; they never reach the notification path.
"""

import asyncio
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from config import settings
from logger_config import setup_logger

logger = setup_logger(__name__, 'audio.log')

START_GAIN = 0.3
END_GAIN = 0.01

# notification type -> ((frequency Hz, duration s), ...)
TONE_SEQUENCES: Dict[str, Tuple[Tuple[float, float], ...]] = {
    "water_intake": ((800, 0.1), (600, 0.1), (800, 0.1), (1000, 0.2)),
    "doctor_appointment": ((523, 0.15), (659, 0.15), (784, 0.3)),
    "baby_message": ((1047, 0.1), (1319, 0.1), (1568, 0.2)),
    "medication": ((440, 0.2), (440, 0.2), (660, 0.3)),
    "exercise": ((600, 0.1), (900, 0.1), (600, 0.1), (900, 0.2)),
    "baby_development_morning": ((523, 0.2), (659, 0.2), (784, 0.2), (1047, 0.3)),
    "baby_development_night": ((784, 0.25), (659, 0.25), (523, 0.4)),
}
DEFAULT_SEQUENCE: Tuple[Tuple[float, float], ...] = ((800, 0.2), (600, 0.2))


class AudioUnavailableError(Exception):
    """The audio subsystem is absent or refused playback."""


class ScheduledTone(NamedTuple):
    frequency: float
    start: float
    duration: float


class ToneSchedule(NamedTuple):
    """Sequential tones plus the envelope spanning them."""

    tones: List[ScheduledTone]
    total_duration: float
    start_gain: float = START_GAIN
    end_gain: float = END_GAIN

    def gain_at(self, t: float) -> float:
        """Envelope gain at t seconds after the envelope start."""
        if self.total_duration <= 0:
            return self.start_gain
        progress = min(max(t / self.total_duration, 0.0), 1.0)
        return self.start_gain * (self.end_gain / self.start_gain) ** progress


def sequence_for(notification_type: Optional[str]) -> Sequence[Tuple[float, float]]:
    return TONE_SEQUENCES.get(notification_type or "", DEFAULT_SEQUENCE)


def build_tone_schedule(notification_type: Optional[str]) -> ToneSchedule:
    """Lay out the tones of a notification type on a timeline.

    Args:
        notification_type: Reminder type; unknown types get the default cue

    Returns:
        ToneSchedule: tones with cumulative start offsets
    """
    tones = []
    elapsed = 0.0
    for frequency, duration in sequence_for(notification_type):
        tones.append(ScheduledTone(frequency=frequency, start=elapsed, duration=duration))
        elapsed += duration
    return ToneSchedule(tones=tones, total_duration=elapsed)


def render(schedule: ToneSchedule, sample_rate: Optional[int] = None) -> np.ndarray:
    """Render a schedule into mono float32 samples in [-1, 1]."""
    sample_rate = sample_rate or settings.AUDIO_SAMPLE_RATE
    total_samples = int(round(schedule.total_duration * sample_rate))
    t = np.arange(total_samples) / sample_rate
    signal = np.zeros(total_samples, dtype=np.float64)

    for tone in schedule.tones:
        first = int(round(tone.start * sample_rate))
        last = min(total_samples, int(round((tone.start + tone.duration) * sample_rate)))
        local_t = t[first:last] - tone.start
        signal[first:last] = np.sin(2 * np.pi * tone.frequency * local_t)

    if total_samples and schedule.total_duration > 0:
        envelope = schedule.start_gain * np.power(
            schedule.end_gain / schedule.start_gain, t / schedule.total_duration
        )
    else:
        envelope = np.full(total_samples, schedule.start_gain)
    return (signal * envelope).astype(np.float32)


class SoundDevicePlayer:
    """Plays rendered samples on the default output device."""

    def play(self, samples: np.ndarray, sample_rate: int) -> None:
        # PortAudio may be missing entirely, which surfaces as OSError on import
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise AudioUnavailableError(f"sounddevice unavailable: {e}") from e

        try:
            sd.play(samples, sample_rate)
            sd.wait()
        except Exception as e:
            raise AudioUnavailableError(f"Playback failed: {e}") from e


class AudioCueSynthesizer:
    """Synthesizes and plays the cue of a notification type."""

    def __init__(self, player=None, sample_rate: Optional[int] = None):
        self.player = player or SoundDevicePlayer()
        self.sample_rate = sample_rate or settings.AUDIO_SAMPLE_RATE

    def play(self, notification_type: Optional[str]) -> bool:
        """Play a cue. Never raises.

        Returns:
            bool: True if the cue was handed to the audio device
        """
        try:
            schedule = build_tone_schedule(notification_type)
            samples = render(schedule, self.sample_rate)
            self.player.play(samples, self.sample_rate)
            logger.info(f"Played '{notification_type}' cue ({len(schedule.tones)} tones)")
            return True
        except AudioUnavailableError as e:
            logger.warning(f"Audio unavailable, skipping '{notification_type}' cue: {e}")
        except Exception as e:
            logger.error(f"Error synthesizing '{notification_type}' cue: {e}", exc_info=True)
        return False

    async def play_async(self, notification_type: Optional[str]) -> bool:
        """Play off the event loop so blocking playback does not stall the worker."""
        return await asyncio.to_thread(self.play, notification_type)
