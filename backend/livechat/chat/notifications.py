"""
Notification sound played by chat views when a message from the other party arrives.
"""

import inspect
import io
import logging
import math
import wave
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# (wav bytes, volume 0..1) -> None or awaitable
SoundPlayer = Callable[[bytes, float], Any]


def build_chime(frequency: float = 880.0, duration: float = 0.15, sample_rate: int = 8000) -> bytes:
    """Render a short 8-bit mono sine chime as WAV bytes."""
    frames = round(duration * sample_rate)
    fade = max(1, frames // 5)
    samples = bytearray()
    for i in range(frames):
        envelope = min(1.0, i / fade, (frames - i) / fade)
        value = math.sin(2 * math.pi * frequency * i / sample_rate) * envelope
        samples.append(int(128 + 100 * value))

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(1)
        wav.setframerate(sample_rate)
        wav.writeframes(bytes(samples))
    return buffer.getvalue()


CHIME_WAV = build_chime()


class NotificationSound:
    """
    Plays the embedded chime through an injected player.

    Playback failures (no output device, autoplay blocked) are never errors.
    """

    def __init__(
        self,
        player: Optional[SoundPlayer] = None,
        volume: float = 0.3,
        asset: Optional[bytes] = None
    ):
        self.player = player
        self.volume = volume
        self.asset = asset or CHIME_WAV
        self.played = 0

    async def play(self) -> bool:
        """Play the chime once. Returns whether it was played."""
        if self.player is None:
            return False
        try:
            result = self.player(self.asset, self.volume)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.debug(f"Notification sound not played: {e}")
            return False
        self.played += 1
        return True
