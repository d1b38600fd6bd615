from __future__ import annotations

import logging
import threading
from typing import Callable

import numpy as np

SAMPLE_RATE = 24000
CHANNELS = 1

logger = logging.getLogger(__name__)


def decode_pcm16(raw: bytes) -> np.ndarray:
    """Little-endian signed 16-bit PCM to float32 samples in [-1, 1)."""
    usable = len(raw) - (len(raw) % 2)
    samples = np.frombuffer(raw[:usable], dtype="<i2")
    return samples.astype(np.float32) / 32768.0


class AudioPlayer:
    def __init__(self, sample_rate: int = SAMPLE_RATE):
        self.sample_rate = sample_rate
        self._lock = threading.Lock()
        self._active = 0

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._active > 0

    def play(self, raw: bytes, on_finished: Callable[[], None] | None = None) -> threading.Thread:
        """Play ``raw`` once on a worker thread; ``on_finished`` fires exactly once."""
        samples = decode_pcm16(raw)

        def _worker() -> None:
            try:
                if samples.size:
                    self._play_blocking(samples)
            except Exception:  # noqa: BLE001
                logger.exception("Audio playback failed")
            finally:
                with self._lock:
                    self._active -= 1
                if on_finished is not None:
                    on_finished()

        with self._lock:
            self._active += 1
        thread = threading.Thread(target=_worker, name="clarity-audio", daemon=True)
        thread.start()
        return thread

    def _play_blocking(self, samples: np.ndarray) -> None:
        import sounddevice as sd

        sd.play(samples, samplerate=self.sample_rate, blocking=True)
