"""Wall-clock deadline for a module. The deadline is fixed at module start and never extended."""
import logging
import time
from typing import Any, Dict, Optional

from sat_mirror.storage import KeyValueStorage

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def format_clock(seconds: int) -> str:
    """Format seconds as MM:SS."""
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


class ModuleTimer:
    """Countdown derived from a fixed end time, not from ticks."""

    def __init__(self, start_epoch_ms: int, end_epoch_ms: int):
        if end_epoch_ms < start_epoch_ms:
            raise ValueError("Timer end precedes its start")
        self.start_epoch_ms = int(start_epoch_ms)
        self.end_epoch_ms = int(end_epoch_ms)
        self._fired = False

    @classmethod
    def start(cls, duration_seconds: int, start_epoch_ms: int) -> "ModuleTimer":
        return cls(start_epoch_ms, start_epoch_ms + duration_seconds * 1000)

    @property
    def duration_seconds(self) -> int:
        return (self.end_epoch_ms - self.start_epoch_ms) // 1000

    def remaining_seconds(self, now: int) -> int:
        return max(0, (self.end_epoch_ms - now) // 1000)

    def elapsed_seconds(self, now: int) -> int:
        return max(0, (now - self.start_epoch_ms) // 1000)

    def is_expired(self, now: int) -> bool:
        return self.remaining_seconds(now) == 0

    def check_expired(self, now: int) -> bool:
        """True the first time the timer is seen expired, False on every later call."""
        if self._fired or not self.is_expired(now):
            return False
        self._fired = True
        logger.info("Module timer expired (deadline %s)", self.end_epoch_ms)
        return True

    # Persistence

    def to_dict(self) -> Dict[str, int]:
        return {"startTime": self.start_epoch_ms, "endTime": self.end_epoch_ms}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ModuleTimer"]:
        try:
            return cls(int(data["startTime"]), int(data["endTime"]))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed timer payload {data!r}: {e}")
            return None

    def save(self, storage: KeyValueStorage, key: str) -> None:
        storage.set(key, self.to_dict())

    @classmethod
    def load(cls, storage: KeyValueStorage, key: str) -> Optional["ModuleTimer"]:
        data = storage.get(key)
        if data is None:
            return None
        return cls.from_dict(data)

    @staticmethod
    def clear(storage: KeyValueStorage, key: str) -> None:
        storage.remove(key)
