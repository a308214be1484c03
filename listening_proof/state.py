import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from .models import TrackProgress

logger = logging.getLogger(__name__)

def epoch_ms() -> int:
    return int(time.time() * 1000)

class _TrackLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0  # holders plus waiters

class TrackStore:
    """In-memory registry of per-track listening state.

    State lives until reset() is called for the track; there is no expiry.
    Callers mutating a TrackProgress must hold locked(track_id).
    """

    def __init__(self, clock: Callable[[], int] = epoch_ms):
        self.clock = clock
        self._tracks: Dict[str, TrackProgress] = {}
        self._locks: Dict[str, _TrackLock] = {}
        self._lock = threading.Lock()

    @contextmanager
    def locked(self, track_id: str) -> Iterator[None]:
        """
        Holds the per-track lock. A lock entry is dropped once nobody holds or
        waits on it and the track has no state, so reset ids do not accumulate.
        """
        with self._lock:
            entry = self._locks.get(track_id)
            if entry is None:
                entry = self._locks[track_id] = _TrackLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0 and track_id not in self._tracks:
                    del self._locks[track_id]

    def lock_count(self) -> int:
        with self._lock:
            return len(self._locks)

    def get(self, track_id: str) -> Optional[TrackProgress]:
        with self._lock:
            return self._tracks.get(track_id)

    def get_or_create(self, track_id: str, duration_hint: float = 0.0) -> TrackProgress:
        with self._lock:
            track = self._tracks.get(track_id)
            if track is None:
                track = TrackProgress(
                    track_id=track_id,
                    duration_seconds=duration_hint if duration_hint and duration_hint > 0 else 0.0,
                    started_at=self.clock()
                )
                self._tracks[track_id] = track
                logger.debug(f"Tracking new listening lifecycle for {track_id}")
            return track

    def reset(self, track_id: str) -> bool:
        with self._lock:
            existed = self._tracks.pop(track_id, None) is not None
            entry = self._locks.get(track_id)
            if entry is not None and entry.users == 0:
                del self._locks[track_id]
            return existed

    def items(self) -> List[Tuple[str, TrackProgress]]:
        with self._lock:
            return list(self._tracks.items())

    def __contains__(self, track_id: str) -> bool:
        with self._lock:
            return track_id in self._tracks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracks)
