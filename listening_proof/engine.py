import logging
import math
import threading
from typing import Callable, List, Optional, Set, Union
from .config import Settings, settings as default_settings
from .models import ProgressUpdate, TrackProgress, Verdict
from .proof import generate_proof_artifact
from .state import TrackStore

logger = logging.getLogger(__name__)

TrackId = Union[str, int]
ProgressCallback = Callable[[ProgressUpdate], None]
VerdictCallback = Callable[[Verdict], None]

def normalize_track_id(track_id) -> Optional[str]:
    if track_id is None or isinstance(track_id, bool):
        return None
    if isinstance(track_id, (int, float)):
        track_id = str(track_id)
    if not isinstance(track_id, str):
        return None
    track_id = track_id.strip()
    return track_id or None

def _as_seconds(value) -> Optional[float]:
    """Returns value as a finite, non-negative float or None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return None
    return value

class ListeningVerifier:
    """
    Accumulates listening credit per track from playback-position samples and
    issues a single Verdict per lifecycle once the listened ratio reaches the
    configured threshold without a detected skip.
    """

    def __init__(self, policy: Optional[Settings] = None, store: Optional[TrackStore] = None):
        self.policy = policy or default_settings
        self.store = store or TrackStore()
        self._progress_subscribers: List[ProgressCallback] = []
        self._verdict_subscribers: List[VerdictCallback] = []
        self._subscribers_lock = threading.Lock()

    # Subscriptions

    def subscribe_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        return self._subscribe(self._progress_subscribers, callback)

    def subscribe_verdict(self, callback: VerdictCallback) -> Callable[[], None]:
        return self._subscribe(self._verdict_subscribers, callback)

    def _subscribe(self, subscribers: list, callback) -> Callable[[], None]:
        with self._subscribers_lock:
            subscribers.append(callback)

        def unsubscribe():
            with self._subscribers_lock:
                if callback in subscribers:
                    subscribers.remove(callback)
        return unsubscribe

    def _notify(self, subscribers: list, event):
        with self._subscribers_lock:
            targets = list(subscribers)
        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed for {event.track_id}: {e}", exc_info=True)

    # Ingest

    def register(self, track_id: TrackId, duration_hint: Optional[float] = None) -> bool:
        """Creates state for a track that started playing, without crediting anything."""
        tid = normalize_track_id(track_id)
        duration = _as_seconds(duration_hint) if duration_hint is not None else 0.0
        if tid is None or duration is None:
            logger.debug(f"Ignoring registration with track={track_id!r} duration={duration_hint!r}")
            return False
        with self.store.locked(tid):
            track = self.store.get_or_create(tid, duration)
            if not track.verified and duration > 0 and track.duration_seconds <= 0:
                track.duration_seconds = duration
        logger.info(f"Track playing: {tid}")
        return True

    def report_sample(self, track_id: TrackId, position_seconds: float,
                      duration_seconds: Optional[float] = None) -> Optional[ProgressUpdate]:
        """
        Ingests one playback-position sample.
        Returns the resulting ProgressUpdate, or None when the sample was malformed and ignored.
        """
        tid = normalize_track_id(track_id)
        position = _as_seconds(position_seconds)
        duration = _as_seconds(duration_seconds) if duration_seconds is not None else 0.0
        if tid is None or position is None or duration is None:
            logger.debug(f"Ignoring malformed sample track={track_id!r} position={position_seconds!r} duration={duration_seconds!r}")
            return None

        verdict = None
        with self.store.locked(tid):
            track = self.store.get_or_create(tid, duration)
            if not track.verified:
                self._ingest(track, position, duration)
                verdict = self._evaluate(track)
            update = ProgressUpdate(
                track_id=tid,
                ratio=track.ratio,
                cheat=track.cheat_flag,
                listened_seconds=track.listened_seconds,
                duration_seconds=track.duration_seconds,
                verified=track.verified
            )

        self._notify(self._progress_subscribers, update)
        if verdict is not None:
            self._notify(self._verdict_subscribers, verdict)
        return update

    def _ingest(self, track: TrackProgress, position: float, duration: float):
        # Only an unknown duration may be filled in; a known one is never shrunk
        if duration > 0 and track.duration_seconds <= 0:
            track.duration_seconds = duration

        delta = position - track.last_position

        # Forward seek: disqualifies this lifecycle
        if track.last_position > 0 and delta > self.policy.POL_CHEAT_GAP_SECONDS:
            if not track.cheat_flag:
                logger.warning(f"Skip detected on {track.track_id}: jumped {delta:.1f}s "
                               f"({track.last_position:.1f}s -> {position:.1f}s)")
            track.cheat_flag = True

        cap = self.policy.POL_PER_SAMPLE_CAP_SECONDS
        if 0 < delta <= cap + self.policy.POL_CAP_TOLERANCE_SECONDS:
            track.listened_seconds += min(delta, cap)

        track.last_position = position

        if track.duration_seconds > 0 and track.listened_seconds > track.duration_seconds:
            track.listened_seconds = track.duration_seconds

    def _evaluate(self, track: TrackProgress) -> Optional[Verdict]:
        if track.verified or track.cheat_flag:
            return None
        if track.ratio < self.policy.POL_THRESHOLD:
            return None

        track.verified = True
        track.proof_artifact = generate_proof_artifact(
            track.track_id, track.listened_seconds, track.started_at, not track.cheat_flag
        )
        logger.info(f"Listening threshold reached for {track.track_id} "
                    f"({track.listened_seconds:.1f}s of {track.duration_seconds:.1f}s)")
        return Verdict(
            track_id=track.track_id,
            listened_seconds=track.listened_seconds,
            duration_seconds=track.duration_seconds,
            proof_artifact=track.proof_artifact
        )

    # Queries

    def _lookup(self, track_id: TrackId) -> Optional[TrackProgress]:
        tid = normalize_track_id(track_id)
        if tid is None:
            return None
        return self.store.get(tid)

    def is_verified(self, track_id: TrackId) -> bool:
        track = self._lookup(track_id)
        return track.verified if track else False

    def progress(self, track_id: TrackId) -> float:
        track = self._lookup(track_id)
        return track.ratio if track else 0.0

    def any_verified(self) -> bool:
        return any(track.verified for _, track in self.store.items())

    def verified_track_ids(self) -> Set[str]:
        return {tid for tid, track in self.store.items() if track.verified}

    def proof_for(self, track_id: TrackId) -> Optional[str]:
        track = self._lookup(track_id)
        if not track or not track.verified:
            return None
        return track.proof_artifact

    def snapshot(self, track_id: TrackId) -> Optional[TrackProgress]:
        tid = normalize_track_id(track_id)
        if tid is None:
            return None
        with self.store.locked(tid):
            track = self.store.get(tid)
            return track.model_copy() if track else None

    def reset(self, track_id: TrackId) -> None:
        tid = normalize_track_id(track_id)
        if tid is None:
            return
        with self.store.locked(tid):
            existed = self.store.reset(tid)
        if existed:
            logger.info(f"Reset listening state for {tid}")
