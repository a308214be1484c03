"""
Upstream adapters that turn player activity into verifier calls.

PlayerEventAdapter covers event-driven players (native media elements and
third-party buses such as Sonaar / SRP). PositionPoller covers players that can
only be queried, polling them on a timer.
"""
import asyncio
import inspect
import logging
import secrets
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union
from urllib.parse import urlparse
from .config import settings
from .engine import ListeningVerifier

logger = logging.getLogger(__name__)

PositionReading = Optional[Tuple[str, float, Optional[float]]]
PositionProvider = Callable[[], Union[PositionReading, Awaitable[PositionReading]]]

def track_id_from_source(src: Optional[str]) -> Optional[str]:
    """Derives a track id from a media URL's file name: /media/song-12.mp3 -> song-12."""
    if not src:
        return None
    path = urlparse(src).path
    if not path:
        return None
    stem = PurePosixPath(path).stem
    return stem or None

def resolve_track_id(detail: Dict[str, Any], default: Optional[str] = None) -> str:
    for key in ("trackId", "id"):
        value = detail.get(key)
        if value not in (None, ""):
            return str(value)
    from_src = track_id_from_source(detail.get("src") or detail.get("currentSrc"))
    if from_src:
        return from_src
    # Last resort mirrors an anonymous player: unique per lookup
    return default or f"track-{secrets.token_hex(3)}"

class PlayerEventAdapter:
    EVENT_ALIASES = {
        "play": "play",
        "bpmAudioPlay": "play",
        "timeupdate": "timeupdate",
        "bpmAudioTimeUpdate": "timeupdate",
        "pause": "pause",
        "bpmAudioPause": "pause",
        "ended": "ended",
        "bpmAudioEnd": "ended",
    }

    def __init__(self, verifier: ListeningVerifier, default_track_id: str = "sonaar-track"):
        self.verifier = verifier
        self.default_track_id = default_track_id

    def dispatch(self, event_name: str, detail: Optional[Dict[str, Any]] = None):
        kind = self.EVENT_ALIASES.get(event_name)
        if kind is None:
            logger.debug(f"Ignoring unknown player event {event_name}")
            return None
        handler = getattr(self, f"on_{kind}")
        return handler(detail or {})

    def on_play(self, detail: Dict[str, Any]) -> bool:
        track_id = resolve_track_id(detail, self.default_track_id)
        return self.verifier.register(track_id, detail.get("duration") or 0)

    def on_timeupdate(self, detail: Dict[str, Any]):
        track_id = resolve_track_id(detail, self.default_track_id)
        return self.verifier.report_sample(
            track_id,
            detail.get("currentTime") or 0,
            detail.get("duration") or 0
        )

    def on_pause(self, detail: Dict[str, Any]):
        # Pausing never changes credit
        logger.debug(f"Paused: {resolve_track_id(detail, self.default_track_id)}")

    def on_ended(self, detail: Dict[str, Any]):
        logger.debug(f"Ended: {resolve_track_id(detail, self.default_track_id)}")

class PositionPoller:
    """Polls a position provider and reports each reading as a sample."""

    def __init__(self, verifier: ListeningVerifier, provider: PositionProvider,
                 interval_seconds: Optional[float] = None):
        self.verifier = verifier
        self.provider = provider
        self.interval_seconds = interval_seconds or settings.POLL_INTERVAL_SECONDS
        self.running = False

    async def poll_once(self) -> bool:
        reading = self.provider()
        if inspect.isawaitable(reading):
            reading = await reading
        if reading is None:
            return False
        track_id, position, duration = reading
        return self.verifier.report_sample(track_id, position, duration) is not None

    async def run(self, max_polls: Optional[int] = None):
        self.running = True
        polls = 0
        logger.info(f"Position poller started ({self.interval_seconds}s interval)")
        while self.running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Error polling player position: {e}", exc_info=True)

            polls += 1
            if max_polls is not None and polls >= max_polls:
                break
            await asyncio.sleep(self.interval_seconds)
        self.running = False

    def stop(self):
        self.running = False
