from pydantic import BaseModel, ConfigDict
from typing import Optional

class TrackProgress(BaseModel):
    track_id: str
    listened_seconds: float = 0.0
    duration_seconds: float = 0.0
    last_position: float = 0.0
    cheat_flag: bool = False
    verified: bool = False
    started_at: int = 0  # epoch ms, fixed for the lifecycle
    proof_artifact: Optional[str] = None

    @property
    def ratio(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return min(self.listened_seconds / self.duration_seconds, 1.0)

class ProgressUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    track_id: str
    ratio: float
    cheat: bool
    listened_seconds: float
    duration_seconds: float
    verified: bool

class Verdict(BaseModel):
    """Emitted once per lifecycle when a track crosses the threshold cleanly."""
    model_config = ConfigDict(frozen=True)

    track_id: str
    listened_seconds: float
    duration_seconds: float
    proof_artifact: str
