from fastapi import FastAPI, Body, Depends, HTTPException, Header
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from typing import Any, Dict, Optional, Union
from .adapters import PlayerEventAdapter
from .config import settings
from .engine import ListeningVerifier
from .models import ProgressUpdate

app = FastAPI(title="Proof of Listening")
verifier: Optional[ListeningVerifier] = None

class SampleIn(BaseModel):
    track_id: Union[str, int]
    position: float
    duration: Optional[float] = None

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

def get_verifier() -> ListeningVerifier:
    if not verifier:
        raise HTTPException(status_code=503, detail="Verifier not ready")
    return verifier

@app.get("/healthz")
def healthz():
    if not verifier:
        return {"status": "starting"}
    return {"status": "ok"}

@app.post("/samples")
async def report_sample(sample: SampleIn, v: ListeningVerifier = Depends(get_verifier)):
    update = v.report_sample(sample.track_id, sample.position, sample.duration)
    return {
        "accepted": update is not None,
        "progress": update.model_dump() if update else None
    }

@app.post("/events/{event_name}")
async def player_event(event_name: str, detail: Optional[Dict[str, Any]] = Body(None),
                       default_track_id: str = "sonaar-track",
                       v: ListeningVerifier = Depends(get_verifier)):
    """Accepts native (timeupdate, play, ...) and Sonaar (bpmAudio*) player events."""
    handled = event_name in PlayerEventAdapter.EVENT_ALIASES
    result = PlayerEventAdapter(v, default_track_id).dispatch(event_name, detail)
    return {
        "event": event_name,
        "handled": handled,
        "progress": result.model_dump() if isinstance(result, ProgressUpdate) else None
    }

# Declared before /tracks/{track_id} so "verified" is not taken as an id
@app.get("/tracks/verified")
async def verified_tracks(v: ListeningVerifier = Depends(get_verifier)):
    return {"track_ids": sorted(v.verified_track_ids())}

@app.get("/tracks/{track_id}")
async def track(track_id: str, v: ListeningVerifier = Depends(get_verifier)):
    snap = v.snapshot(track_id)
    return {
        "track_id": track_id,
        "progress": snap.ratio if snap else 0.0,
        "verified": snap.verified if snap else False,
        "cheat": snap.cheat_flag if snap else False,
        "proof": snap.proof_artifact if snap and snap.verified else None
    }

@app.delete("/tracks/{track_id}", dependencies=[Depends(get_token)])
async def reset_track(track_id: str, v: ListeningVerifier = Depends(get_verifier)):
    v.reset(track_id)
    return {"reset": True}

@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if not verifier:
        return {"status": "not_ready"}

    return {
        "tracked": len(verifier.store),
        "verified": len(verifier.verified_track_ids()),
        "policy": {
            "threshold": verifier.policy.POL_THRESHOLD,
            "cheat_gap_seconds": verifier.policy.POL_CHEAT_GAP_SECONDS,
            "per_sample_cap_seconds": verifier.policy.POL_PER_SAMPLE_CAP_SECONDS
        }
    }

@app.get("/metrics", response_class=PlainTextResponse)
def metrics():
    # Simple prometheus-style text format
    if not verifier:
        return ""

    tracks = [t for _, t in verifier.store.items()]
    lines = [
        f'pol_tracks_tracked {len(tracks)}',
        f'pol_tracks_verified {sum(1 for t in tracks if t.verified)}',
        f'pol_tracks_cheat_flagged {sum(1 for t in tracks if t.cheat_flag)}'
    ]
    return "\n".join(lines)
