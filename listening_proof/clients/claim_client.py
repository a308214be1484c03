import logging
import httpx
from typing import Optional
from ..config import Settings, settings as default_settings
from ..engine import ListeningVerifier
from ..models import Verdict

logger = logging.getLogger(__name__)

class ClaimClient:
    """
    Submits verdicts to the claim relay. Listening state is reset only after the
    relay accepts a claim; a failed claim leaves the verdict in place for a retry.
    """

    def __init__(self, verifier: ListeningVerifier, config: Optional[Settings] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.verifier = verifier
        self.config = config or default_settings
        if not self.config.CLAIM_BASE_URL:
            raise ValueError("CLAIM_BASE_URL is required for claim submission")

        headers = {}
        if self.config.CLAIM_TOKEN:
            headers["Authorization"] = f"Bearer {self.config.CLAIM_TOKEN}"
        self.client = httpx.AsyncClient(
            base_url=self.config.CLAIM_BASE_URL.rstrip('/'),
            headers=headers,
            timeout=self.config.REQUEST_TIMEOUT_SECONDS,
            transport=transport
        )

    async def claim(self, verdict: Verdict) -> bool:
        track_id = verdict.track_id
        if not self.verifier.is_verified(track_id):
            logger.warning(f"Skipping claim for {track_id}: no verified listening state")
            return False
        # A verdict from an earlier lifecycle must not consume the current one
        if self.verifier.proof_for(track_id) != verdict.proof_artifact:
            logger.warning(f"Skipping claim for {track_id}: verdict is from an earlier lifecycle")
            return False

        if self.config.DRY_RUN:
            logger.info(f"[DRY RUN] Would claim {track_id} with proof {verdict.proof_artifact}")
            return False

        payload = {
            "trackId": track_id,
            "proof": verdict.proof_artifact,
            "listenedSeconds": verdict.listened_seconds,
            "durationSeconds": verdict.duration_seconds
        }
        try:
            resp = await self.client.post("/claims", json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Claim for {track_id} failed: {e}")
            return False

        logger.info(f"Claim accepted for {track_id}")
        self.verifier.reset(track_id)
        return True

    async def close(self):
        await self.client.aclose()
