import asyncio
import logging
import signal
import sys
import httpx
import uvicorn
from concurrent.futures import Future
from typing import List, Optional, Set

from .adapters import PositionPoller, PositionProvider
from .config import settings
from .engine import ListeningVerifier
from .clients.claim_client import ClaimClient
from .models import ProgressUpdate, Verdict
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class ListeningService:
    def __init__(self, position_providers: Optional[List[PositionProvider]] = None,
                 claim_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.verifier = ListeningVerifier(settings)
        self.claims: Optional[ClaimClient] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.pending_claims: Set[Future] = set()
        self.pollers = [PositionPoller(self.verifier, provider) for provider in position_providers or []]

        # Link verifier to server module
        server.verifier = self.verifier

        self.verifier.subscribe_progress(self.on_progress)
        if settings.AUTO_CLAIM_ENABLED:
            if settings.CLAIM_BASE_URL:
                self.claims = ClaimClient(self.verifier, transport=claim_transport)
                self.verifier.subscribe_verdict(self.on_verdict)
            else:
                logger.warning("AUTO_CLAIM_ENABLED is set but CLAIM_BASE_URL is empty; claims disabled")

    def on_progress(self, update: ProgressUpdate):
        logger.debug(f"Progress {update.track_id}: {update.ratio:.2%} cheat={update.cheat}")

    def on_verdict(self, verdict: Verdict) -> Optional[Future]:
        if not self.claims or not self.loop:
            logger.warning(f"Verdict for {verdict.track_id} received before the service loop started; not claimed")
            return None
        # Verdicts may be raised from worker threads; claims always run on the service loop
        future = asyncio.run_coroutine_threadsafe(self.claims.claim(verdict), self.loop)
        self.pending_claims.add(future)
        future.add_done_callback(self._claim_done)
        return future

    def _claim_done(self, future: Future):
        self.pending_claims.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Error submitting claim: {exc}", exc_info=exc)

    async def start(self):
        self.loop = asyncio.get_running_loop()
        config = uvicorn.Config(
            server.app,
            host=settings.HTTP_SERVER_HOST,
            port=settings.HTTP_SERVER_PORT,
            log_level="warning"
        )
        logger.info(f"Serving Proof of Listening on {settings.HTTP_SERVER_HOST}:{settings.HTTP_SERVER_PORT}")

        tasks = [asyncio.create_task(uvicorn.Server(config).serve())]
        tasks.extend(asyncio.create_task(poller.run()) for poller in self.pollers)

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            pass
        finally:
            for poller in self.pollers:
                poller.stop()
            if self.claims:
                await self.claims.close()


def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

def run():
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = ListeningService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")

if __name__ == "__main__":
    run()
