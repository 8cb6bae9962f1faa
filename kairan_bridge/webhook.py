"""LINE webhook endpoint.

LINE retries any delivery that does not get a 2xx answer, so the endpoint
acknowledges every request with 200 whatever happened while handling it.
"""

from __future__ import annotations

import json

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool

from kairan_bridge import __version__
from kairan_bridge.app import BridgeApp
from kairan_bridge.observability import get_logger

logger = get_logger(__name__)

ACK = {"content": "post ok"}


def create_app(bridge: BridgeApp) -> FastAPI:
    """Create the FastAPI app serving the LINE webhook for ``bridge``."""
    app = FastAPI(title="kairan-bridge", version=__version__, docs_url=None, redoc_url=None)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhook")
    async def line_webhook(request: Request) -> dict[str, str]:
        body = await request.body()
        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            logger.warning("Ignoring webhook with invalid JSON body (%d bytes)", len(body))
            return ACK

        events = payload.get("events") if isinstance(payload, dict) else None
        if not events:
            return ACK

        try:
            await run_in_threadpool(bridge.handle_events, events)
        except Exception:
            # Answer 200 regardless so LINE does not redeliver the batch
            logger.exception("Webhook processing failed")
        return ACK

    return app
