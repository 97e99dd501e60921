"""
Webhook server for workflowbot.

Telegram POSTs updates to /webhook; each request is handled on its own and
answered 200 so Telegram does not redeliver it.
"""
import hmac
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from . import __version__
from .logging_config import get_logger
from .telegram.transport import WebhookTransport

logger = get_logger("workflowbot.server")

SECRET_HEADER = "x-telegram-bot-api-secret-token"


def create_app(transport: WebhookTransport, webhook_secret: str = "") -> FastAPI:
    """
    Build the FastAPI app around a webhook transport.

    Args:
        transport: Transport that handles updates and sends replies
        webhook_secret: If set, requests must carry it in the
            X-Telegram-Bot-Api-Secret-Token header
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await transport.start()
        logger.info("Webhook server started")
        try:
            yield
        finally:
            try:
                await transport.stop()
            finally:
                await transport.handler.aclose()
            logger.info("Webhook server stopped")

    app = FastAPI(title="workflowbot", version=__version__, lifespan=lifespan)

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "OK"

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "version": __version__}

    @app.post("/webhook")
    async def telegram_webhook(request: Request):
        """Receive a Telegram update"""
        if webhook_secret:
            provided = request.headers.get(SECRET_HEADER, "")
            if not hmac.compare_digest(provided.encode(), webhook_secret.encode()):
                logger.warning("Rejected webhook call with bad secret token")
                raise HTTPException(status_code=403, detail="Forbidden")

        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

        # only new messages are handled; anything else is acknowledged so Telegram drops it
        if not isinstance(payload, dict) or not isinstance(payload.get("message"), dict):
            return {"ok": True, "handled": False}

        reply: Optional[str] = await transport.process(payload)
        return {"ok": True, "handled": reply is not None}

    return app


def run_server(app: FastAPI, host: str = "127.0.0.1", port: int = 8080):
    """Run the webhook server with uvicorn."""
    uvicorn.run(app, host=host, port=port, log_config=None)
