from fastapi import FastAPI
from typing import Optional
import logging

from omnichan.config import Settings, settings as default_settings
from omnichan.database import Database
from omnichan.logging_config import configure_logging
from omnichan.routers import conversations, webhooks
from omnichan.services import EventDispatcher, FacebookGateway, MessageSyncService, PlatformGateway, SignatureVerifier

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, gateway: Optional[PlatformGateway] = None) -> FastAPI:
    """Build the API with its store, gateway, sync engine and dispatch queue"""
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="Omnichan Message Sync API",
        description="Webhook ingestion and message synchronization for Facebook Messenger",
        version="1.0.0",
    )

    database = Database(settings.DATABASE_URL)
    if gateway is None:
        gateway = FacebookGateway(
            settings.FACEBOOK_GRAPH_URL,
            settings.FACEBOOK_GRAPH_VERSION,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    message_sync = MessageSyncService(database, gateway)
    dispatcher = EventDispatcher(
        message_sync.process_event,
        maxsize=settings.WEBHOOK_QUEUE_SIZE,
        workers=settings.WEBHOOK_WORKERS,
    )

    app.state.settings = settings
    app.state.signature_verifier = SignatureVerifier(settings.FACEBOOK_APP_SECRET)
    app.state.database = database
    app.state.message_sync = message_sync
    app.state.dispatcher = dispatcher

    # Include routers
    app.include_router(webhooks.router, prefix=f"{settings.API_V1_STR}")
    app.include_router(conversations.router, prefix=f"{settings.API_V1_STR}")

    @app.on_event("startup")
    async def startup_event():
        """Open the database and start webhook workers"""
        database.open()
        dispatcher.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await dispatcher.stop()
        database.close()

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Omnichan Message Sync API",
            "version": "1.0.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "database": database.is_open, "workers": dispatcher.running}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("omnichan.main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
