from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.libs.observability.metrics import create_metrics_endpoint
from shared.libs.observability.middleware import metrics_middleware
from src.config.config import config
from src.config.logger_config import log
from src.infrastructure.database.session import (
    check_connection,
    dispose_sqlmodel,
    init_sqlmodel,
)
from src.infrastructure.services import realtime_notifier
from src.interfaces.http.auth import router as auth_router
from src.interfaces.http.events import router as events_router
from src.interfaces.http.payment_links import router as payment_links_router
from src.interfaces.http.webhooks import router as webhooks_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan handler: runs on startup and shutdown.
    Initializes the database engine.
    """
    log.info("Starting payment-links service initialization")

    # Startup
    try:
        init_sqlmodel()
        log.info("Database engine initialized")
    except Exception as e:
        log.critical("Failed to initialize dependencies", error=str(e), exc_info=True)
        raise

    yield

    # Shutdown
    dispose_sqlmodel()
    log.info("payment-links service shutdown complete")


app = FastAPI(
    title="payment-links",
    description="Mercado Pago payment links with webhook reconciliation and live updates",
    version="0.1.0",
    lifespan=lifespan,
)  # This is what Uvicorn needs to run


@app.get("/")
def read_root():
    return {"message": "Hello from payment-links!"}


@app.get("/health")
async def health_check():
    """Health check endpoint for liveness probe."""
    db_healthy = check_connection()
    realtime = realtime_notifier.stats()

    return {
        "status": "healthy" if db_healthy else "unhealthy",
        "database": "connected" if db_healthy else "disconnected",
        "realtime": {
            "merchants": realtime["merchant_count"],
            "channels": realtime["total_channels"],
            "queued_frames": realtime["queued_frames"],
        },
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in config.CORS_ORIGINS.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(metrics_middleware)
app.include_router(auth_router)
app.include_router(payment_links_router)
app.include_router(webhooks_router)
app.include_router(events_router)
metrics_endpoint = create_metrics_endpoint()
app.add_api_route("/metrics", metrics_endpoint, name="metrics", include_in_schema=False)
