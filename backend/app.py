import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from backend.db import init_db
from backend.logging_config import setup_logging
from backend.health_checks import check_database, check_env, get_app_metadata
from backend.error_handlers import register_error_handlers
from backend.channel import ChannelServer
from backend.event_log import EventLog
from backend.membership import MembershipProtocol
from backend.session_directory import SessionDirectory
from backend.turn_order import TurnOrderService
from backend.utils.storage import RecordStore


# Load .env vars
load_dotenv()

setup_logging()
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


def create_app(session_factory=None) -> FastAPI:
    """
    Build the API application.

    `session_factory` defaults to the engine configured from DATABASE_URL;
    tests pass their own so every run gets a fresh database.
    """
    store = RecordStore(session_factory)

    # Lifespan context for startup/shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(store.bind)
        logger.info("Database initialized")

        channels = ChannelServer()
        await channels.start()
        event_log = EventLog(store, channels)

        app.state.store = store
        app.state.channels = channels
        app.state.directory = SessionDirectory(store)
        app.state.event_log = event_log
        app.state.membership = MembershipProtocol(store, channels)
        app.state.turn_order = TurnOrderService(store, channels, event_log)
        app.state.start_time = time.time()

        logger.info("🚀 FastAPI app starting")
        yield
        await channels.shutdown()
        logger.info("🛑 FastAPI app shutting down")

    application = FastAPI(
        title="Tavern Table API",
        description="Live tabletop sessions: room codes, shared initiative and combat log",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware to attach request_id
    @application.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        logger.info(f"{request.method} {request.url.path}", extra={"request_id": request_id})

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @application.get("/health")
    async def health_check(request: Request):
        """Simple health check."""
        return {
            "status": "ok",
            "uptime_seconds": time.time() - request.app.state.start_time,
            "timestamp": time.time(),
        }

    @application.get("/api/health")
    def api_health_check(request: Request):
        """Detailed health check with DB and env checks."""
        db_status = check_database(request.app.state.store)
        return {
            "status": "ok" if db_status == "ok" else "degraded",
            "database": db_status,
            "environment": check_env(),
            "metadata": get_app_metadata(request.app.state.start_time),
            "timestamp": time.time(),
        }

    # ✅ Register routers (import here to avoid circular imports)
    from routes.campaigns import router as campaigns_router
    from routes.campaign_websocket import router as websocket_router

    application.include_router(campaigns_router, prefix="/api")
    application.include_router(websocket_router, prefix="/api")

    @application.get("/")
    async def root():
        """API root."""
        return {
            "message": "Tavern Table API",
            "docs": "/docs",
            "socket": "/api/socket",
            "health": "/health",
            "api_health": "/api/health",
        }

    register_error_handlers(application)
    return application


application = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(application, host="0.0.0.0", port=8000)
