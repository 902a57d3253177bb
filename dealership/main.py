from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional
import asyncio
import logging

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from dealership.database import engine, Base
from dealership.routes import auth, chat, personnel, vehicles
from dealership.websocket import handle_websocket, store
from dealership.chat.retention import retention_loop
from dealership.config import get_settings

# Import event handlers to register them with the event bus
# This must happen before the app starts handling requests
from dealership.events.handlers import fanout  # noqa: F401

# Get settings
settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables (production schemas come from Alembic migrations)
Base.metadata.create_all(bind=engine)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: start the retention sweeper on startup, stop it on shutdown."""
    if not settings.retention_sweep_enabled:
        logger.warning("Message retention sweeper is disabled")
        yield
        return

    sweeper = asyncio.create_task(retention_loop(
        store,
        retention=timedelta(hours=settings.message_retention_hours),
        hour=settings.retention_sweep_hour,
        timezone_name=settings.retention_timezone,
    ))
    logger.info(
        f"Message retention sweeper started: {settings.message_retention_hours}h horizon, "
        f"daily at {settings.retention_sweep_hour:02d}:00 {settings.retention_timezone}"
    )

    yield

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    logger.info("Message retention sweeper stopped")


app = FastAPI(
    title="Dealership API",
    version="1.0.0",
    description="Vehicle listings, personnel records and real-time buyer/admin chat",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

# Configure CORS with specific origins from settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api", tags=["Authentication"])
app.include_router(vehicles.router, prefix="/api", tags=["Vehicles"])
app.include_router(personnel.router, prefix="/api", tags=["Personnel"])
app.include_router(chat.router, prefix="/api", tags=["Conversations"])


@app.get("/")
def read_root():
    return {
        "message": "Dealership API",
        "version": "1.0.0",
        "endpoints": {
            "auth": {
                "register": "/api/auth/register",
                "login": "/api/auth/login",
                "me": "/api/auth/me",
                "admin_contact": "/api/admin-user"
            },
            "vehicles": {
                "list": "/api/vehicles",
                "get": "/api/vehicles/{vehicle_id}",
                "create": "POST /api/vehicles",
                "update": "PUT /api/vehicles/{vehicle_id}",
                "delete": "DELETE /api/vehicles/{vehicle_id}"
            },
            "personnel": "/api/personnel",
            "conversations": {
                "admin_list": "/api/conversations",
                "user_list": "/api/user-conversations",
                "admin_unread": "/api/notifications/unread-count",
                "user_unread": "/api/user-notifications/unread-count",
                "delete_message": "DELETE /api/messages/{message_id}",
                "admin_delete": "DELETE /api/conversations/{conversation_key}",
                "user_delete": "DELETE /api/user/conversations/{conversation_key}"
            },
            "websocket": "/ws/chat?token=X"
        },
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    """Health check endpoint for monitoring."""
    return {"status": "healthy"}


@app.websocket("/ws/chat")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """
    Realtime conversation endpoint.

    Frames are JSON ``{"type": <event>, "data": <payload>}``. Rooms are
    joined with a ``join_room`` event; ``token`` is only needed to receive
    notifications before the first join.
    """
    await handle_websocket(websocket, token)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
