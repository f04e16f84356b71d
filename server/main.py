"""FastAPI WebSocket server for the Plus Stack card game."""

import logging
import secrets
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from errors import AdminError, ErrorCode, InvalidMessage
from handlers import ConnectionContext, dispatch, handle_disconnect
from logging_config import connection_id_var, player_id_var, room_code_var, setup_logging
from middleware import RequestIDMiddleware, SecurityHeadersMiddleware
from room import RoomManager
from routers.health import router as health_router
from routers.health import set_health_dependencies
from services.admin_service import AdminService
from services.fanout import TopicFanout

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


room_manager = RoomManager()
fanout = TopicFanout()
admin_service = AdminService(room_manager)


async def _close_all_websockets():
    """Close all active WebSocket connections gracefully."""
    for room_code in list(room_manager.rooms):
        for websocket in fanout.subscribers(room_code).values():
            try:
                await websocket.close(code=1001, reason="Server shutting down")
            except Exception as e:
                logger.debug(f"Error closing websocket during shutdown: {e}")
    logger.info("All WebSocket connections closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    set_health_dependencies(
        room_manager=room_manager,
        fanout=fanout,
        admin_service=admin_service,
    )
    if not config.ADMIN_TOKEN:
        logger.info("ADMIN_TOKEN not configured - admin connections disabled")

    logger.info(f"Plus Stack server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _close_all_websockets()
    room_manager.rooms.clear()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Plus Stack Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Middleware Setup (order matters: first added = outermost)
# =============================================================================

app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    SecurityHeadersMiddleware,
    environment=config.ENVIRONMENT,
)

app.include_router(health_router)


def _is_admin_token(token: Optional[str]) -> bool:
    if not token or not config.ADMIN_TOKEN:
        return False
    return secrets.compare_digest(token.encode(), config.ADMIN_TOKEN.encode())


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    connection_id_var.set(connection_id)

    admin_token = websocket.query_params.get("admin")
    is_admin = False
    if admin_token is not None:
        if not _is_admin_token(admin_token):
            logger.warning("Rejected admin connection with invalid token")
            await websocket.send_json(AdminError(ErrorCode.NOT_AUTHORIZED, "Invalid admin token").to_message())
            await websocket.close(code=4001, reason="Not authorized")
            return
        is_admin = True
        admin_service.create_session(connection_id)
        await websocket.send_json({"type": "adminReady", "powers": admin_service.get_session(connection_id).powers})

    logger.debug(f"WebSocket connected as {connection_id} (admin={is_admin})")

    ctx = ConnectionContext(
        websocket=websocket,
        connection_id=connection_id,
        is_admin=is_admin,
    )

    # Shared dependencies passed to every handler
    handler_deps = dict(
        room_manager=room_manager,
        fanout=fanout,
        admin_service=admin_service,
    )

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await websocket.send_json(
                    InvalidMessage(ErrorCode.INVALID_MESSAGE, "Message is not valid JSON").to_message()
                )
                continue
            room_code_var.set(ctx.room_code)
            player_id_var.set(ctx.player_id)
            await dispatch(data, ctx, **handler_deps)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket {connection_id} closed")
    finally:
        await handle_disconnect(ctx, **handler_deps)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Plus Stack server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
