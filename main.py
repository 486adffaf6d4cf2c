"""
FastAPI backend for the workshop app.

Serves the app catalog, exercises, workshop instructions and playground
control for a workshop directory, plus a WebSocket endpoint that pushes
file-change and playground events to the browser.
"""

import os

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from workshop.shared.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

from workshop import catalog
from workshop.apps import app_router
from workshop.apps import router as apps_router
from workshop.context import create_context
from workshop.exercises import router as exercises_router
from workshop.live import notify_file_changed, ws_manager
from workshop.playground import router as playground_router
from workshop.system import router as system_router

# Create FastAPI app
app = FastAPI(
    title="Workshop app API",
    description="Exercise catalog, instructions and playground control for a local workshop",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)


# ============= Exception Handlers for Error Logging =============


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Log HTTP exceptions and return JSON response."""
    # Only log 5xx errors (server errors)
    if exc.status_code >= 500:
        logger.error("%s: %s (status code %d)", request.url.path, exc.detail, exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Log unexpected exceptions and return JSON response."""
    logger.critical(
        "%s: unhandled %s: %s", request.url.path, type(exc).__name__, exc, exc_info=exc
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Browser apps and dev servers run on other local ports
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include API routes
app.include_router(system_router, prefix="/api", tags=["system"])
app.include_router(apps_router, prefix="/api", tags=["apps"])
app.include_router(exercises_router, prefix="/api", tags=["exercises"])
app.include_router(playground_router, prefix="/api", tags=["playground"])
app.include_router(app_router, tags=["app-files"])


# ============= Startup Events =============


@app.on_event("startup")
async def startup_event():
    """Create the workshop context and start watching the workshop tree."""
    if getattr(app.state, "workshop", None) is None:
        app.state.workshop = create_context()
    ctx = app.state.workshop

    logger.info("Workshop app starting in %s", ctx.root)
    catalog.init(ctx, on_app_change=notify_file_changed)
    if ctx.watcher is not None:
        ctx.watcher.start()
    logger.info("Startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    ctx = getattr(app.state, "workshop", None)
    if ctx is None:
        return
    if ctx.watcher is not None:
        await ctx.watcher.stop()
    await ctx.process_manager.stop_all()
    ctx.background.cancel_all()


# ============= WebSocket Endpoints =============


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, client_id: str = None):
    """
    Main WebSocket endpoint for live updates.

    Clients can subscribe to channels for specific updates:
    - app:{name} - file changes inside an app
    - playground - the playground was re-synced

    Message format (JSON):
    {
        "type": "subscribe" | "unsubscribe" | "ping",
        "data": {"channel": "channel_name"}
    }
    """
    await ws_manager.connect(websocket, client_id)

    try:
        while True:
            message_text = await websocket.receive_text()
            response = await ws_manager.handle_message(websocket, message_text)
            if response:
                await ws_manager.send_to_connection(websocket, response)

    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        await ws_manager.disconnect(websocket)


@app.get("/api/ws/stats")
async def get_websocket_stats():
    """Get WebSocket connection statistics."""
    return {
        "total_connections": ws_manager.get_connection_count(),
    }


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Workshop app server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("KCDSHOP_PORT", 5639)),
        help="Port to run the server on (default: 5639 or KCDSHOP_PORT env var)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable auto-reload",
    )
    args = parser.parse_args()

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )
