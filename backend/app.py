"""
Fleet Live Map - FastAPI Application

Ingests device positions, keeps the latest position and the history log in
SQLite, and pushes every accepted update to connected viewers over /ws.
"""

import asyncio

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from errors import StorageError, ValidationError
from routes.api import router as api_router
from routes.debug import router as debug_router
from routes.websocket import router as ws_router
from services.broadcaster import LiveChannel
from services.mqtt import create_client, stop_client
from services.persistence import LocationStore
from services.routing import RouteResolver

# =========================
# App Setup
# =========================
app = FastAPI(title="Fleet Live Map", version="1.0.0")
app.add_middleware(
  CORSMiddleware,
  allow_origins=config.CORS_ORIGINS,
  allow_methods=["GET", "POST"],
  allow_headers=["*"],
)

# Include routers
app.include_router(api_router)
app.include_router(debug_router)
app.include_router(ws_router)


# =========================
# Error handlers
# =========================
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
  print(f"[api] 400 {request.method} {request.url.path}: {exc}")
  return JSONResponse(status_code=400, content={"success": False, "error": str(exc), "field": exc.field})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
  print(f"[api] 500 {request.method} {request.url.path}: {exc}")
  return JSONResponse(status_code=500, content={"success": False, "error": "Database error"})


# =========================
# Startup / Shutdown
# =========================
@app.on_event("startup")
async def startup():
  """Initialize services on startup."""
  store = LocationStore(config.DATABASE_PATH)
  if config.SEED_DEMO_DEVICES:
    store.seed_demo_devices()

  channel = LiveChannel(config.SUBSCRIBER_QUEUE_MAX)
  app.state.store = store
  app.state.channel = channel
  app.state.resolver = RouteResolver()

  # Start background tasks
  app.state.broadcaster_task = asyncio.create_task(channel.broadcaster())

  if config.MQTT_ENABLED:
    create_client(asyncio.get_running_loop(), store, channel)

  print(f"[startup] fleet live map ready db={config.DATABASE_PATH} mqtt={config.MQTT_ENABLED}")


@app.on_event("shutdown")
async def shutdown():
  """Clean up on shutdown."""
  stop_client()
  task = getattr(app.state, "broadcaster_task", None)
  if task is not None:
    task.cancel()
  app.state.channel.close_all()
  await app.state.resolver.aclose()
  app.state.store.close()


def main() -> None:
  import uvicorn

  uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
  main()
