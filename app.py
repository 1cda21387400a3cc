import asyncio
import os
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend import redis_backend
from constants import BACKGROUND_TASKS_ENABLED, INSTANCE_ID
from logging_config import get_logger, setup_logging
from reaper import run_reaper
from routers.realtime import realtime_router
from routers.rooms import rooms_router
from transport import connection_gateway

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        redis_backend.ping()
        logger.info("Redis reachable")
    except redis.RedisError as e:
        logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
        raise

    # Background tasks: pub/sub listener for this instance and the inactivity reaper
    tasks = []
    if BACKGROUND_TASKS_ENABLED:
        tasks.append(asyncio.create_task(connection_gateway.listen()))
        tasks.append(asyncio.create_task(run_reaper()))
    logger.info(f"Instance {INSTANCE_ID} started with {len(tasks)} background tasks")

    yield

    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    logger.info(f"Instance {INSTANCE_ID} stopped")


app = FastAPI(title="JamChat", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)
app.include_router(realtime_router)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
    logger.warning(f"Invalid request to {request.url.path}: {details}")
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {details}"})


logger.info("FastAPI application initialized")
