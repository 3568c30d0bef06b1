import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from vtc_booking.api import assistant, tariffs
from vtc_booking.core.config import settings
from vtc_booking.core.errors import ErrorCode
from vtc_booking.core.logging_filters import install_sensitive_filter
from vtc_booking.core.metrics import get_metrics_text, redis_connected, request_count, request_duration
from vtc_booking.core.redis import close_redis, get_redis, init_redis
from vtc_booking.core.response_builders import build_error_response

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
install_sensitive_filter()
logger = logging.getLogger(__name__)


def _endpoint_label(request: Request) -> str:
    # route template keeps tenant keys out of the label set
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception:
            endpoint = _endpoint_label(request)
            request_count.labels(method=request.method, endpoint=endpoint, status=500).inc()
            request_duration.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)
            raise

        endpoint = _endpoint_label(request)
        request_count.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
        request_duration.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting...")

    try:
        connected = await init_redis()
        redis_connected.set(1 if connected is not None else 0)
    except Exception as e:
        logger.error(f"Redis connection failed, falling back to in-memory backends: {e}")
        redis_connected.set(0)

    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set; freeform assistant turns will fail")

    yield

    logger.info("Application shutting down...")
    await close_redis()
    redis_connected.set(0)
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan
)

app.add_middleware(MetricsMiddleware)

app.include_router(assistant.router)
app.include_router(tariffs.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected invalid request on {request.url.path}: {len(exc.errors())} errors")
    return build_error_response(ErrorCode.INVALID_INPUT)


@app.get("/metrics", tags=["monitoring"])
async def metrics():
    return Response(
        content=get_metrics_text(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@app.get("/health", tags=["monitoring"])
async def health_check():
    redis = get_redis()
    return {
        "status": "healthy",
        "service": settings.API_TITLE,
        "version": settings.API_VERSION,
        "dependencies": {
            "redis": "connected" if redis is not None else "not configured",
            "llm": "configured" if settings.OPENAI_API_KEY else "not configured",
            "routing": "configured" if settings.ROUTING_API_KEY else "not configured",
        }
    }


@app.get("/readiness", tags=["monitoring"])
async def readiness_check():
    if settings.REDIS_URL and get_redis() is None:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "reason": "Redis not available"}
        )

    return {
        "ready": True,
        "service": settings.API_TITLE
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": settings.API_TITLE,
        "version": settings.API_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }
