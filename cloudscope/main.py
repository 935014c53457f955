from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from cloudscope.api.v1.admin import router as admin_router
from cloudscope.api.v1.scans import router as scans_router
from cloudscope.shared.core.config import get_settings
from cloudscope.shared.core.context import AppContext
from cloudscope.shared.core.exceptions import CloudScopeException
from cloudscope.shared.core.health import HealthService
from cloudscope.shared.core.logging import setup_logging
from cloudscope.shared.core.middleware import RequestIDMiddleware

# Configure logging
setup_logging()

logger = structlog.get_logger()


# This runs BEFORE the app starts (setup) and AFTER it stops (teardown).
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("app_starting", app=settings.APP_NAME, environment=settings.ENVIRONMENT)

    context = await AppContext.create(settings)
    app.state.context = context

    yield

    logger.info("app_shutting_down", app=settings.APP_NAME)
    await context.shutdown()


settings = get_settings()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan
)

# Initialize Prometheus Metrics
Instrumentator().instrument(app).expose(app)

app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(CloudScopeException)
async def cloudscope_exception_handler(request: Request, exc: CloudScopeException):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.warning("request_rejected", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message, "details": exc.details},
    )


# Include routers
app.include_router(scans_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1/admin")


# Every K8s pod needs a health check endpoint to prove it's alive
@app.get("/health")
async def health_check(request: Request):
    context: AppContext = request.app.state.context
    return await HealthService(context).check_all()
