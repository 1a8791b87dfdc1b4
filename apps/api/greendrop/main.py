import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import Response

from greendrop.config import ensure_secure_runtime_settings, settings
from greendrop.db.migration_check import prepare_schema
from greendrop.db.session import engine
from greendrop.observability import configure_logging, log_event, metrics_store, set_request_id
from greendrop.routers.dispatch import router as dispatch_router
from greendrop.routers.events import router as events_router
from greendrop.routers.health import router as health_router
from greendrop.routers.metrics import router as metrics_router
from greendrop.routers.monitoring import router as monitoring_router


@asynccontextmanager
async def lifespan(_app: FastAPI):
    import greendrop.models  # noqa: F401 (register all SQLAlchemy models)

    if not settings.testing:
        configure_logging()
    ensure_secure_runtime_settings()
    if settings.store_backend == "sql":
        prepare_schema(engine)
    log_event(f"startup:{settings.store_backend}")
    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="GreenDrop order lifecycle, driver matching and platform monitoring",
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    set_request_id(request_id)

    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    metrics_store.increment("http_requests_total")
    metrics_store.observe("http_request_duration_seconds", elapsed)
    log_event(f"http_request:{request.method} {request.url.path} {response.status_code}")
    return response


app.include_router(health_router)
app.include_router(events_router)
app.include_router(dispatch_router)
app.include_router(monitoring_router)
app.include_router(metrics_router)
