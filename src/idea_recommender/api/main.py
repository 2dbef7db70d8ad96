from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import json
import logging
import time
import uuid
from idea_recommender.config import get_settings
from idea_recommender.infrastructure.db import healthcheck
from idea_recommender.infrastructure.celery_app import celery_app  # noqa: F401  binds shared tasks to the configured broker
from idea_recommender.infrastructure.store import StoreError
from idea_recommender.tasks.experiments import ExperimentNotFound, InvalidStatusTransition
from idea_recommender.api.recommendations import router as recommendations_router
from idea_recommender.api.experiments import router as experiments_router

logging.basicConfig(level=get_settings().log_level.upper())

REQUESTS = Counter('api_requests_total', 'API Requests', ['endpoint'])
LATENCY = Histogram('api_request_latency_seconds', 'API request latency', ['endpoint'], buckets=(0.01,0.05,0.1,0.25,0.5,1,2,5))

app = FastAPI(title="Idea Recommender API", version="0.1.0")
app.include_router(recommendations_router)
app.include_router(experiments_router)


def _error(request: Request, status: int, code: str, detail: str) -> JSONResponse:
    cid = getattr(request.state, "correlation_id", "n/a")
    return JSONResponse(status_code=status, content={"error": code, "detail": detail, "correlation_id": cid})


@app.exception_handler(ExperimentNotFound)
async def experiment_not_found_handler(request: Request, exc: ExperimentNotFound):
    return _error(request, 404, "experiment_not_found", str(exc))


@app.exception_handler(InvalidStatusTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStatusTransition):
    return _error(request, 409, "invalid_status_transition", str(exc))


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(request, 422, "invalid_request", str(exc))


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logging.getLogger("app").error(json.dumps({
        "event": "store_error",
        "path": request.url.path,
        "detail": str(exc),
        "correlation_id": getattr(request.state, "correlation_id", "n/a"),
    }))
    return _error(request, 503, "store_unavailable", "the write could not be completed")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    cid = getattr(request.state, "correlation_id", "n/a")
    logging.getLogger("app").error(json.dumps({
        "event": "error",
        "path": request.url.path,
        "detail": str(exc),
        "correlation_id": cid,
        "type": exc.__class__.__name__,
    }))
    return Response(content=json.dumps({"error": "internal_error", "correlation_id": cid}), media_type="application/json", status_code=500)


@app.middleware("http")
async def correlation_and_metrics(request: Request, call_next):
    start = time.time()
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    duration = time.time() - start
    ep = request.url.path
    REQUESTS.labels(endpoint=ep).inc()
    LATENCY.labels(endpoint=ep).observe(duration)
    response.headers['X-Process-Time'] = f"{duration:.4f}"
    response.headers['X-Correlation-ID'] = correlation_id
    logging.getLogger("app").info(json.dumps({
        "event": "request",
        "path": ep,
        "method": request.method,
        "status": response.status_code,
        "duration_ms": int(duration*1000),
        "correlation_id": correlation_id
    }))
    return response


@app.get("/health")
def health():
    return {"db": healthcheck(), "status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
