import logging
import uuid
from datetime import datetime, timezone
from time import monotonic

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from monjapro.api.mercadopago import router as mercadopago_router
from monjapro.api.subscriptions import router as subscriptions_router
from monjapro.api.webhook_events import router as webhook_events_router
from monjapro.config import settings
from monjapro.errors import register_error_handlers
from monjapro.logging import configure_logging
from monjapro.metrics import REQUEST_COUNT, REQUEST_LATENCY

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.service_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


@app.middleware("http")
async def observability_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    start = monotonic()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        route = request.scope.get("route")
        path = getattr(route, "path", None) or "unmatched"
        labels = {"method": request.method, "path": path, "status": str(status_code)}
        REQUEST_COUNT.labels(**labels).inc()
        REQUEST_LATENCY.labels(**labels).observe(monotonic() - start)


app.include_router(mercadopago_router)
app.include_router(webhook_events_router)
app.include_router(subscriptions_router)


@app.get("/health")
def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.service_name,
    }


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
