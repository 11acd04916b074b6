# This file bootstraps the FastAPI app, wires up middlewares for
# request context, logging and metrics, maps domain errors to HTTP,
# and includes the tracking and admin routers.

import os

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.core.db import Base, engine
from app.core.errors import DomainError
from app.core.logging import APILoggingMiddleware, configure_logging
from app.core.metrics import MetricsMiddleware
from app.core.request_meta import RequestContextMiddleware

from app.api.admin_affiliates import router as admin_affiliates_router
from app.api.closers import router as closers_router
from app.api.commissions import router as commissions_router
from app.api.payouts import router as payouts_router
from app.api.tracking import router as tracking_router

configure_logging()

# Create DB tables right away unless migrations own the schema.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Funnel Affiliates")


@app.exception_handler(DomainError)
def handle_domain_error(_request, exc: DomainError):
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.code
    return response


# Observability layers: JSON request logs and Prometheus timings.
app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)

for router in (
    tracking_router,
    commissions_router,
    payouts_router,
    closers_router,
    admin_affiliates_router,
):
    app.include_router(router)

# Attach request context (request_id, client_ip, user_agent) early.
app.add_middleware(RequestContextMiddleware)


# /metrics endpoint (Prometheus scraping)
@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/ping")
def ping():
    return {"message": "pong"}


# CORS setup for the funnel frontend during local development.
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "X-Error-Code"],
)
