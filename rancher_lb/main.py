"""Rancher load balancer provider FastAPI application.

Creates the provider service, wires routes, configures logging, and exposes
readiness and Prometheus metrics endpoints.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from functools import partial

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from rancher_lb.api.routes import router
from rancher_lb.core.config import Settings, settings
from rancher_lb.core.logging import setup_logging
from rancher_lb.services.cattle_client import CattleClient
from rancher_lb.services.instances import Instances
from rancher_lb.services.node_cache import NodeCache, lookup_host
from rancher_lb.services.poller import ConditionPoller
from rancher_lb.services.provisioner import ExternalServiceProvisioner
from rancher_lb.services.reconciler import LoadBalancerReconciler


def build_provider(app: FastAPI, client: CattleClient, conf: Settings) -> None:
    """Create the provider components once and place them on ``app.state``."""
    nodes = NodeCache(partial(lookup_host, client), ttl_s=conf.host_cache_ttl_s)
    poller = ConditionPoller(conf.poll_interval_s, conf.poll_max_attempts)
    provisioner = ExternalServiceProvisioner(client, nodes, poller)
    app.state.nodes = nodes
    app.state.reconciler = LoadBalancerReconciler(client, provisioner, poller)
    app.state.instances = Instances(client, nodes)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan.

    Initializes logging and the app-scoped provider components: the Cattle
    client (HTTP pool with basic auth), the node cache shared by every
    lookup, and the reconciler.
    """
    setup_logging()
    auth = httpx.BasicAuth(settings.cattle_access_key, settings.cattle_secret_key)
    async with httpx.AsyncClient(auth=auth, timeout=settings.request_timeout_s) as client:
        build_provider(app, CattleClient(client, str(settings.cattle_url)), settings)
        yield


app = FastAPI(title="Rancher LB provider", version="0.1.0", lifespan=lifespan)
app.include_router(router)


@app.get("/readyz")
async def readyz():
    """Readiness probe endpoint returning a minimal OK payload."""
    return {"status": "ok"}


@app.get("/metrics")
async def metrics(_: Request):
    """Prometheus exposition endpoint for provider process metrics."""
    data = generate_latest()
    return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)


def run() -> None:
    """Console entry point: serve the provider with uvicorn."""
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
