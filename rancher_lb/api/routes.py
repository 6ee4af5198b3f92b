"""API routes for the load balancer provider.

Exposes the orchestration-facing operations (ensure, get, update and delete
a service load balancer) and node lookups, mapping provider errors to HTTP
status codes.
"""
from __future__ import annotations

import re
from logging import getLogger
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from prometheus_client import Counter

from rancher_lb.core.errors import (
    AmbiguousResourceError,
    InstanceNotFound,
    LoadBalancerError,
    LoadBalancerNotFoundError,
    MissingSettingError,
    NoHostsFoundError,
    PollError,
    RemoteCallError,
    UnsupportedRequestError,
)
from rancher_lb.models.schemas import (
    LoadBalancerLookup,
    LoadBalancerSpec,
    LoadBalancerStatus,
    NodeAddress,
    NodesUpdate,
    ServiceRequest,
    Zone,
)
from rancher_lb.services.instances import Instances
from rancher_lb.services.reconciler import LoadBalancerReconciler

log = getLogger("rancher_lb.api")
router = APIRouter()

OPERATIONS = Counter("rancher_lb_operations_total", "Provider operations", ["operation", "outcome"])

_STATUS_BY_ERROR: list[tuple[type[LoadBalancerError], int]] = [
    (UnsupportedRequestError, 400),
    (LoadBalancerNotFoundError, 404),
    (InstanceNotFound, 404),
    (NoHostsFoundError, 404),
    (AmbiguousResourceError, 409),
    (MissingSettingError, 500),
    (RemoteCallError, 502),
    (PollError, 504),
]


def _http_error(operation: str, err: LoadBalancerError) -> HTTPException:
    OPERATIONS.labels(operation=operation, outcome="error").inc()
    status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(err, kind)), 500)
    log.error("%s failed: %s", operation, err)
    return HTTPException(status_code=status, detail=str(err))


def _ok(operation: str) -> None:
    OPERATIONS.labels(operation=operation, outcome="ok").inc()


def _get_reconciler(request: Request) -> LoadBalancerReconciler:
    """Return the app-scoped reconciler created during application lifespan."""
    reconciler: Optional[LoadBalancerReconciler] = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        raise HTTPException(status_code=503, detail="Provider not initialized")
    return reconciler


def _get_instances(request: Request) -> Instances:
    instances: Optional[Instances] = getattr(request.app.state, "instances", None)
    if instances is None:
        raise HTTPException(status_code=503, detail="Provider not initialized")
    return instances


@router.put("/loadbalancers/{name}", response_model=LoadBalancerStatus)
async def ensure_load_balancer(name: str, spec: LoadBalancerSpec, request: Request):
    """Create or converge the load balancer of service ``name``; returns its ingress points."""
    reconciler = _get_reconciler(request)
    try:
        status = await reconciler.ensure_load_balancer(ServiceRequest(name=name, **spec.model_dump()))
    except LoadBalancerError as e:
        raise _http_error("ensure", e) from e
    _ok("ensure")
    return status


@router.get("/loadbalancers/{name}", response_model=LoadBalancerLookup)
async def get_load_balancer(name: str, request: Request):
    reconciler = _get_reconciler(request)
    try:
        lookup = await reconciler.get_load_balancer(name)
    except LoadBalancerError as e:
        raise _http_error("get", e) from e
    _ok("get")
    return lookup


@router.put("/loadbalancers/{name}/nodes")
async def update_load_balancer(name: str, update: NodesUpdate, request: Request):
    """Replace the node set of an existing load balancer."""
    reconciler = _get_reconciler(request)
    try:
        await reconciler.update_load_balancer(ServiceRequest(name=name, ports=update.ports, nodes=update.nodes))
    except LoadBalancerError as e:
        raise _http_error("update", e) from e
    _ok("update")
    return {"ok": True}


@router.delete("/loadbalancers/{name}")
async def delete_load_balancer(name: str, request: Request):
    reconciler = _get_reconciler(request)
    try:
        await reconciler.ensure_load_balancer_deleted(name)
    except LoadBalancerError as e:
        raise _http_error("delete", e) from e
    _ok("delete")
    return {"ok": True}


@router.get("/instances", response_model=list[str])
async def list_instances(request: Request, filter: str = Query(".*", description="hostname regex")):
    instances = _get_instances(request)
    try:
        return await instances.list_instances(filter)
    except re.error as e:
        raise HTTPException(status_code=400, detail=f"invalid filter: {e}") from e
    except LoadBalancerError as e:
        raise _http_error("list_instances", e) from e


@router.get("/instances/{node_name}/addresses", response_model=list[NodeAddress])
async def node_addresses(node_name: str, request: Request):
    instances = _get_instances(request)
    try:
        return await instances.node_addresses(node_name)
    except LoadBalancerError as e:
        raise _http_error("node_addresses", e) from e


@router.get("/instances/{node_name}/id")
async def instance_id(node_name: str, request: Request):
    instances = _get_instances(request)
    try:
        return {"node": node_name, "instance_id": await instances.instance_id(node_name)}
    except LoadBalancerError as e:
        raise _http_error("instance_id", e) from e


@router.get("/instances/{node_name}/external-id")
async def external_id(node_name: str, request: Request):
    instances = _get_instances(request)
    try:
        return {"node": node_name, "external_id": await instances.external_id(node_name)}
    except LoadBalancerError as e:
        raise _http_error("external_id", e) from e


@router.get("/instances/{node_name}/type")
async def instance_type(node_name: str, request: Request):
    instances = _get_instances(request)
    try:
        return {"node": node_name, "instance_type": await instances.instance_type(node_name)}
    except LoadBalancerError as e:
        raise _http_error("instance_type", e) from e


@router.get("/node-name/{hostname}")
async def current_node_name(hostname: str):
    """Node name of the machine called ``hostname``."""
    return {"hostname": hostname, "node_name": Instances.current_node_name(hostname)}


@router.get("/zone", response_model=Zone)
async def zone():
    return Instances.get_zone()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "OK"}
