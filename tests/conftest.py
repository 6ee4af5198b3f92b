"""Shared fixtures: a fake Cattle API and provider components wired to it."""
from __future__ import annotations

from functools import partial

import httpx
import pytest

from fake_cattle import API_URL, BASE_URL, FakeCattle
from rancher_lb.services.cattle_client import CattleClient
from rancher_lb.services.instances import Instances
from rancher_lb.services.node_cache import NodeCache, lookup_host
from rancher_lb.services.poller import ConditionPoller
from rancher_lb.services.provisioner import ExternalServiceProvisioner
from rancher_lb.services.reconciler import LoadBalancerReconciler


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def cattle() -> FakeCattle:
    return FakeCattle()


@pytest.fixture
async def client(cattle):
    transport = httpx.ASGITransport(app=cattle.app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as http:
        yield CattleClient(http, API_URL)


@pytest.fixture
def poller() -> ConditionPoller:
    return ConditionPoller(interval_s=0, max_attempts=5)


@pytest.fixture
def nodes(client) -> NodeCache:
    return NodeCache(partial(lookup_host, client))


@pytest.fixture
def provisioner(client, nodes, poller) -> ExternalServiceProvisioner:
    return ExternalServiceProvisioner(client, nodes, poller)


@pytest.fixture
def reconciler(client, provisioner, poller) -> LoadBalancerReconciler:
    return LoadBalancerReconciler(client, provisioner, poller)


@pytest.fixture
def instances(client, nodes) -> Instances:
    return Instances(client, nodes)


@pytest.fixture
def two_nodes(cattle):
    """Hosts node-a (10.0.0.1) and node-b (10.0.0.2)."""
    return cattle.add_host("node-a", ["10.0.0.1"]), cattle.add_host("node-b", ["10.0.0.2"])
