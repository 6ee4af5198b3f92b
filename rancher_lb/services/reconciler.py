"""Load balancer reconciliation against the Cattle API.

Drives the platform's load balancer service, its forwarding targets, port
rules and service links into the state a service asks for. Every call is
idempotent by construction: resources are found by deterministic names, so
a failed call can simply be retried as a whole.
"""
from __future__ import annotations

import logging
import re
from functools import partial
from typing import Optional, Sequence

from rancher_lb.core.errors import (
    AmbiguousResourceError,
    LoadBalancerNotFoundError,
    MissingSettingError,
    UnsupportedRequestError,
)
from rancher_lb.models.cattle import (
    LaunchConfig,
    LbConfig,
    LoadBalancerService,
    Setting,
    Stack,
)
from rancher_lb.models.schemas import (
    LoadBalancerIngress,
    LoadBalancerLookup,
    LoadBalancerStatus,
    ServicePort,
    ServiceRequest,
    SessionAffinity,
)
from rancher_lb.services import cleanup
from rancher_lb.services.cattle_client import (
    LOAD_BALANCER_SERVICES,
    NOT_REMOVED,
    SETTINGS,
    STACKS,
    CattleClient,
)
from rancher_lb.services.poller import ConditionPoller
from rancher_lb.services.provisioner import ExternalServiceProvisioner, build_external_service_name

log = logging.getLogger("rancher_lb.reconciler")

LB_NAME_FORMAT = "lb-%s"
ENVIRONMENT_NAME = "kubernetes-loadbalancers"
ENVIRONMENT_EXTERNAL_ID = "kubernetes-loadbalancers://"
LB_IMAGE_SETTING = "lb.instance.image"
# "<port>:<node port>/<protocol>" as written into the launch config
_PORT_SPEC = re.compile(r"^([1-9]\d*):([1-9]\d*)(?:/\w+)?$")


def format_lb_name(service_name: str) -> str:
    return LB_NAME_FORMAT % service_name


def lb_port_specs(ports: Sequence[ServicePort]) -> list[str]:
    """Launch config port strings ("<port>:<node port>/tcp") for the forwardable ports."""
    specs = []
    for port in ports:
        if not port.node_port:
            log.warning("Ignoring port without NodePort: %s", port)
            continue
        specs.append(f"{port.port}:{port.node_port}/tcp")
    return specs


def ports_from_specs(specs: Sequence[str]) -> list[ServicePort]:
    """Rebuild service ports from launch config port strings."""
    ports = []
    for entry in specs:
        m = _PORT_SPEC.match(entry)
        if m is None:
            log.warning("Ignoring unparsable LB port %r", entry)
            continue
        ports.append(ServicePort(port=int(m.group(1)), node_port=int(m.group(2))))
    return ports


def ports_changed(desired: Sequence[str], current: Sequence[str]) -> bool:
    """Compare port strings as unordered collections."""
    return sorted(desired) != sorted(current)


def to_status(lb: LoadBalancerService) -> LoadBalancerStatus:
    """One ingress entry per public endpoint; ports are not reported."""
    return LoadBalancerStatus(
        ingress=[LoadBalancerIngress(ip=ep.ip_address) for ep in lb.public_endpoints if ep.ip_address]
    )


class LoadBalancerReconciler:
    """
    Implements ensure/get/update/delete for service load balancers.

    Holds the Cattle client, the forwarding-target provisioner and the
    poller used to wait for the platform to settle.
    """

    def __init__(
        self,
        client: CattleClient,
        provisioner: ExternalServiceProvisioner,
        poller: ConditionPoller,
    ):
        self._client = client
        self._provisioner = provisioner
        self._poller = poller

    async def find_load_balancer(self, name: str) -> Optional[LoadBalancerService]:
        """The load balancer named ``name``, None if absent; more than one is an error."""
        lbs = await self._client.list(LOAD_BALANCER_SERVICES, LoadBalancerService, {"name": name, **NOT_REMOVED})
        if not lbs:
            return None
        if len(lbs) > 1:
            raise AmbiguousResourceError("load balancer", name, len(lbs))
        return lbs[0]

    async def get_or_create_environment(self) -> Stack:
        filters = {"name": ENVIRONMENT_NAME, "externalId": ENVIRONMENT_EXTERNAL_ID, **NOT_REMOVED}
        envs = await self._client.list(STACKS, Stack, filters)
        if envs:
            return envs[0]
        log.info("Creating stack %s for load balancers", ENVIRONMENT_NAME)
        return await self._client.create(
            STACKS, Stack(name=ENVIRONMENT_NAME, external_id=ENVIRONMENT_EXTERNAL_ID)
        )

    async def get_setting(self, key: str) -> Optional[str]:
        settings = await self._client.list(SETTINGS, Setting, {"name": key})
        for setting in settings:
            if (setting.name or "").lower() == key.lower():
                return setting.value
        return None

    @staticmethod
    def _check_node_names(nodes: Sequence[str]) -> None:
        """Reject node names that can't become distinct target names, before touching the platform."""
        seen: dict[str, str] = {}
        for node_name in nodes:
            target = build_external_service_name(node_name)
            other = seen.setdefault(target, node_name)
            if other != node_name:
                raise UnsupportedRequestError(f"Nodes {other!r} and {node_name!r} both map to service name {target!r}")

    async def _reload(self, lb: LoadBalancerService) -> LoadBalancerService:
        return await self._client.reload(LOAD_BALANCER_SERVICES, lb)

    async def _running(self, lb: LoadBalancerService) -> Optional[LoadBalancerService]:
        fresh = await self._reload(lb)
        return fresh if fresh.is_running() else None

    async def _with_public_endpoints(self, lb: LoadBalancerService, count: int = 1) -> Optional[LoadBalancerService]:
        fresh = await self._reload(lb)
        return fresh if len(fresh.public_endpoints) >= count else None

    async def _create_load_balancer(self, name: str, port_specs: list[str]) -> LoadBalancerService:
        env = await self.get_or_create_environment()
        image = await self.get_setting(LB_IMAGE_SETTING)
        if not image:
            raise MissingSettingError(LB_IMAGE_SETTING)

        lb = await self._client.create(
            LOAD_BALANCER_SERVICES,
            LoadBalancerService(
                name=name,
                stack_id=env.id,
                launch_config=LaunchConfig(ports=port_specs, image_uuid=f"docker:{image}"),
                lb_config=LbConfig(),
            ),
        )
        log.info("Created LB %s in stack %s", name, env.id)
        return lb

    async def ensure_load_balancer(self, request: ServiceRequest) -> LoadBalancerStatus:
        """Create or converge the load balancer of ``request`` and return its ingress points."""
        name = format_lb_name(request.name)
        log.info(
            "EnsureLoadBalancer [%s] [%r] [%s] [%s] [%s]",
            name, request.load_balancer_ip, request.ports, request.nodes, request.session_affinity.value,
        )

        if request.load_balancer_ip:
            raise UnsupportedRequestError("loadBalancerIP cannot be specified for Rancher LoadBalancer")
        if request.session_affinity is not SessionAffinity.NONE:
            raise UnsupportedRequestError(f"Unsupported load balancer affinity: {request.session_affinity.value}")
        self._check_node_names(request.nodes)

        lb = await self.find_load_balancer(name)
        port_specs = lb_port_specs(request.ports)

        if lb is not None and ports_changed(port_specs, lb.ports):
            # ports of an existing LB can not be updated in place
            log.info("Deleting the lb because the ports changed %s", name)
            await cleanup.delete_load_balancer(self._client, lb)
            lb = None

        if lb is None:
            lb = await self._create_load_balancer(name, port_specs)

        # activation follows the LB as found or created, not its mid-update copy
        needs_activation = not lb.is_active
        lb = await self._provisioner.set_lb_hosts(lb, request.nodes, request.ports)

        if needs_activation:
            ready = await self._poller.wait_for_action("activate", partial(self._reload, lb))
            lb = await self._client.action(ready, "activate")

        lb = await self._reload(lb)
        lb = await self._poller.wait_for(f"LB {name} to become active", partial(self._running, lb))
        lb = await self._poller.wait_for(f"public endpoints of LB {name}", partial(self._with_public_endpoints, lb))

        lb = await self._reload(lb)
        return to_status(lb)

    async def get_load_balancer(self, service_name: str) -> LoadBalancerLookup:
        name = format_lb_name(service_name)
        log.info("GetLoadBalancer [%s]", name)
        lb = await self.find_load_balancer(name)
        if lb is None:
            log.info("Can't find lb by name [%s]", name)
            return LoadBalancerLookup(status=LoadBalancerStatus(), exists=False)
        return LoadBalancerLookup(status=to_status(lb), exists=True)

    async def update_load_balancer(self, request: ServiceRequest) -> None:
        """Replace the node set of an existing load balancer.

        Without ports in ``request`` the port rules are rebuilt from the ports
        the load balancer was launched with.
        """
        name = format_lb_name(request.name)
        log.info("UpdateLoadBalancer [%s] [%s]", name, request.nodes)
        self._check_node_names(request.nodes)
        lb = await self.find_load_balancer(name)
        if lb is None:
            raise LoadBalancerNotFoundError(name)

        ports = request.ports or ports_from_specs(lb.ports)
        await cleanup.delete_consumed_services(self._client, lb)
        await self._provisioner.set_lb_hosts(lb, request.nodes, ports)

    async def ensure_load_balancer_deleted(self, service_name: str) -> None:
        name = format_lb_name(service_name)
        log.info("EnsureLoadBalancerDeleted [%s]", name)
        lb = await self.find_load_balancer(name)
        if lb is None:
            log.info("Couldn't find LB %s to delete. Nothing to do.", name)
            return
        await cleanup.delete_load_balancer(self._client, lb)
