"""Forwarding targets of a load balancer.

Each backing node is represented on the platform by an external service that
holds the node's primary IP address. Targets live in the load balancer's
stack and are shared by every load balancer that uses the same node. The
full link set and rule set are written to the load balancer in one go, never
patched incrementally.
"""
from __future__ import annotations

import logging
import re
from functools import partial
from typing import Iterable, Optional, Sequence

from rancher_lb.core.errors import UnsupportedRequestError
from rancher_lb.models.cattle import (
    ExternalService,
    LbConfig,
    LoadBalancerService,
    PortRule,
    ServiceLink,
    SetServiceLinksInput,
)
from rancher_lb.models.schemas import ServicePort
from rancher_lb.services.cattle_client import (
    EXTERNAL_SERVICES,
    LOAD_BALANCER_SERVICES,
    NOT_REMOVED,
    CattleClient,
)
from rancher_lb.services.node_cache import NodeCache
from rancher_lb.services.poller import ConditionPoller

log = logging.getLogger("rancher_lb.provisioner")

# Resource names are capped by the platform.
MAX_NAME_LENGTH = 63
RULE_PROTOCOL = "tcp"

_DISALLOWED_CHARS = re.compile(r"[^a-zA-Z0-9-]")
_HYPHEN_RUNS = re.compile(r"-+")


def build_external_service_name(node_name: str) -> str:
    """Turn a node name into a resource name: [A-Za-z0-9-], no hyphen runs or edges, <= 63 chars.

    Raises UnsupportedRequestError when nothing usable is left of the name.
    """
    cleaned = _DISALLOWED_CHARS.sub("-", node_name)
    cleaned = _HYPHEN_RUNS.sub("-", cleaned).strip("-")
    cleaned = cleaned[:MAX_NAME_LENGTH].rstrip("-")
    if not cleaned:
        raise UnsupportedRequestError(f"Node name {node_name!r} has no characters usable in a service name")
    return cleaned


def build_port_rules(service_id: str, ports: Iterable[ServicePort]) -> list[PortRule]:
    """One TCP rule per forwardable port, all pointing at ``service_id``."""
    return [
        PortRule(
            source_port=port.port,
            target_port=port.node_port,
            service_id=service_id,
            protocol=RULE_PROTOCOL,
        )
        for port in ports
        if port.node_port
    ]


class ExternalServiceProvisioner:
    """Creates, activates and links the forwarding targets of a load balancer."""

    def __init__(self, client: CattleClient, nodes: NodeCache, poller: ConditionPoller):
        self._client = client
        self._nodes = nodes
        self._poller = poller

    async def find_target(self, lb: LoadBalancerService, name: str) -> Optional[ExternalService]:
        filters = {"name": name, "stackId": lb.stack_id or "", **NOT_REMOVED}
        found = await self._client.list(EXTERNAL_SERVICES, ExternalService, filters)
        return found[0] if found else None

    async def ensure_target(self, lb: LoadBalancerService, node_name: str) -> Optional[ExternalService]:
        """Get or create the active forwarding target of one node.

        Returns None for a node without any IP address.
        """
        name = build_external_service_name(node_name)
        target = await self.find_target(lb, name)

        if target is None:
            identity = await self._nodes.resolve(node_name)
            if not identity.addresses:
                log.warning("Node %s has no IP address; not forwarding to it from %s", node_name, lb.name)
                return None
            target = await self._client.create(
                EXTERNAL_SERVICES,
                ExternalService(
                    name=name,
                    external_ip_addresses=[identity.addresses[0]],
                    stack_id=lb.stack_id,
                ),
            )
            log.info("Created external service %s (%s) for LB %s", name, identity.addresses[0], lb.name)

        if not target.is_active:
            ready = await self._poller.wait_for_action(
                "activate", partial(self._client.reload, EXTERNAL_SERVICES, target)
            )
            target = await self._client.action(ready, "activate")
        return target

    async def set_lb_hosts(
        self,
        lb: LoadBalancerService,
        node_names: Sequence[str],
        ports: Sequence[ServicePort],
    ) -> LoadBalancerService:
        """Point ``lb`` at exactly the given nodes, replacing its links and port rules."""
        links: list[ServiceLink] = []
        rules: list[PortRule] = []
        for node_name in node_names:
            target = await self.ensure_target(lb, node_name)
            if target is None or not target.id:
                continue
            links.append(ServiceLink(service_id=target.id))
            rules.extend(build_port_rules(target.id, ports))

        # service links are kept for dependency tracking; forwarding is done by port rules
        ready = await self._poller.wait_for_action(
            "setservicelinks", partial(self._client.reload, LOAD_BALANCER_SERVICES, lb)
        )
        lb = await self._client.action(ready, "setservicelinks", SetServiceLinksInput(service_links=links))
        lb = await self._client.update(
            LOAD_BALANCER_SERVICES,
            lb,
            {"lbConfig": LbConfig(port_rules=rules).model_dump(by_alias=True)},
        )
        log.info("LB %s now links %d target(s) with %d port rule(s)", lb.name, len(links), len(rules))
        return lb
