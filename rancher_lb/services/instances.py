"""Node identity lookups for the orchestrator: addresses, IDs, types and zones."""
from __future__ import annotations

import logging
import re

from rancher_lb.core.errors import NoHostsFoundError
from rancher_lb.models.cattle import Host
from rancher_lb.models.schemas import NodeAddress, NodeAddressType, Zone
from rancher_lb.services.cattle_client import HOSTS, NOT_REMOVED, CattleClient
from rancher_lb.services.node_cache import NodeCache

log = logging.getLogger("rancher_lb.instances")

INSTANCE_TYPE = "rancher"
DEFAULT_ZONE = Zone(failure_domain="FailureDomain1", region="Region1")


class Instances:
    """Resolves cluster nodes through the node cache."""

    def __init__(self, client: CattleClient, nodes: NodeCache):
        self._client = client
        self._nodes = nodes

    async def node_addresses(self, node_name: str) -> list[NodeAddress]:
        """Every IP as both internal and external address, then the hostname."""
        identity = await self._nodes.resolve(node_name)
        addresses: list[NodeAddress] = []
        for ip in identity.addresses:
            addresses.append(NodeAddress(type=NodeAddressType.INTERNAL_IP, address=ip))
            addresses.append(NodeAddress(type=NodeAddressType.EXTERNAL_IP, address=ip))
        addresses.append(NodeAddress(type=NodeAddressType.HOSTNAME, address=identity.hostname))
        return addresses

    async def instance_id(self, node_name: str) -> str:
        log.info("InstanceID [%s]", node_name)
        identity = await self._nodes.resolve(node_name)
        return identity.uuid

    async def external_id(self, node_name: str) -> str:
        log.info("ExternalID [%s]", node_name)
        return await self.instance_id(node_name)

    async def instance_type(self, node_name: str) -> str:
        await self.instance_id(node_name)
        return INSTANCE_TYPE

    async def list_instances(self, pattern: str) -> list[str]:
        """Hostnames matching the regular expression ``pattern``.

        A pattern wrapped in single quotes is unwrapped first. Raises
        re.error for an invalid pattern and NoHostsFoundError when the
        platform has no hosts at all.
        """
        log.info("List %s", pattern)
        if len(pattern) >= 2 and pattern.startswith("'") and pattern.endswith("'"):
            pattern = pattern[1:-1]
        regex = re.compile(pattern)

        hosts = await self._client.list(HOSTS, Host, NOT_REMOVED)
        if not hosts:
            raise NoHostsFoundError()
        return [h.hostname for h in hosts if h.hostname and regex.search(h.hostname)]

    @staticmethod
    def current_node_name(hostname: str) -> str:
        return hostname

    @staticmethod
    def get_zone() -> Zone:
        return DEFAULT_ZONE
