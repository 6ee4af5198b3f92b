"""Node identity resolution with a TTL-bounded local cache.

Nodes are resolved against the platform's host list; a cached copy of the
last successful resolution answers for a node while the platform is
unreachable, but never after the platform says the node is gone.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import RLock
from time import monotonic
from typing import Awaitable, Callable, Dict, Optional

from rancher_lb.core.errors import AmbiguousResourceError, InstanceNotFound
from rancher_lb.models.cattle import Host, IpAddress
from rancher_lb.services.cattle_client import HOSTS, NOT_REMOVED, CattleClient

log = logging.getLogger("rancher_lb.nodes")

DEFAULT_TTL_SEC = 24 * 60 * 60


@dataclass(frozen=True)
class NodeIdentity:
    """Point-in-time snapshot of a platform host and its addresses."""

    host: Host
    ip_addresses: list[IpAddress] = field(default_factory=list)

    @property
    def hostname(self) -> str:
        return self.host.hostname or ""

    @property
    def uuid(self) -> str:
        return self.host.uuid or ""

    @property
    def addresses(self) -> list[str]:
        return [ip.address for ip in self.ip_addresses if ip.address]


HostLookup = Callable[[str], Awaitable[NodeIdentity]]


def host_matches(node_name: str, platform_hostname: str) -> bool:
    """Compare a node name with a platform hostname, tolerating FQDN vs short names.

    When the platform stores an FQDN and the node name is a bare hostname,
    the FQDN is cut to its first label; when the platform stores a bare
    hostname, the node name is cut instead.
    """
    wanted = node_name
    candidate = platform_hostname
    if "." in candidate:
        if "." not in wanted:
            candidate = candidate.split(".", 1)[0]
    else:
        wanted = wanted.split(".", 1)[0]
    return candidate.lower() == wanted.lower()


async def lookup_host(client: CattleClient, name: str) -> NodeIdentity:
    """Resolve ``name`` with a full host listing.

    Raises InstanceNotFound when no host matches and AmbiguousResourceError
    when more than one does.
    """
    hosts = await client.list(HOSTS, Host, NOT_REMOVED)
    matches = [h for h in hosts if h.hostname and host_matches(name, h.hostname)]
    if not matches:
        raise InstanceNotFound(name)
    if len(matches) > 1:
        raise AmbiguousResourceError("host", name, len(matches))

    host = matches[0]
    ip_addresses = await client.get_link(host, "ipAddresses", IpAddress)
    return NodeIdentity(host=host, ip_addresses=ip_addresses)


class NodeCache:
    """Thread-safe TTL cache in front of a host lookup.

    Entries are keyed by the node name they were resolved for. Reading an
    entry refreshes its timestamp, so a node that keeps being asked for
    stays resident.
    """

    def __init__(
        self,
        lookup: HostLookup,
        ttl_s: float = DEFAULT_TTL_SEC,
        clock: Callable[[], float] = monotonic,
    ):
        self._lookup = lookup
        self._ttl = ttl_s
        self._clock = clock
        self._entries: Dict[str, tuple[NodeIdentity, float]] = {}
        self._lock = RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_fresh(self, ts: float) -> bool:
        return (self._clock() - ts) <= self._ttl

    def add(self, name: str, identity: NodeIdentity) -> None:
        with self._lock:
            self._entries[name] = (identity, self._clock())

    def evict(self, name: str) -> bool:
        with self._lock:
            return self._entries.pop(name, None) is not None

    def get(self, name: str) -> Optional[NodeIdentity]:
        """Cache-only lookup; expired entries are dropped, live ones refreshed."""
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return None
            identity, ts = entry
            if not self._is_fresh(ts):
                del self._entries[name]
                return None
            self._entries[name] = (identity, self._clock())
            return identity

    async def resolve(self, name: str) -> NodeIdentity:
        """Resolve ``name`` against the platform, falling back to the cache on transient errors.

        InstanceNotFound evicts the cached entry and propagates; ambiguous
        matches always propagate; any other error is answered from the cache
        when an entry exists.
        """
        try:
            identity = await self._lookup(name)
        except InstanceNotFound:
            if self.evict(name):
                log.info("Evicted node %s from cache: no longer on the platform", name)
            raise
        except AmbiguousResourceError:
            raise
        except Exception as e:
            cached = self.get(name)
            if cached is None:
                raise
            log.warning("Lookup of node %s failed (%s); using cached identity", name, e)
            return cached

        self.add(name, identity)
        return identity
