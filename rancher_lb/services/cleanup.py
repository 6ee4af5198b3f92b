"""Teardown of load balancers and the forwarding targets only they use."""
from __future__ import annotations

import logging

from rancher_lb.core.errors import RemoteCallError
from rancher_lb.models.cattle import LoadBalancerService, Service
from rancher_lb.services.cattle_client import LOAD_BALANCER_SERVICES, SERVICES, CattleClient

log = logging.getLogger("rancher_lb.cleanup")


async def delete_consumed_services(client: CattleClient, lb: LoadBalancerService) -> int:
    """Delete the services ``lb`` links to, unless another service consumes them too.

    Reading the load balancer's own links must succeed; failures on single
    targets are logged and skipped. Returns the number of services deleted.
    """
    consumed = await client.get_link(lb, "consumedservices", Service)

    deleted = 0
    for service in consumed:
        try:
            consumers = await client.get_link(service, "consumedbyservices", Service)
        except RemoteCallError as e:
            log.warning("Can't read consumers of service %s; it won't be deleted: %s", service.id, e)
            continue

        if len(consumers) > 1:
            log.info("Service %s has more than one consumer. Will not delete it.", service.id)
            continue

        try:
            await client.delete(SERVICES, service)
        except RemoteCallError as e:
            log.warning("Error deleting service %s. Moving on: %s", service.id, e)
            continue
        deleted += 1
    return deleted


async def delete_load_balancer(client: CattleClient, lb: LoadBalancerService) -> None:
    """Delete ``lb`` after its exclusively owned targets."""
    removed = await delete_consumed_services(client, lb)
    log.info("Deleted %d consumed service(s) of LB %s", removed, lb.name)
    await client.delete(LOAD_BALANCER_SERVICES, lb)
