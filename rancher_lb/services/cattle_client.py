"""HTTP client wrapper for the Rancher Cattle API.

Provides typed list/create/update/delete, action and link-following
operations over Cattle collections, parsing every payload into the models of
``rancher_lb.models.cattle``. Includes basic Prometheus metrics for request
counts and latency.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, TypeVar

import httpx
from prometheus_client import Counter, Histogram
from pydantic import BaseModel, ValidationError

from rancher_lb.core.errors import RemoteCallError
from rancher_lb.models.cattle import Resource

log = logging.getLogger("rancher_lb.cattle")

CATTLE_REQUESTS = Counter("rancher_lb_cattle_requests_total", "Cattle API requests", ["method", "status"])
CATTLE_LATENCY = Histogram("rancher_lb_cattle_latency_seconds", "Cattle API request latency seconds")

LOAD_BALANCER_SERVICES = "loadbalancerservices"
EXTERNAL_SERVICES = "externalservices"
SERVICES = "services"
STACKS = "stacks"
HOSTS = "hosts"
SETTINGS = "settings"

# Filter understood by every collection: skip resources already removed.
NOT_REMOVED = {"removed_null": "1"}

R = TypeVar("R", bound=Resource)


def _payload(model: BaseModel) -> dict[str, Any]:
    """Wire form of a model being created: only the fields that were given."""
    return model.model_dump(by_alias=True, exclude_defaults=True)


class CattleClient:
    """
    Typed client for the Cattle API.

    Holds an httpx.AsyncClient (connection pool, basic auth) and exposes the
    collection operations the provider needs. Every failure, transport or
    status, surfaces as RemoteCallError carrying the operation and target.
    No retries: callers retry whole operations.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str):
        """Create a client with a shared HTTPX AsyncClient and the API base URL."""
        self._client = client
        self._base = base_url.rstrip("/")

    def collection_url(self, collection: str) -> str:
        return f"{self._base}/{collection}"

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        target: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        json: Any = None,
    ) -> Any:
        try:
            with CATTLE_LATENCY.time():
                resp = await self._client.request(method, url, params=params, json=json)
        except httpx.HTTPError as e:
            CATTLE_REQUESTS.labels(method=method, status="error").inc()
            raise RemoteCallError(operation, target, str(e) or type(e).__name__) from e

        CATTLE_REQUESTS.labels(method=method, status=str(resp.status_code)).inc()
        if resp.status_code >= 300:
            log.warning("Cattle non-success (%s) on %s %s", resp.status_code, method, url)
            raise RemoteCallError(operation, target, resp.text, resp.status_code)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteCallError(operation, target, f"invalid JSON: {e}", resp.status_code) from e

    @staticmethod
    def _parse(model: type[R], data: Any, operation: str, target: str) -> R:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RemoteCallError(operation, target, f"unexpected payload: {e}") from e

    def _parse_collection(self, model: type[R], data: Any, operation: str, target: str) -> list[R]:
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise RemoteCallError(operation, target, "response is not a collection")
        return [self._parse(model, item, operation, target) for item in items]

    async def list(
        self,
        collection: str,
        model: type[R],
        filters: Optional[Mapping[str, str]] = None,
    ) -> list[R]:
        """List a collection, applying Cattle query filters (e.g. ``name``, ``removed_null``)."""
        data = await self._request("GET", self.collection_url(collection), "list", collection, params=filters)
        return self._parse_collection(model, data, "list", collection)

    async def by_id(self, collection: str, resource_id: str, model: type[R]) -> R:
        target = f"{collection}/{resource_id}"
        data = await self._request("GET", f"{self.collection_url(collection)}/{resource_id}", "get", target)
        return self._parse(model, data, "get", target)

    async def reload(self, collection: str, resource: R) -> R:
        """Fetch a fresh copy of ``resource``."""
        if not resource.id:
            raise RemoteCallError("reload", f"{collection}/{resource.name}", "resource has no id")
        return await self.by_id(collection, resource.id, type(resource))

    async def create(self, collection: str, resource: R) -> R:
        target = f"{collection}/{resource.name}"
        data = await self._request("POST", self.collection_url(collection), "create", target, json=_payload(resource))
        return self._parse(type(resource), data, "create", target)

    async def update(self, collection: str, resource: R, changes: Mapping[str, Any]) -> R:
        """Apply ``changes`` (wire field names) to ``resource``; fields not named are left as they are."""
        target = f"{collection}/{resource.name or resource.id}"
        url = f"{self.collection_url(collection)}/{resource.id}"
        data = await self._request("PUT", url, "update", target, json=dict(changes))
        return self._parse(type(resource), data, "update", target)

    async def delete(self, collection: str, resource: Resource) -> None:
        target = f"{collection}/{resource.name or resource.id}"
        await self._request("DELETE", f"{self.collection_url(collection)}/{resource.id}", "delete", target)

    async def action(self, resource: R, action: str, body: Optional[BaseModel] = None) -> R:
        """Invoke a state transition offered in ``resource.actions``."""
        target = f"{resource.type or 'resource'}/{resource.name or resource.id}"
        url = resource.actions.get(action)
        if not url:
            raise RemoteCallError(f"action {action}", target, "action not available")
        payload = body.model_dump(by_alias=True) if body is not None else None
        data = await self._request("POST", url, f"action {action}", target, json=payload)
        return self._parse(type(resource), data, f"action {action}", target)

    async def get_link(self, resource: Resource, link: str, model: type[R]) -> list[R]:
        """Follow a collection link of ``resource`` (e.g. ``consumedservices``)."""
        target = f"{resource.type or 'resource'}/{resource.name or resource.id}"
        url = resource.links.get(link)
        if not url:
            raise RemoteCallError(f"link {link}", target, "link not available")
        data = await self._request("GET", url, f"link {link}", target)
        return self._parse_collection(model, data, f"link {link}", target)
