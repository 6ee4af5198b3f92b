"""In-memory stand-in for the Cattle API, served as a FastAPI app.

Keeps resources in a dict, renders them with ``actions``/``links`` maps the
way the platform does, and records every call so tests can assert on the
traffic. Newly created services stay "settling" (no actions offered) for
``settle_reads`` reads by id, and an activated load balancer reports public
endpoints only after another ``settle_reads`` reads, so waits actually poll.
Updating an active service reports "updating-active" until the next read
by id.
"""
from __future__ import annotations

import itertools
from typing import Any, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

BASE_URL = "http://cattle.test"
API_PREFIX = "/v2-beta"
API_URL = BASE_URL + API_PREFIX

LB_IMAGE = "rancher/lb-service-haproxy:v0.9.1"

TYPES_BY_COLLECTION = {
    "loadbalancerservices": {"loadBalancerService"},
    "externalservices": {"externalService"},
    "services": {"loadBalancerService", "externalService"},
    "stacks": {"stack"},
    "hosts": {"host"},
    "settings": {"setting"},
    "ipaddresses": {"ipAddress"},
}
COLLECTION_BY_TYPE = {
    "loadBalancerService": "loadbalancerservices",
    "externalService": "externalservices",
    "stack": "stacks",
    "host": "hosts",
    "setting": "settings",
    "ipAddress": "ipaddresses",
}
CREATABLE = {
    "loadbalancerservices": "loadBalancerService",
    "externalservices": "externalService",
    "stacks": "stack",
}
SERVICE_TYPES = {"loadBalancerService", "externalService"}


def _error(status: int, code: str) -> JSONResponse:
    return JSONResponse({"type": "error", "status": status, "code": code}, status_code=status)


class FakeCattle:
    def __init__(
        self,
        public_ips: Iterable[str] = ("203.0.113.10",),
        settle_reads: int = 1,
        lb_image: Optional[str] = LB_IMAGE,
    ):
        self.resources: dict[str, dict[str, Any]] = {}
        # consumer id -> ids of the services it links to
        self.links: dict[str, list[str]] = {}
        self.calls: list[str] = []
        self.actions: list[tuple[str, str, Any]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        # "METHOD /path[?action=x]" -> status code to answer with
        self.failures: dict[str, int] = {}
        self.public_ips = list(public_ips)
        self.settle_reads = settle_reads
        self._ids = itertools.count(1)
        if lb_image is not None:
            self.add_setting("lb.instance.image", lb_image)
        self.app = self._build_app()

    # --- seeding -----------------------------------------------------------

    def _store(self, type_: str, **fields: Any) -> dict[str, Any]:
        res: dict[str, Any] = {"id": f"1s{next(self._ids)}", "type": type_, **fields}
        res.setdefault("state", "active")
        res.setdefault("_pending", 0)
        res.setdefault("_endpoint_reads", 0)
        self.resources[res["id"]] = res
        return res

    def add_setting(self, name: str, value: str) -> dict[str, Any]:
        return self._store("setting", name=name, value=value)

    def add_stack(
        self,
        name: str = "kubernetes-loadbalancers",
        external_id: str = "kubernetes-loadbalancers://",
    ) -> dict[str, Any]:
        return self._store("stack", name=name, externalId=external_id)

    def add_host(self, hostname: str, ips: Iterable[str] = (), uuid: Optional[str] = None) -> dict[str, Any]:
        host = self._store("host", name=hostname, hostname=hostname, uuid=uuid or f"uuid-{hostname}")
        for ip in ips:
            self._store("ipAddress", address=ip, hostId=host["id"])
        return host

    def add_load_balancer(
        self,
        name: str,
        ports: Iterable[str],
        stack_id: Optional[str] = None,
        state: str = "active",
    ) -> dict[str, Any]:
        return self._store(
            "loadBalancerService",
            name=name,
            stackId=stack_id,
            state=state,
            launchConfig={"ports": list(ports), "imageUuid": f"docker:{LB_IMAGE}"},
            lbConfig={},
        )

    def add_external_service(
        self,
        name: str,
        ip: str,
        stack_id: Optional[str] = None,
        state: str = "active",
    ) -> dict[str, Any]:
        return self._store("externalService", name=name, stackId=stack_id, state=state, externalIpAddresses=[ip])

    def link(self, consumer_id: str, *consumed_ids: str) -> None:
        self.links.setdefault(consumer_id, []).extend(consumed_ids)

    # --- inspection --------------------------------------------------------

    def of_type(self, type_: str) -> list[dict[str, Any]]:
        return [r for r in self.resources.values() if r["type"] == type_]

    def count_calls(self, call: str) -> int:
        return self.calls.count(call)

    def action_bodies(self, action: str) -> list[Any]:
        return [body for _, name, body in self.actions if name == action]

    # --- rendering ---------------------------------------------------------

    def _offered_actions(self, res: dict[str, Any]) -> list[str]:
        if res["type"] not in SERVICE_TYPES or res["_pending"] > 0:
            return []
        if res["state"] == "active":
            return ["deactivate", "setservicelinks", "update", "remove"]
        if res["state"] == "updating-active":
            return ["setservicelinks", "update"]
        return ["activate", "setservicelinks", "update", "remove"]

    def _public_endpoints(self, res: dict[str, Any]) -> list[dict[str, Any]]:
        if res["state"] != "active" or res["_endpoint_reads"] > 0:
            return []
        ports = [int(spec.split(":", 1)[0]) for spec in res.get("launchConfig", {}).get("ports", [])]
        return [{"ipAddress": ip, "port": port} for ip in self.public_ips for port in ports]

    def render(self, res: dict[str, Any]) -> dict[str, Any]:
        rid = res["id"]
        collection = COLLECTION_BY_TYPE[res["type"]]
        out = {k: v for k, v in res.items() if not k.startswith("_")}
        out["actions"] = {a: f"{API_URL}/{collection}/{rid}?action={a}" for a in self._offered_actions(res)}
        links = {"self": f"{API_URL}/{collection}/{rid}"}
        if res["type"] in SERVICE_TYPES:
            links["consumedservices"] = f"{API_URL}/services/{rid}/consumedservices"
            links["consumedbyservices"] = f"{API_URL}/services/{rid}/consumedbyservices"
        if res["type"] == "host":
            links["ipAddresses"] = f"{API_URL}/hosts/{rid}/ipaddresses"
        out["links"] = links
        if res["type"] == "loadBalancerService":
            out["publicEndpoints"] = self._public_endpoints(res)
        return out

    def _read(self, res: dict[str, Any]) -> dict[str, Any]:
        out = self.render(res)
        res["_pending"] = max(0, res["_pending"] - 1)
        if "_settled_state" in res:
            res["state"] = res.pop("_settled_state")
        if res["state"] == "active":
            res["_endpoint_reads"] = max(0, res["_endpoint_reads"] - 1)
        return out

    def _find(self, collection: str, rid: str) -> Optional[dict[str, Any]]:
        res = self.resources.get(rid)
        if res is not None and res["type"] in TYPES_BY_COLLECTION.get(collection, set()):
            return res
        return None

    def _remove(self, rid: str) -> dict[str, Any]:
        res = self.resources.pop(rid)
        self.links.pop(rid, None)
        for consumed in self.links.values():
            while rid in consumed:
                consumed.remove(rid)
        res["state"] = "removed"
        return res

    # --- API ---------------------------------------------------------------

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Cattle (fake)")

        @app.middleware("http")
        async def record(request: Request, call_next):
            rel = request.url.path[len(API_PREFIX):]
            action = request.query_params.get("action")
            call = f"{request.method} {rel}" + (f"?action={action}" if action else "")
            self.calls.append(call)
            if call in self.failures:
                return _error(self.failures[call], "Injected")
            return await call_next(request)

        @app.get(API_PREFIX + "/{collection}")
        async def list_collection(collection: str, request: Request):
            if collection not in TYPES_BY_COLLECTION:
                return _error(404, "NotFound")
            types = TYPES_BY_COLLECTION[collection]
            filters = {k: v for k, v in request.query_params.items() if k != "removed_null"}
            data = [
                self.render(r)
                for r in list(self.resources.values())
                if r["type"] in types and all(str(r.get(k)) == v for k, v in filters.items())
            ]
            return {"type": "collection", "data": data}

        @app.post(API_PREFIX + "/{collection}")
        async def create(collection: str, request: Request):
            type_ = CREATABLE.get(collection)
            if type_ is None:
                return _error(405, "MethodNotAllowed")
            body = await request.json()
            fields = {k: v for k, v in body.items() if k not in ("id", "type", "state")}
            if type_ in SERVICE_TYPES:
                res = self._store(type_, state="inactive", _pending=self.settle_reads, **fields)
            else:
                res = self._store(type_, **fields)
            return self.render(res)

        @app.get(API_PREFIX + "/{collection}/{rid}")
        async def get_one(collection: str, rid: str):
            res = self._find(collection, rid)
            if res is None:
                return _error(404, "NotFound")
            return self._read(res)

        @app.put(API_PREFIX + "/{collection}/{rid}")
        async def update(collection: str, rid: str, request: Request):
            res = self._find(collection, rid)
            if res is None:
                return _error(404, "NotFound")
            body = await request.json()
            self.updates.append((rid, body))
            res.update({k: v for k, v in body.items() if k not in ("id", "type")})
            if res["state"] == "active":
                res["state"] = "updating-active"
                res["_settled_state"] = "active"
            return self.render(res)

        @app.delete(API_PREFIX + "/{collection}/{rid}")
        async def delete(collection: str, rid: str):
            if self._find(collection, rid) is None:
                return _error(404, "NotFound")
            return self.render(self._remove(rid))

        @app.post(API_PREFIX + "/{collection}/{rid}")
        async def act(collection: str, rid: str, request: Request, action: str = ""):
            res = self._find(collection, rid)
            if res is None:
                return _error(404, "NotFound")
            if action not in self._offered_actions(res):
                return _error(409, "InvalidAction")
            raw = await request.body()
            body = await request.json() if raw else None
            self.actions.append((rid, action, body))
            if action == "activate":
                res["state"] = "active"
                res["_endpoint_reads"] = self.settle_reads
            elif action == "deactivate":
                res["state"] = "inactive"
            elif action == "setservicelinks":
                self.links[rid] = [link["serviceId"] for link in (body or {}).get("serviceLinks", [])]
            return self.render(res)

        @app.get(API_PREFIX + "/{collection}/{rid}/{link}")
        async def follow(collection: str, rid: str, link: str):
            if self._find(collection, rid) is None:
                return _error(404, "NotFound")
            if link == "consumedservices":
                ids = list(self.links.get(rid, []))
            elif link == "consumedbyservices":
                ids = [consumer for consumer, consumed in self.links.items() if rid in consumed]
            elif link == "ipaddresses":
                ids = [r["id"] for r in self.resources.values() if r["type"] == "ipAddress" and r.get("hostId") == rid]
            else:
                return _error(404, "NotFound")
            return {"type": "collection", "data": [self.render(self.resources[i]) for i in ids if i in self.resources]}

        return app
