"""Pydantic models of Cattle API resources.

Field names are snake_case in Python and camelCase on the wire; every model
accepts both on input and is dumped ``by_alias`` when sent to the API.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CattleModel(BaseModel):
    """Common configuration for wire models."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Resource(CattleModel):
    """Fields shared by every Cattle resource.

    ``actions`` maps the state transitions currently offered by the platform
    to their URLs; ``links`` maps related collections to theirs.
    """

    id: str | None = None
    type: str | None = None
    name: str | None = None
    state: str | None = None
    actions: dict[str, str] = Field(default_factory=dict)
    links: dict[str, str] = Field(default_factory=dict)

    def supports(self, action: str) -> bool:
        """Whether the platform currently offers ``action`` on this resource."""
        return action in self.actions

    @property
    def is_active(self) -> bool:
        return (self.state or "").lower() == "active"


class PublicEndpoint(CattleModel):
    ip_address: str | None = None
    port: int | None = None


class LaunchConfig(CattleModel):
    ports: list[str] = Field(default_factory=list)
    image_uuid: str | None = None


class PortRule(CattleModel):
    """One forwarding path through a load balancer."""

    source_port: int
    target_port: int
    service_id: str
    protocol: str


class LbConfig(CattleModel):
    port_rules: list[PortRule] = Field(default_factory=list)


class ServiceLink(CattleModel):
    service_id: str


class SetServiceLinksInput(CattleModel):
    service_links: list[ServiceLink]


class Service(Resource):
    """Generic service, as returned by service link collections."""

    stack_id: str | None = None


class LoadBalancerService(Service):
    launch_config: LaunchConfig | None = None
    lb_config: LbConfig | None = None
    public_endpoints: list[PublicEndpoint] = Field(default_factory=list)

    @property
    def ports(self) -> list[str]:
        return list(self.launch_config.ports) if self.launch_config else []

    def is_running(self) -> bool:
        """Whether activation has completed.

        The ``state`` field is authoritative; an offered ``deactivate`` action
        only counts when the platform reports no state at all.
        """
        if self.state:
            return self.is_active
        return self.supports("deactivate")


class ExternalService(Service):
    external_ip_addresses: list[str] = Field(default_factory=list)


class Stack(Resource):
    external_id: str | None = None


class Host(Resource):
    hostname: str | None = None
    uuid: str | None = None


class IpAddress(Resource):
    address: str | None = None


class Setting(Resource):
    value: str | None = None
