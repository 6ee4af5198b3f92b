"""Pydantic models used by the orchestration-facing API."""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class SessionAffinity(str, Enum):
    """Session affinity policy of a service."""
    NONE = "None"
    CLIENT_IP = "ClientIP"


class ServicePort(BaseModel):
    """One (external port, node port, protocol) mapping of a service."""

    name: str | None = None
    protocol: str = "TCP"
    port: int = Field(ge=1, le=65535)
    node_port: int = Field(default=0, ge=0, le=65535)


class LoadBalancerSpec(BaseModel):
    """Body of an ensure request; the service name comes from the path."""

    ports: list[ServicePort] = Field(default_factory=list)
    session_affinity: SessionAffinity = SessionAffinity.NONE
    load_balancer_ip: str = ""
    nodes: list[str] = Field(default_factory=list)


class NodesUpdate(BaseModel):
    """Body of an update request: the full node set to attach."""

    ports: list[ServicePort] = Field(default_factory=list)
    nodes: list[str] = Field(default_factory=list)


class ServiceRequest(LoadBalancerSpec):
    """A service for which a load balancer is requested."""

    name: str = Field(min_length=1)


class LoadBalancerIngress(BaseModel):
    ip: str


class LoadBalancerStatus(BaseModel):
    ingress: list[LoadBalancerIngress] = Field(default_factory=list)


class LoadBalancerLookup(BaseModel):
    """Result of a read-only load balancer lookup."""

    status: LoadBalancerStatus
    exists: bool


class NodeAddressType(str, Enum):
    INTERNAL_IP = "InternalIP"
    EXTERNAL_IP = "ExternalIP"
    HOSTNAME = "Hostname"


class NodeAddress(BaseModel):
    type: NodeAddressType
    address: str


class Zone(BaseModel):
    failure_domain: str
    region: str
