"""Exceptions raised by the load balancer provider."""

from __future__ import annotations


class LoadBalancerError(Exception):
    """Base exception for provider errors."""


class UnsupportedRequestError(LoadBalancerError):
    """Raised for request shapes the platform can not serve (fixed IP, sticky affinity)."""


class AmbiguousResourceError(LoadBalancerError):
    """Raised when a deterministic name matches more than one remote resource."""

    def __init__(self, kind: str, name: str, count: int) -> None:
        self.kind = kind
        self.name = name
        self.count = count
        super().__init__(f"Multiple {kind} resources ({count}) found for name: {name}")


class RemoteCallError(LoadBalancerError):
    """Raised when a Cattle API call fails in transport or returns a non-success status."""

    def __init__(
        self,
        operation: str,
        target: str,
        detail: str,
        status_code: int | None = None,
    ) -> None:
        self.operation = operation
        self.target = target
        self.detail = detail
        self.status_code = status_code
        message = f"{operation} {target} failed"
        if status_code is not None:
            message = f"{message} [{status_code}]"
        super().__init__(f"{message}: {detail}")


class PollError(LoadBalancerError):
    """Raised when a poll ends without its condition being satisfied."""

    def __init__(self, condition: str, message: str, cause: Exception | None = None) -> None:
        self.condition = condition
        self.cause = cause
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message)


class PollTimeoutError(PollError):
    """Raised when a condition did not hold within the attempt budget."""

    def __init__(self, condition: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(condition, f"Timed out waiting for {condition} after {attempts} attempts")


class MissingSettingError(LoadBalancerError):
    """Raised when a required platform setting is unset or empty."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Failed to fetch {key} setting")


class LoadBalancerNotFoundError(LoadBalancerError):
    """Raised when an operation needs an existing load balancer and there is none."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Couldn't find LB with name {name}")


class InstanceNotFound(LoadBalancerError):
    """Definitive answer that a node does not exist on the platform.

    Distinct from transient lookup failures: only this outcome evicts a
    cached node identity.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Instance not found: {name}")


class NoHostsFoundError(LoadBalancerError):
    """Raised when the platform lists no hosts at all."""

    def __init__(self) -> None:
        super().__init__("No hosts found")
