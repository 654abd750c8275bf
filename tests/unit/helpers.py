"""Shared test doubles for the provisioning tests."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

from bedrock_accelerator.config.models import (
    AcceleratorConfig,
    DiscoveryConfig,
    ExecutorConfig,
)
from bedrock_accelerator.errors import ResourceNotFound
from bedrock_accelerator.provisioning.backend import CreatedResource

FAST_DISCOVERY = DiscoveryConfig(
    max_attempts=5,
    initial_wait_seconds=0.001,
    max_wait_seconds=0.005,
    jitter=False,
    query_timeout_seconds=1.0,
)


def fast_executor_config(max_concurrency: int = 4) -> ExecutorConfig:
    return ExecutorConfig(max_concurrency=max_concurrency, discovery=FAST_DISCOVERY)


def accelerator_config(**overrides: Any) -> AcceleratorConfig:
    values: dict[str, Any] = {
        "vpc_id": "vpc-0abc123",
        "public_subnet_ids": ["subnet-0aaa111", "subnet-0bbb222"],
        "region": "us-east-1",
        "nlb_security_group": "10.0.0.0/8",
        "executor": fast_executor_config(),
    }
    values.update(overrides)
    return AcceleratorConfig(**values)


class FakeBackend:
    """In-memory ``ProvisioningBackend`` that records every call.

    ``ids`` / ``attributes`` / ``errors`` are keyed by kind; ``describe``
    holds a script of responses per backend id, consumed in order with the
    last one repeating. An exception in the script is raised instead.
    """

    def __init__(
        self,
        *,
        ids: dict[str, str] | None = None,
        attributes: dict[str, dict[str, Any]] | None = None,
        describe: dict[str, list[Any]] | None = None,
        errors: dict[str, BaseException] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.ids = ids or {}
        self.attributes = attributes or {}
        self.describe_script = {k: list(v) for k, v in (describe or {}).items()}
        self.errors = errors or {}
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.describe_calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self._counter = itertools.count(1)

    async def create(self, kind: str, config: dict[str, Any]) -> CreatedResource:
        self.calls.append((str(kind), config))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if kind in self.errors:
                raise self.errors[kind]
            backend_id = self.ids.get(kind) or f"{kind}-{next(self._counter)}"
            return CreatedResource(backend_id, dict(self.attributes.get(kind, {})))
        finally:
            self.active -= 1

    async def describe(self, resource_id: str) -> dict[str, Any]:
        self.describe_calls.append(resource_id)
        script = self.describe_script.get(resource_id)
        if not script:
            raise ResourceNotFound(resource_id)
        response = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(response, BaseException):
            raise response
        return dict(response)

    @property
    def kinds_called(self) -> list[str]:
        return [kind for kind, _ in self.calls]

    def config_for(self, kind: str) -> dict[str, Any]:
        for called_kind, config in self.calls:
            if called_kind == kind:
                return config
        raise AssertionError(f"{kind} was never created")


_ELB = "arn:aws:elasticloadbalancing:us-east-1:1"


def stack_backend(**overrides: Any) -> FakeBackend:
    """Fake AWS-shaped backend for the full accelerator stack."""
    values: dict[str, Any] = {
        "ids": {
            "vpc": "vpc-0abc123",
            "vpc_endpoint": "vpce-0123",
            "network_interface": "eni-0456",
            "elastic_ip": "eipalloc-0789",
            "load_balancer": f"{_ELB}:loadbalancer/net/bedrock-nlb/1",
            "target_group": f"{_ELB}:targetgroup/bedrock/1",
            "listener": f"{_ELB}:listener/net/bedrock-nlb/1/2",
            "accelerator": "arn:aws:globalaccelerator::1:accelerator/abc",
        },
        "attributes": {
            "vpc": {"cidr_block": "10.0.0.0/16"},
            "vpc_endpoint": {"network_interface_ids": []},
            "elastic_ip": {"public_ip": "203.0.113.10"},
            "load_balancer": {"dns_name": "bedrock-nlb-1.elb.amazonaws.com"},
            "accelerator": {"dns_name": "a1234.awsglobalaccelerator.com"},
        },
        "describe": {
            "vpce-0123": [{"network_interface_ids": ["eni-0456", "eni-0999"]}],
            "eni-0456": [{"private_ip_address": "10.0.1.25"}],
        },
    }
    values.update(overrides)
    return FakeBackend(**values)
