"""Resource kinds understood by the backends."""

from __future__ import annotations

from enum import StrEnum


class Kind(StrEnum):
    VPC = "vpc"
    SECURITY_GROUP = "security_group"
    VPC_ENDPOINT = "vpc_endpoint"
    NETWORK_INTERFACE = "network_interface"
    ELASTIC_IP = "elastic_ip"
    LOAD_BALANCER = "load_balancer"
    TARGET_GROUP = "target_group"
    TARGET_REGISTRATION = "target_registration"
    LISTENER = "listener"
    ACCELERATOR = "accelerator"
    ACCELERATOR_LISTENER = "accelerator_listener"
    ENDPOINT_GROUP = "endpoint_group"


ACCELERATOR_KINDS = frozenset(
    {Kind.ACCELERATOR, Kind.ACCELERATOR_LISTENER, Kind.ENDPOINT_GROUP}
)
