"""Optional Global Accelerator branch, as a present/absent variant."""

from __future__ import annotations

from dataclasses import dataclass

from bedrock_accelerator.config.models import AcceleratorConfig
from bedrock_accelerator.graph.descriptor import Pending, ResourceDescriptor
from bedrock_accelerator.stack.kinds import Kind
from bedrock_accelerator.stack.primary import LOAD_BALANCER

ACCELERATOR = "accelerator"
ACCELERATOR_LISTENER = "accelerator_listener"
ENDPOINT_GROUP = "endpoint_group"


@dataclass(frozen=True)
class AbsentBranch:
    """The accelerator is disabled; nothing is built or provisioned."""


@dataclass(frozen=True)
class PresentBranch:
    """The accelerator is enabled.

    ``anchor`` is the primary-stack resource the branch attaches to; it is
    Ready before the branch starts.
    """

    descriptors: tuple[ResourceDescriptor, ...]
    anchor: str = LOAD_BALANCER


Branch = AbsentBranch | PresentBranch


def build_accelerator_branch(config: AcceleratorConfig) -> Branch:
    """Build the accelerator branch, or ``AbsentBranch`` when the flag is off.

    Descriptors are only constructed when the flag is on.
    """
    if not config.enable_global_accelerator:
        return AbsentBranch()

    port = config.service_port
    descriptors = (
        ResourceDescriptor(
            id=ACCELERATOR,
            kind=Kind.ACCELERATOR,
            config={
                "name": config.accelerator_name,
                "enabled": True,
                "ip_address_type": "IPV4",
            },
            outputs={
                "GlobalAcceleratorArn": "id",
                "GlobalAcceleratorDnsName": "dns_name",
            },
        ),
        ResourceDescriptor(
            id=ACCELERATOR_LISTENER,
            kind=Kind.ACCELERATOR_LISTENER,
            config={
                "accelerator_arn": Pending(ACCELERATOR),
                "port_ranges": [{"from_port": port, "to_port": port}],
                "protocol": "TCP",
            },
            depends_on={ACCELERATOR},
        ),
        ResourceDescriptor(
            id=ENDPOINT_GROUP,
            kind=Kind.ENDPOINT_GROUP,
            config={
                "listener_arn": Pending(ACCELERATOR_LISTENER),
                "endpoint_group_region": config.region,
                "endpoint_configurations": [
                    {
                        "endpoint_id": Pending(LOAD_BALANCER),
                        "weight": 100,
                        "client_ip_preservation_enabled": False,
                    }
                ],
            },
            depends_on={ACCELERATOR_LISTENER, LOAD_BALANCER},
        ),
    )
    return PresentBranch(descriptors)
