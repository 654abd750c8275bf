"""Primary stack: private Bedrock endpoint published through an internet-facing NLB.

The chain that matters is endpoint → network interface discovery → target
registration → listener. The endpoint's ENI (and so its private IP) is
assigned by EC2 after the endpoint is acknowledged, which is why it is read
back through a discovery step instead of being taken from the create call.
"""

from __future__ import annotations

from bedrock_accelerator.config.models import AcceleratorConfig
from bedrock_accelerator.graph.descriptor import Pending, ResourceDescriptor
from bedrock_accelerator.stack.kinds import Kind

VPC = "vpc"
ENDPOINT_SECURITY_GROUP = "endpoint_security_group"
NLB_SECURITY_GROUP = "nlb_security_group"
ENDPOINT = "endpoint"
ENDPOINT_NETWORK_INTERFACE = "endpoint_network_interface"
ELASTIC_IP = "elastic_ip"
LOAD_BALANCER = "load_balancer"
TARGET_GROUP = "target_group"
TARGET_REGISTRATION = "target_registration"
LISTENER = "listener"

EIP_NAME_TAG = "BedrockAccelerator-NLB-EIP"


def ingress_source(reference: str) -> dict[str, str]:
    """Turn the configured NLB ingress reference into a rule source."""
    if reference.startswith("sg-"):
        return {"source_security_group_id": reference}
    return {"cidr": reference}


def build_primary_descriptors(config: AcceleratorConfig) -> list[ResourceDescriptor]:
    """Descriptors for the endpoint + NLB stack, in declaration order.

    Single-selection policy: the endpoint and the NLB are placed in the first
    configured subnet only, and only the endpoint's first network interface is
    registered as a target.
    """
    port = config.service_port
    subnet_id = config.primary_subnet_id

    return [
        ResourceDescriptor(
            id=VPC,
            kind=Kind.VPC,
            config={"vpc_id": config.vpc_id},
        ),
        ResourceDescriptor(
            id=ENDPOINT_SECURITY_GROUP,
            kind=Kind.SECURITY_GROUP,
            config={
                "vpc_id": Pending(VPC),
                "group_name": "bedrock-endpoint",
                "description": "Security group for Bedrock endpoint",
                "ingress": [
                    {
                        "protocol": "tcp",
                        "port": port,
                        "cidr": Pending(VPC, "cidr_block"),
                        "description": "Allow HTTPS traffic from VPC",
                    }
                ],
            },
            depends_on={VPC},
        ),
        ResourceDescriptor(
            id=NLB_SECURITY_GROUP,
            kind=Kind.SECURITY_GROUP,
            config={
                "vpc_id": Pending(VPC),
                "group_name": "bedrock-nlb",
                "description": "Security group for Bedrock NLB",
                "ingress": [
                    {
                        "protocol": "tcp",
                        "port": port,
                        **ingress_source(config.nlb_security_group),
                        "description": "Allow HTTPS traffic for Bedrock NLB",
                    }
                ],
            },
            depends_on={VPC},
        ),
        ResourceDescriptor(
            id=ENDPOINT,
            kind=Kind.VPC_ENDPOINT,
            config={
                "vpc_id": Pending(VPC),
                "service_name": config.service_name,
                "subnet_ids": [subnet_id],
                "security_group_ids": [Pending(ENDPOINT_SECURITY_GROUP)],
                "private_dns_enabled": False,
            },
            depends_on={VPC, ENDPOINT_SECURITY_GROUP},
            outputs={"VpcEndpointId": "id"},
        ),
        ResourceDescriptor(
            id=ENDPOINT_NETWORK_INTERFACE,
            kind=Kind.NETWORK_INTERFACE,
            config={
                "network_interface_id": Pending(ENDPOINT, "network_interface_ids.0"),
            },
            depends_on={ENDPOINT},
            outputs={"EndpointPrivateIp": "private_ip_address"},
        ),
        ResourceDescriptor(
            id=ELASTIC_IP,
            kind=Kind.ELASTIC_IP,
            config={
                "domain": "vpc",
                "tags": {"Name": EIP_NAME_TAG},
            },
            outputs={"ElasticIp": "public_ip"},
        ),
        ResourceDescriptor(
            id=LOAD_BALANCER,
            kind=Kind.LOAD_BALANCER,
            config={
                "name": "bedrock-nlb",
                "type": "network",
                "scheme": "internet-facing",
                "security_group_ids": [Pending(NLB_SECURITY_GROUP)],
                "subnet_mappings": [
                    {"subnet_id": subnet_id, "allocation_id": Pending(ELASTIC_IP)}
                ],
            },
            depends_on={NLB_SECURITY_GROUP, ELASTIC_IP},
            outputs={"LoadBalancerArn": "id", "LoadBalancerDNS": "dns_name"},
        ),
        ResourceDescriptor(
            id=TARGET_GROUP,
            kind=Kind.TARGET_GROUP,
            config={
                "name": "bedrock-endpoint-targets",
                "vpc_id": Pending(VPC),
                "port": port,
                "protocol": "TCP",
                "target_type": "ip",
                "health_check": {"enabled": True, "protocol": "TCP"},
            },
            depends_on={VPC},
        ),
        ResourceDescriptor(
            id=TARGET_REGISTRATION,
            kind=Kind.TARGET_REGISTRATION,
            config={
                "target_group_arn": Pending(TARGET_GROUP),
                "targets": [
                    {
                        "id": Pending(ENDPOINT_NETWORK_INTERFACE, "private_ip_address"),
                        "port": port,
                    }
                ],
            },
            depends_on={TARGET_GROUP, ENDPOINT_NETWORK_INTERFACE},
        ),
        ResourceDescriptor(
            id=LISTENER,
            kind=Kind.LISTENER,
            config={
                "load_balancer_arn": Pending(LOAD_BALANCER),
                "port": port,
                "protocol": "TCP",
                "default_actions": [
                    {"type": "forward", "target_group_arn": Pending(TARGET_GROUP)}
                ],
            },
            # Attach only once the endpoint IP is registered.
            depends_on={LOAD_BALANCER, TARGET_GROUP, TARGET_REGISTRATION},
        ),
    ]
