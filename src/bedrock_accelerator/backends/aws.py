"""AWS provisioning backend — EC2, ELBv2 and Global Accelerator through boto3.

boto3 is synchronous; every call is pushed to the default thread pool so the
executor can keep several independent resources in flight.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from typing import Any

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from bedrock_accelerator.errors import BackendError, ResourceNotFound
from bedrock_accelerator.provisioning.backend import CreatedResource
from bedrock_accelerator.stack.kinds import Kind

logger = structlog.get_logger()

# The Global Accelerator control plane only lives in us-west-2.
GLOBAL_ACCELERATOR_REGION = "us-west-2"

REGISTRATION_PREFIX = "registration:"


def _is_not_found(code: str) -> bool:
    return code.endswith(("NotFound", "NotFoundException")) or ".NotFound" in code


def _translate(exc: ClientError, resource_id: str | None = None) -> BackendError:
    error = exc.response.get("Error", {})
    code = str(error.get("Code", "Unknown"))
    message = str(error.get("Message", exc))
    if resource_id is not None and _is_not_found(code):
        return ResourceNotFound(resource_id, message)
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if code == "Unknown" and status:
        code = str(status)
    return BackendError(code, message)


def _tags(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def _ip_permission(rule: dict[str, Any]) -> dict[str, Any]:
    permission: dict[str, Any] = {
        "IpProtocol": rule.get("protocol", "tcp"),
        "FromPort": rule["port"],
        "ToPort": rule["port"],
    }
    description = rule.get("description", "")
    if "source_security_group_id" in rule:
        permission["UserIdGroupPairs"] = [
            {"GroupId": rule["source_security_group_id"], "Description": description}
        ]
    else:
        permission["IpRanges"] = [{"CidrIp": rule["cidr"], "Description": description}]
    return permission


class AwsBackend:
    """``ProvisioningBackend`` over the AWS APIs the accelerator stack needs."""

    def __init__(self, region: str, session: Any | None = None) -> None:
        self._region = region
        self._session = session
        self._clients: dict[str, Any] = {}

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            if self._session is None:
                import boto3

                self._session = boto3.session.Session()
            region = (
                GLOBAL_ACCELERATOR_REGION
                if service == "globalaccelerator"
                else self._region
            )
            self._clients[service] = self._session.client(service, region_name=region)
        return self._clients[service]

    async def _call(
        self,
        service: str,
        operation: str,
        resource_id: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        client = self._client(service)
        method: Callable[..., dict[str, Any]] = getattr(client, operation)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: method(**kwargs))
        except ClientError as exc:
            raise _translate(exc, resource_id) from exc
        except BotoCoreError as exc:
            raise BackendError("Transport", str(exc)) from exc

    # -- create ----------------------------------------------------------------

    async def create(self, kind: str, config: dict[str, Any]) -> CreatedResource:
        handler = getattr(self, f"_create_{Kind(kind).value}")
        created: CreatedResource = await handler(config)
        logger.info("aws_backend.created", kind=str(kind), resource_id=created.id)
        return created

    async def _create_vpc(self, config: dict[str, Any]) -> CreatedResource:
        # Existing VPC, looked up rather than created.
        vpc_id = config["vpc_id"]
        return CreatedResource(vpc_id, await self._describe_vpc(vpc_id))

    async def _create_security_group(self, config: dict[str, Any]) -> CreatedResource:
        resp = await self._call(
            "ec2",
            "create_security_group",
            GroupName=f"{config['group_name']}-{uuid.uuid4().hex[:8]}",
            Description=config["description"],
            VpcId=config["vpc_id"],
        )
        group_id = resp["GroupId"]
        rules = config.get("ingress", [])
        if rules:
            await self._call(
                "ec2",
                "authorize_security_group_ingress",
                GroupId=group_id,
                IpPermissions=[_ip_permission(rule) for rule in rules],
            )
        return CreatedResource(group_id, {"vpc_id": config["vpc_id"]})

    async def _create_vpc_endpoint(self, config: dict[str, Any]) -> CreatedResource:
        resp = await self._call(
            "ec2",
            "create_vpc_endpoint",
            VpcEndpointType="Interface",
            VpcId=config["vpc_id"],
            ServiceName=config["service_name"],
            SubnetIds=config["subnet_ids"],
            SecurityGroupIds=config["security_group_ids"],
            PrivateDnsEnabled=config.get("private_dns_enabled", False),
        )
        endpoint = resp["VpcEndpoint"]
        return CreatedResource(
            endpoint["VpcEndpointId"], _endpoint_attributes(endpoint)
        )

    async def _create_network_interface(
        self, config: dict[str, Any]
    ) -> CreatedResource:
        # Interface owned by the endpoint; nothing to create, only to discover.
        return CreatedResource(config["network_interface_id"])

    async def _create_elastic_ip(self, config: dict[str, Any]) -> CreatedResource:
        resp = await self._call(
            "ec2",
            "allocate_address",
            Domain=config.get("domain", "vpc"),
            TagSpecifications=[
                {"ResourceType": "elastic-ip", "Tags": _tags(config.get("tags", {}))}
            ],
        )
        return CreatedResource(
            resp["AllocationId"], {"public_ip": resp.get("PublicIp")}
        )

    async def _create_load_balancer(self, config: dict[str, Any]) -> CreatedResource:
        resp = await self._call(
            "elbv2",
            "create_load_balancer",
            Name=config["name"],
            Type=config.get("type", "network"),
            Scheme=config.get("scheme", "internet-facing"),
            SecurityGroups=config.get("security_group_ids", []),
            SubnetMappings=[
                {"SubnetId": m["subnet_id"], "AllocationId": m["allocation_id"]}
                for m in config["subnet_mappings"]
            ],
        )
        lb = resp["LoadBalancers"][0]
        return CreatedResource(lb["LoadBalancerArn"], _load_balancer_attributes(lb))

    async def _create_target_group(self, config: dict[str, Any]) -> CreatedResource:
        health = config.get("health_check", {})
        resp = await self._call(
            "elbv2",
            "create_target_group",
            Name=config["name"],
            Protocol=config["protocol"],
            Port=config["port"],
            VpcId=config["vpc_id"],
            TargetType=config.get("target_type", "ip"),
            HealthCheckEnabled=health.get("enabled", True),
            HealthCheckProtocol=health.get("protocol", "TCP"),
        )
        tg = resp["TargetGroups"][0]
        return CreatedResource(
            tg["TargetGroupArn"], {"name": tg.get("TargetGroupName")}
        )

    async def _create_target_registration(
        self, config: dict[str, Any]
    ) -> CreatedResource:
        targets = [{"Id": t["id"], "Port": t["port"]} for t in config["targets"]]
        await self._call(
            "elbv2",
            "register_targets",
            TargetGroupArn=config["target_group_arn"],
            Targets=targets,
        )
        return CreatedResource(
            f"{REGISTRATION_PREFIX}{config['target_group_arn']}",
            {"targets": [t["id"] for t in config["targets"]]},
        )

    async def _create_listener(self, config: dict[str, Any]) -> CreatedResource:
        resp = await self._call(
            "elbv2",
            "create_listener",
            LoadBalancerArn=config["load_balancer_arn"],
            Protocol=config["protocol"],
            Port=config["port"],
            DefaultActions=[
                {"Type": a["type"], "TargetGroupArn": a["target_group_arn"]}
                for a in config["default_actions"]
            ],
        )
        listener = resp["Listeners"][0]
        return CreatedResource(listener["ListenerArn"], {"port": listener.get("Port")})

    async def _create_accelerator(self, config: dict[str, Any]) -> CreatedResource:
        resp = await self._call(
            "globalaccelerator",
            "create_accelerator",
            Name=config["name"],
            IpAddressType=config.get("ip_address_type", "IPV4"),
            Enabled=config.get("enabled", True),
            IdempotencyToken=str(uuid.uuid4()),
        )
        accelerator = resp["Accelerator"]
        return CreatedResource(
            accelerator["AcceleratorArn"], _accelerator_attributes(accelerator)
        )

    async def _create_accelerator_listener(
        self, config: dict[str, Any]
    ) -> CreatedResource:
        resp = await self._call(
            "globalaccelerator",
            "create_listener",
            AcceleratorArn=config["accelerator_arn"],
            PortRanges=[
                {"FromPort": r["from_port"], "ToPort": r["to_port"]}
                for r in config["port_ranges"]
            ],
            Protocol=config.get("protocol", "TCP"),
            IdempotencyToken=str(uuid.uuid4()),
        )
        return CreatedResource(resp["Listener"]["ListenerArn"])

    async def _create_endpoint_group(self, config: dict[str, Any]) -> CreatedResource:
        resp = await self._call(
            "globalaccelerator",
            "create_endpoint_group",
            ListenerArn=config["listener_arn"],
            EndpointGroupRegion=config["endpoint_group_region"],
            EndpointConfigurations=[
                {
                    "EndpointId": e["endpoint_id"],
                    "Weight": e.get("weight", 100),
                    "ClientIPPreservationEnabled": e.get(
                        "client_ip_preservation_enabled", False
                    ),
                }
                for e in config["endpoint_configurations"]
            ],
            IdempotencyToken=str(uuid.uuid4()),
        )
        return CreatedResource(resp["EndpointGroup"]["EndpointGroupArn"])

    # -- describe --------------------------------------------------------------

    async def describe(self, resource_id: str) -> dict[str, Any]:
        if resource_id.startswith(REGISTRATION_PREFIX):
            return await self._describe_registration(resource_id)
        if resource_id.startswith("vpc-"):
            return await self._describe_vpc(resource_id)
        if resource_id.startswith("vpce-"):
            resp = await self._call(
                "ec2",
                "describe_vpc_endpoints",
                resource_id,
                VpcEndpointIds=[resource_id],
            )
            return _endpoint_attributes(self._single(resp, "VpcEndpoints", resource_id))
        if resource_id.startswith("eni-"):
            resp = await self._call(
                "ec2",
                "describe_network_interfaces",
                resource_id,
                NetworkInterfaceIds=[resource_id],
            )
            eni = self._single(resp, "NetworkInterfaces", resource_id)
            return {
                "private_ip_address": eni.get("PrivateIpAddress"),
                "subnet_id": eni.get("SubnetId"),
                "status": eni.get("Status"),
            }
        if resource_id.startswith("eipalloc-"):
            resp = await self._call(
                "ec2", "describe_addresses", resource_id, AllocationIds=[resource_id]
            )
            address = self._single(resp, "Addresses", resource_id)
            return {"public_ip": address.get("PublicIp")}
        if resource_id.startswith("sg-"):
            resp = await self._call(
                "ec2", "describe_security_groups", resource_id, GroupIds=[resource_id]
            )
            group = self._single(resp, "SecurityGroups", resource_id)
            return {"vpc_id": group.get("VpcId")}
        if ":globalaccelerator::" in resource_id:
            return await self._describe_global_accelerator(resource_id)
        if ":loadbalancer/" in resource_id:
            resp = await self._call(
                "elbv2",
                "describe_load_balancers",
                resource_id,
                LoadBalancerArns=[resource_id],
            )
            return _load_balancer_attributes(
                self._single(resp, "LoadBalancers", resource_id)
            )
        if ":targetgroup/" in resource_id:
            resp = await self._call(
                "elbv2",
                "describe_target_groups",
                resource_id,
                TargetGroupArns=[resource_id],
            )
            tg = self._single(resp, "TargetGroups", resource_id)
            return {"name": tg.get("TargetGroupName")}
        if ":listener/" in resource_id:
            resp = await self._call(
                "elbv2", "describe_listeners", resource_id, ListenerArns=[resource_id]
            )
            listener = self._single(resp, "Listeners", resource_id)
            return {"port": listener.get("Port")}
        msg = f"Don't know how to describe '{resource_id}'"
        raise BackendError("UnsupportedResource", msg)

    @staticmethod
    def _single(resp: dict[str, Any], key: str, resource_id: str) -> dict[str, Any]:
        items = resp.get(key) or []
        if not items:
            raise ResourceNotFound(resource_id)
        return items[0]  # type: ignore[no-any-return]

    async def _describe_vpc(self, vpc_id: str) -> dict[str, Any]:
        resp = await self._call("ec2", "describe_vpcs", vpc_id, VpcIds=[vpc_id])
        vpc = self._single(resp, "Vpcs", vpc_id)
        return {"cidr_block": vpc.get("CidrBlock"), "state": vpc.get("State")}

    async def _describe_registration(self, resource_id: str) -> dict[str, Any]:
        arn = resource_id.removeprefix(REGISTRATION_PREFIX)
        resp = await self._call(
            "elbv2", "describe_target_health", resource_id, TargetGroupArn=arn
        )
        return {
            "targets": [
                d["Target"]["Id"] for d in resp.get("TargetHealthDescriptions", [])
            ]
        }

    async def _describe_global_accelerator(self, arn: str) -> dict[str, Any]:
        if "/endpoint-group/" in arn:
            resp = await self._call(
                "globalaccelerator",
                "describe_endpoint_group",
                arn,
                EndpointGroupArn=arn,
            )
            group = resp["EndpointGroup"]
            return {"region": group.get("EndpointGroupRegion")}
        if "/listener/" in arn:
            resp = await self._call(
                "globalaccelerator", "describe_listener", arn, ListenerArn=arn
            )
            return {"protocol": resp["Listener"].get("Protocol")}
        resp = await self._call(
            "globalaccelerator", "describe_accelerator", arn, AcceleratorArn=arn
        )
        return _accelerator_attributes(resp["Accelerator"])


def _endpoint_attributes(endpoint: dict[str, Any]) -> dict[str, Any]:
    return {
        "state": endpoint.get("State"),
        "network_interface_ids": list(endpoint.get("NetworkInterfaceIds") or []),
        "dns_entries": [
            e.get("DnsName")
            for e in endpoint.get("DnsEntries") or []
            if e.get("DnsName")
        ],
    }


def _load_balancer_attributes(lb: dict[str, Any]) -> dict[str, Any]:
    return {
        "dns_name": lb.get("DNSName"),
        "state": (lb.get("State") or {}).get("Code"),
    }


def _accelerator_attributes(accelerator: dict[str, Any]) -> dict[str, Any]:
    ip_sets = accelerator.get("IpSets") or []
    return {
        "dns_name": accelerator.get("DnsName"),
        "status": accelerator.get("Status"),
        "ip_addresses": [ip for s in ip_sets for ip in s.get("IpAddresses", [])],
    }
