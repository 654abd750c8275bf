"""Pydantic configuration models for the accelerator deployment."""

from __future__ import annotations

import re
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

_SUBNET_PATTERN = re.compile(r"^subnet-[0-9a-f]+$")
_VPC_PATTERN = re.compile(r"^vpc-[0-9a-f]+$")


class DiscoveryConfig(BaseModel):
    """Polling policy for attributes the backend assigns after creation."""

    max_attempts: int = Field(default=20, ge=1)
    initial_wait_seconds: float = Field(default=2.0, gt=0)
    max_wait_seconds: float = Field(default=30.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True
    jitter_seconds: float = Field(default=1.0, ge=0)
    # Bound on a single describe call, not on the whole discovery.
    query_timeout_seconds: float = Field(default=30.0, gt=0)


class ExecutorConfig(BaseModel):
    """Provisioning executor tuning."""

    # Independent resources created at the same time; keeps us under API rate limits.
    max_concurrency: int = Field(default=4, ge=1)
    discovery: DiscoveryConfig = DiscoveryConfig()


class AcceleratorConfig(BaseModel, extra="forbid"):
    """Deployment inputs — network placement, region and feature flags."""

    vpc_id: str
    public_subnet_ids: list[str] = Field(min_length=1)
    region: str = Field(min_length=1)
    # CIDR block (``10.0.0.0/8``) or security group id (``sg-…``) allowed
    # to reach the NLB.
    nlb_security_group: str = Field(min_length=1)
    enable_global_accelerator: bool = False
    accelerator_name: str = "bedrock-accelerator"
    service_port: int = Field(default=443, ge=1, le=65535)
    executor: ExecutorConfig = ExecutorConfig()

    @field_validator("vpc_id")
    @classmethod
    def validate_vpc_id(cls, v: str) -> str:
        v = v.strip()
        if not _VPC_PATTERN.match(v):
            msg = f"vpc_id '{v}' must look like 'vpc-0123abcd'"
            raise ValueError(msg)
        return v

    @field_validator("public_subnet_ids")
    @classmethod
    def validate_subnet_ids(cls, v: list[str]) -> list[str]:
        cleaned = [s.strip() for s in v if s.strip()]
        if not cleaned:
            msg = "public_subnet_ids must contain at least one subnet id"
            raise ValueError(msg)
        for subnet in cleaned:
            if not _SUBNET_PATTERN.match(subnet):
                msg = f"Subnet id '{subnet}' must look like 'subnet-0123abcd'"
                raise ValueError(msg)
        return cleaned

    @field_validator("region", "nlb_security_group")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            msg = "value must not be blank"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_discovery_bounds(self) -> Self:
        discovery = self.executor.discovery
        if discovery.initial_wait_seconds > discovery.max_wait_seconds:
            msg = "discovery.initial_wait_seconds must not exceed max_wait_seconds"
            raise ValueError(msg)
        return self

    @property
    def service_name(self) -> str:
        """Interface endpoint service for the Bedrock runtime in this region."""
        return f"com.amazonaws.{self.region}.bedrock-runtime"

    @property
    def primary_subnet_id(self) -> str:
        """The single subnet the endpoint and the NLB are placed in.

        Only the first configured subnet is used; the remaining ids are
        accepted but ignored (single-AZ placement).
        """
        return self.public_subnet_ids[0]
