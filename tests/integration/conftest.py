"""Fixtures for integration tests against a real AWS account.

Read-only: the tests only describe resources that already exist. Point them
at an account with ``VPC_ID`` and ``AWS_REGION`` set in the environment.
"""

from __future__ import annotations

import os

import pytest

from bedrock_accelerator.backends.aws import AwsBackend


@pytest.fixture(scope="session")
def vpc_id() -> str:
    value = os.environ.get("VPC_ID")
    if not value:
        pytest.skip("VPC_ID not set")
    return value


@pytest.fixture(scope="session")
def aws_backend() -> AwsBackend:
    region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")
    if not region:
        pytest.skip("AWS_REGION not set")
    return AwsBackend(region)
