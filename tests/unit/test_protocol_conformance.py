"""Protocol conformance tests — verify all backends satisfy ProvisioningBackend."""

from __future__ import annotations

from unittest.mock import MagicMock

from bedrock_accelerator.backends.aws import AwsBackend
from bedrock_accelerator.provisioning.backend import ProvisioningBackend

from .helpers import FakeBackend


class TestProtocolConformance:
    def test_aws_backend_satisfies_provisioning_backend(self):
        backend = AwsBackend("us-east-1", session=MagicMock())
        assert isinstance(backend, ProvisioningBackend)

    def test_fake_backend_satisfies_provisioning_backend(self):
        assert isinstance(FakeBackend(), ProvisioningBackend)

    def test_plain_object_does_not(self):
        assert not isinstance(object(), ProvisioningBackend)
