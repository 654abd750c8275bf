"""Unit tests for discovery polling."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from bedrock_accelerator.config.models import DiscoveryConfig
from bedrock_accelerator.errors import BackendError, DiscoveryTimeout, ResourceNotFound
from bedrock_accelerator.provisioning.discovery import (
    MISSING,
    Discoverer,
    extract_field,
    resolve_from,
)
from bedrock_accelerator.provisioning.state import DiscoveryQuery

from .helpers import FAST_DISCOVERY, FakeBackend


class TestExtractField:
    def test_top_level(self):
        assert extract_field({"ip": "10.0.0.5"}, "ip") == "10.0.0.5"

    def test_nested_list_index(self):
        attrs = {"network_interface_ids": ["eni-1", "eni-2"]}
        assert extract_field(attrs, "network_interface_ids.0") == "eni-1"
        assert extract_field(attrs, "network_interface_ids.1") == "eni-2"

    def test_index_out_of_range_is_missing(self):
        assert extract_field({"ids": []}, "ids.0") is MISSING

    def test_none_and_empty_string_are_missing(self):
        assert extract_field({"ip": None}, "ip") is MISSING
        assert extract_field({"ip": ""}, "ip") is MISSING

    def test_path_through_scalar_is_missing(self):
        assert extract_field({"ip": "10.0.0.5"}, "ip.0") is MISSING

    def test_falsy_values_other_than_empty_are_kept(self):
        assert extract_field({"weight": 0}, "weight") == 0
        assert extract_field({"enabled": False}, "enabled") is False


class TestResolveFrom:
    def test_id_comes_from_backend_id(self):
        found, missing = resolve_from("a1", {}, ["id", "ip"])
        assert found == {"id": "a1"}
        assert missing == ["ip"]


def _queries(*paths: str) -> list[DiscoveryQuery]:
    return [DiscoveryQuery("a", p) for p in paths]


@pytest.mark.asyncio
class TestDiscoverer:
    async def test_resolves_on_first_attempt(self):
        backend = FakeBackend(describe={"a1": [{"ip": "10.0.0.5"}]})
        values, attempts = await Discoverer(backend, FAST_DISCOVERY).discover(
            "a", "a1", _queries("ip")
        )
        assert values == {"ip": "10.0.0.5"}
        assert attempts == 1

    async def test_retries_not_found_then_resolves(self):
        backend = FakeBackend(
            describe={"a1": [ResourceNotFound("a1"), {"ip": "10.0.0.5"}]}
        )
        values, attempts = await Discoverer(backend, FAST_DISCOVERY).discover(
            "a", "a1", _queries("ip")
        )
        assert values == {"ip": "10.0.0.5"}
        assert attempts == 2
        assert backend.describe_calls == ["a1", "a1"]

    async def test_transient_not_found_yields_same_value_as_immediate(self):
        immediate = FakeBackend(describe={"a1": [{"ip": "10.0.0.5"}]})
        delayed = FakeBackend(
            describe={
                "a1": [ResourceNotFound("a1"), {"ip": None}, {"ip": "10.0.0.5"}]
            }
        )
        first, _ = await Discoverer(immediate, FAST_DISCOVERY).discover(
            "a", "a1", _queries("ip")
        )
        second, attempts = await Discoverer(delayed, FAST_DISCOVERY).discover(
            "a", "a1", _queries("ip")
        )
        assert first == second == {"ip": "10.0.0.5"}
        assert attempts == 3

    async def test_partial_attributes_keep_polling_for_the_rest(self):
        backend = FakeBackend(
            describe={
                "a1": [
                    {"ip": "10.0.0.5"},
                    {"ip": "10.0.0.5", "dns_name": "a.example.com"},
                ]
            }
        )
        values, attempts = await Discoverer(backend, FAST_DISCOVERY).discover(
            "a", "a1", _queries("ip", "dns_name")
        )
        assert values == {"ip": "10.0.0.5", "dns_name": "a.example.com"}
        assert attempts == 2

    async def test_exhausted_budget_raises_discovery_timeout(self):
        backend = FakeBackend(describe={"a1": [{"ip": None}]})
        with pytest.raises(DiscoveryTimeout) as exc_info:
            await Discoverer(backend, FAST_DISCOVERY).discover(
                "a", "a1", _queries("ip")
            )
        assert exc_info.value.attempts == FAST_DISCOVERY.max_attempts
        assert exc_info.value.field_paths == ("ip",)
        assert len(backend.describe_calls) == FAST_DISCOVERY.max_attempts

    async def test_backend_error_is_not_retried(self):
        backend = FakeBackend(describe={"a1": [BackendError("UnauthorizedOperation")]})
        with pytest.raises(BackendError, match="UnauthorizedOperation"):
            await Discoverer(backend, FAST_DISCOVERY).discover(
                "a", "a1", _queries("ip")
            )
        assert backend.describe_calls == ["a1"]

    async def test_slow_describe_counts_as_failed_attempt(self):
        class SlowOnce(FakeBackend):
            async def describe(self, resource_id: str) -> dict[str, Any]:
                self.describe_calls.append(resource_id)
                if len(self.describe_calls) == 1:
                    await asyncio.sleep(1)
                return {"ip": "10.0.0.5"}

        config = FAST_DISCOVERY.model_copy(update={"query_timeout_seconds": 0.01})
        backend = SlowOnce()
        values, attempts = await Discoverer(backend, config).discover(
            "a", "a1", _queries("ip")
        )
        assert values == {"ip": "10.0.0.5"}
        assert attempts == 2


class TestDiscoveryConfig:
    def test_defaults(self):
        config = DiscoveryConfig()
        assert config.max_attempts == 20
        assert config.jitter is True

    def test_max_attempts_validation(self):
        with pytest.raises(ValueError):
            DiscoveryConfig(max_attempts=0)
