"""Per-run provisioning state: resource state machines and resolved values."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from bedrock_accelerator.errors import InvariantViolation
from bedrock_accelerator.graph.descriptor import Pending


class ResourceState(StrEnum):
    PENDING = "pending"
    CREATING = "creating"
    AWAITING_DISCOVERY = "awaiting_discovery"
    READY = "ready"
    FAILED = "failed"


_TRANSITIONS: dict[ResourceState, frozenset[ResourceState]] = {
    ResourceState.PENDING: frozenset({ResourceState.CREATING, ResourceState.FAILED}),
    ResourceState.CREATING: frozenset(
        {
            ResourceState.AWAITING_DISCOVERY,
            ResourceState.READY,
            ResourceState.FAILED,
        }
    ),
    ResourceState.AWAITING_DISCOVERY: frozenset(
        {ResourceState.READY, ResourceState.FAILED}
    ),
    ResourceState.READY: frozenset(),
    ResourceState.FAILED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class ResolvedValue:
    source_id: str
    field_path: str
    value: Any


@dataclass(frozen=True, slots=True)
class DiscoveryQuery:
    """How to read a runtime-assigned attribute off a created resource."""

    target_id: str
    field_path: str


class ResolvedValues:
    """Append-only cache of resolved attributes keyed by (source_id, field_path)."""

    def __init__(self, seed: Iterable[ResolvedValue] = ()) -> None:
        self._values: dict[tuple[str, str], ResolvedValue] = {}
        for entry in seed:
            self.put(entry.source_id, entry.field_path, entry.value)

    def put(self, source_id: str, field_path: str, value: Any) -> None:
        key = (source_id, field_path)
        if key in self._values:
            msg = f"{source_id}.{field_path} resolved twice"
            raise InvariantViolation(msg)
        self._values[key] = ResolvedValue(source_id, field_path, value)

    def has(self, source_id: str, field_path: str) -> bool:
        return (source_id, field_path) in self._values

    def get(self, source_id: str, field_path: str) -> Any:
        try:
            return self._values[(source_id, field_path)].value
        except KeyError:
            msg = f"{source_id}.{field_path} was not resolved before it was needed"
            raise InvariantViolation(msg) from None

    def lookup(self, placeholder: Pending) -> Any:
        return self.get(placeholder.source_id, placeholder.field_path)

    def __iter__(self) -> Iterator[ResolvedValue]:
        return iter(list(self._values.values()))

    def __len__(self) -> int:
        return len(self._values)


@dataclass
class ResourceRecord:
    """Run-scoped bookkeeping for a single descriptor."""

    resource_id: str
    kind: str
    state: ResourceState = ResourceState.PENDING
    backend_id: str | None = None
    error: BaseException | None = None
    discovery_attempts: int = 0


@dataclass
class ProvisioningState:
    """State machines plus resolved values for one executor run."""

    records: dict[str, ResourceRecord] = field(default_factory=dict)
    values: ResolvedValues = field(default_factory=ResolvedValues)
    # Resource ids in the order they failed.
    failures: list[str] = field(default_factory=list)

    def add(self, resource_id: str, kind: str) -> None:
        self.records[resource_id] = ResourceRecord(resource_id, kind)

    def state(self, resource_id: str) -> ResourceState:
        return self.records[resource_id].state

    def transition(self, resource_id: str, new: ResourceState) -> None:
        record = self.records[resource_id]
        if new not in _TRANSITIONS[record.state]:
            msg = f"{resource_id}: illegal transition {record.state} -> {new}"
            raise InvariantViolation(msg)
        record.state = new
        if new == ResourceState.FAILED:
            self.failures.append(resource_id)

    def fail(self, resource_id: str, error: BaseException) -> None:
        self.records[resource_id].error = error
        self.transition(resource_id, ResourceState.FAILED)

    def in_state(self, state: ResourceState) -> list[str]:
        return [rid for rid, r in self.records.items() if r.state == state]
