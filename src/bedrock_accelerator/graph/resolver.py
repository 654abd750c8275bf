"""Dependency resolution — descriptors in, deterministic execution plan out."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field

import structlog

from bedrock_accelerator.errors import (
    CyclicDependency,
    MalformedDependency,
    UnknownDependency,
)
from bedrock_accelerator.graph.descriptor import Pending, ResourceDescriptor

logger = structlog.get_logger()


@dataclass(frozen=True)
class ExecutionPlan:
    """Descriptors in creation order.

    Invariant: every id in a descriptor's ``depends_on`` is either earlier in
    ``order`` or listed in ``provided`` (already Ready from a previous plan).
    """

    descriptors: tuple[ResourceDescriptor, ...]
    provided: frozenset[str] = frozenset()
    # Field paths a later plan reads from resources of this one.
    exported: tuple[Pending, ...] = ()
    _by_id: dict[str, ResourceDescriptor] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_id", {d.id: d for d in self.descriptors})

    def external_placeholders(self) -> list[Pending]:
        """Placeholders that point at ``provided`` resources of an earlier plan."""
        return [
            p
            for d in self.descriptors
            for p in d.placeholders()
            if p.source_id in self.provided
        ]

    def exporting(self, placeholders: Iterable[Pending]) -> ExecutionPlan:
        """Return a copy that also resolves *placeholders* for a follow-up plan."""
        extra = tuple(placeholders)
        for p in extra:
            if p.source_id not in self:
                raise UnknownDependency("<follow-up plan>", p.source_id)
        return ExecutionPlan(
            self.descriptors, provided=self.provided, exported=self.exported + extra
        )

    @property
    def order(self) -> list[str]:
        return [d.id for d in self.descriptors]

    def __iter__(self) -> Iterator[ResourceDescriptor]:
        return iter(self.descriptors)

    def __len__(self) -> int:
        return len(self.descriptors)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._by_id

    def get(self, resource_id: str) -> ResourceDescriptor:
        return self._by_id[resource_id]

    def dependents(self, resource_id: str) -> list[ResourceDescriptor]:
        return [d for d in self.descriptors if resource_id in d.depends_on]

    def required_fields(self, resource_id: str) -> list[str]:
        """Field paths of *resource_id* that must be resolved before it is Ready.

        The union of every placeholder dependents hold against it, the
        resource's own declared outputs and anything exported to a follow-up
        plan, in first-seen order.
        """
        fields: dict[str, None] = {}
        for dependent in self.dependents(resource_id):
            for placeholder in dependent.placeholders():
                if placeholder.source_id == resource_id:
                    fields.setdefault(placeholder.field_path)
        for path in self.get(resource_id).outputs.values():
            fields.setdefault(path)
        for placeholder in self.exported:
            if placeholder.source_id == resource_id:
                fields.setdefault(placeholder.field_path)
        return list(fields)


def resolve_plan(
    descriptors: Iterable[ResourceDescriptor],
    *,
    provided: Iterable[str] = (),
) -> ExecutionPlan:
    """Topologically sort *descriptors* (Kahn), ties broken by declaration order.

    Raises ``UnknownDependency`` for dangling references, ``CyclicDependency``
    naming every cycle participant, ``MalformedDependency`` for duplicate ids.
    """
    declared = list(descriptors)
    available = frozenset(provided)

    index: dict[str, int] = {}
    for position, descriptor in enumerate(declared):
        if descriptor.id in index or descriptor.id in available:
            raise MalformedDependency(descriptor.id, "duplicate resource id")
        index[descriptor.id] = position

    for descriptor in declared:
        for dep in sorted(descriptor.depends_on):
            if dep not in index and dep not in available:
                raise UnknownDependency(descriptor.id, dep)

    in_degree = {
        d.id: sum(1 for dep in d.depends_on if dep not in available) for d in declared
    }
    dependents: dict[str, list[str]] = {d.id: [] for d in declared}
    for descriptor in declared:
        for dep in descriptor.depends_on:
            if dep not in available:
                dependents[dep].append(descriptor.id)

    # Ready set is always scanned in declaration order.
    ordered: list[ResourceDescriptor] = []
    ready = sorted(
        (rid for rid, deg in in_degree.items() if deg == 0), key=index.__getitem__
    )
    while ready:
        current = ready.pop(0)
        ordered.append(declared[index[current]])
        for child in dependents[current]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                ready.append(child)
        ready.sort(key=index.__getitem__)

    if len(ordered) != len(declared):
        remaining = {rid for rid, deg in in_degree.items() if deg > 0}
        participants = _cycle_participants(declared, remaining)
        raise CyclicDependency(sorted(participants, key=index.__getitem__))

    plan = ExecutionPlan(tuple(ordered), provided=available)
    logger.debug("resolver.plan_built", order=plan.order, provided=sorted(available))
    return plan


def _cycle_participants(
    declared: Sequence[ResourceDescriptor], remaining: set[str]
) -> set[str]:
    """Ids inside a cycle, excluding nodes that merely sit downstream of one.

    Tarjan's strongly connected components over the unresolved subgraph.
    """
    edges = {
        d.id: [dep for dep in d.depends_on if dep in remaining]
        for d in declared
        if d.id in remaining
    }
    counter = 0
    low: dict[str, int] = {}
    number: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    participants: set[str] = set()

    def strongconnect(node: str) -> None:
        nonlocal counter
        number[node] = low[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        for succ in edges[node]:
            if succ not in number:
                strongconnect(succ)
                low[node] = min(low[node], low[succ])
            elif succ in on_stack:
                low[node] = min(low[node], number[succ])
        if low[node] == number[node]:
            component = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == node:
                    break
            if len(component) > 1:
                participants.update(component)

    for node in edges:
        if node not in number:
            strongconnect(node)
    return participants
