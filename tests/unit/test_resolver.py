"""Unit tests for the dependency resolver."""

from __future__ import annotations

import random

import pytest

from bedrock_accelerator.errors import (
    CyclicDependency,
    MalformedDependency,
    UnknownDependency,
)
from bedrock_accelerator.graph.descriptor import Pending, ResourceDescriptor
from bedrock_accelerator.graph.resolver import ExecutionPlan, resolve_plan


def _d(rid: str, *deps: str) -> ResourceDescriptor:
    return ResourceDescriptor(id=rid, kind=rid.upper(), depends_on=set(deps))


def _assert_topological(plan: ExecutionPlan) -> None:
    seen: set[str] = set(plan.provided)
    for descriptor in plan:
        assert descriptor.depends_on <= seen, descriptor.id
        seen.add(descriptor.id)


def random_descriptors(rng: random.Random, size: int) -> list[ResourceDescriptor]:
    """Acyclic descriptors in shuffled declaration order."""
    ids = [f"r{i}" for i in range(size)]
    descriptors = []
    for position, rid in enumerate(ids):
        deps = {d for d in ids[:position] if rng.random() < 0.3}
        descriptors.append(_d(rid, *deps))
    rng.shuffle(descriptors)
    return descriptors


class TestOrdering:
    def test_dependencies_come_first(self):
        plan = resolve_plan([_d("c", "b"), _d("b", "a"), _d("a")])
        assert plan.order == ["a", "b", "c"]

    def test_ties_follow_declaration_order(self):
        plan = resolve_plan([_d("z"), _d("m"), _d("a"), _d("x", "a")])
        assert plan.order == ["z", "m", "a", "x"]

    def test_released_node_sorted_by_declaration_position(self):
        # "b" is released by "a" and then competes with "c" on position.
        assert resolve_plan([_d("a"), _d("c"), _d("b", "a")]).order == ["a", "c", "b"]
        assert resolve_plan([_d("a"), _d("b", "a"), _d("c")]).order == ["a", "b", "c"]

    def test_diamond(self):
        plan = resolve_plan(
            [
                _d("top"),
                _d("left", "top"),
                _d("right", "top"),
                _d("bottom", "left", "right"),
            ]
        )
        assert plan.order == ["top", "left", "right", "bottom"]

    def test_empty_input(self):
        assert resolve_plan([]).order == []

    def test_random_graphs_are_topological_and_deterministic(self):
        rng = random.Random(1234)
        for _ in range(200):
            descriptors = random_descriptors(rng, rng.randint(1, 15))
            plan = resolve_plan(descriptors)
            _assert_topological(plan)
            assert len(plan) == len(descriptors)
            assert resolve_plan(descriptors).order == plan.order


class TestFailures:
    def test_two_node_cycle_names_both(self):
        with pytest.raises(CyclicDependency) as exc_info:
            resolve_plan([_d("a", "b"), _d("b", "a")])
        assert set(exc_info.value.participants) == {"a", "b"}

    def test_cycle_excludes_downstream_and_unrelated_nodes(self):
        descriptors = [
            _d("root"),
            _d("x", "root", "z"),
            _d("y", "x"),
            _d("z", "y"),
            _d("tail", "z"),
        ]
        with pytest.raises(CyclicDependency) as exc_info:
            resolve_plan(descriptors)
        assert set(exc_info.value.participants) == {"x", "y", "z"}

    def test_two_disjoint_cycles_are_both_reported(self):
        descriptors = [_d("a", "b"), _d("b", "a"), _d("c", "d"), _d("d", "c")]
        with pytest.raises(CyclicDependency) as exc_info:
            resolve_plan(descriptors)
        assert set(exc_info.value.participants) == {"a", "b", "c", "d"}

    def test_random_cycles_always_raise(self):
        rng = random.Random(99)
        for _ in range(100):
            size = rng.randint(2, 8)
            ring = [f"n{i}" for i in range(size)]
            descriptors = [_d(rid, ring[(i + 1) % size]) for i, rid in enumerate(ring)]
            descriptors.append(_d("free"))
            rng.shuffle(descriptors)
            with pytest.raises(CyclicDependency) as exc_info:
                resolve_plan(descriptors)
            assert set(exc_info.value.participants) == set(ring)

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependency) as exc_info:
            resolve_plan([_d("a"), _d("b", "ghost")])
        assert exc_info.value.resource_id == "b"
        assert exc_info.value.missing == "ghost"

    def test_duplicate_ids(self):
        with pytest.raises(MalformedDependency, match="duplicate"):
            resolve_plan([_d("a"), _d("a")])


class TestProvided:
    def test_provided_ids_satisfy_dependencies(self):
        plan = resolve_plan([_d("b", "a")], provided=["a"])
        assert plan.order == ["b"]
        assert plan.provided == frozenset({"a"})

    def test_provided_id_cannot_be_redeclared(self):
        with pytest.raises(MalformedDependency):
            resolve_plan([_d("a")], provided=["a"])


class TestRequiredFields:
    def test_union_of_dependent_placeholders_and_outputs(self):
        a = ResourceDescriptor(id="a", kind="A", outputs={"AName": "name"})
        b = ResourceDescriptor(
            id="b", kind="B", config={"ip": Pending("a", "ip")}, depends_on={"a"}
        )
        c = ResourceDescriptor(
            id="c",
            kind="C",
            config={"ip": Pending("a", "ip"), "ref": Pending("a")},
            depends_on={"a"},
        )
        plan = resolve_plan([a, b, c])
        assert plan.required_fields("a") == ["ip", "id", "name"]
        assert plan.required_fields("c") == []

    def test_exporting_adds_follow_up_requirements(self):
        plan = resolve_plan([_d("a")]).exporting([Pending("a", "dns_name")])
        assert plan.required_fields("a") == ["dns_name"]

    def test_exporting_unknown_source_raises(self):
        with pytest.raises(UnknownDependency):
            resolve_plan([_d("a")]).exporting([Pending("b")])

    def test_external_placeholders(self):
        b = ResourceDescriptor(
            id="b", kind="B", config={"lb": Pending("a")}, depends_on={"a"}
        )
        plan = resolve_plan([b], provided=["a"])
        assert plan.external_placeholders() == [Pending("a")]
