"""Output collection — what a run leaves behind, for presentation or remediation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bedrock_accelerator.errors import ProvisioningFailed, RunCancelled
from bedrock_accelerator.provisioning.state import (
    ProvisioningState,
    ResolvedValue,
    ResourceState,
)

if TYPE_CHECKING:
    from bedrock_accelerator.graph.resolver import ExecutionPlan


@dataclass
class ResourceReport:
    resource_id: str
    kind: str
    state: ResourceState
    backend_id: str | None = None
    error: BaseException | None = None


@dataclass
class RunResult:
    """Outcome of one plan execution (or of a whole deployment when merged).

    ``outputs`` maps logical output names to resolved values and
    ``resources`` maps descriptor ids to backend ids; both only cover
    resources that reached READY. A missing entry is the failure signal.
    """

    outputs: dict[str, Any] = field(default_factory=dict)
    resources: dict[str, str] = field(default_factory=dict)
    reports: list[ResourceReport] = field(default_factory=list)
    resolved: list[ResolvedValue] = field(default_factory=list)
    failure_order: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ready(self) -> list[str]:
        return [r.resource_id for r in self.reports if r.state == ResourceState.READY]

    @property
    def failed(self) -> list[str]:
        return list(self.failure_order)

    @property
    def not_started(self) -> list[str]:
        return [r.resource_id for r in self.reports if r.state == ResourceState.PENDING]

    @property
    def succeeded(self) -> bool:
        return all(r.state == ResourceState.READY for r in self.reports)

    @property
    def live_resources(self) -> dict[str, str]:
        """Every resource the backend holds after this run, including failed ones.

        A resource that failed during discovery was still created and needs
        manual cleanup just like a READY one.
        """
        return {r.resource_id: r.backend_id for r in self.reports if r.backend_id}

    def report(self, resource_id: str) -> ResourceReport:
        for r in self.reports:
            if r.resource_id == resource_id:
                return r
        raise KeyError(resource_id)

    def first_failure(self) -> ProvisioningFailed | None:
        """The first resource-level failure as a ``ProvisioningFailed``, if any."""
        if self.failure_order:
            first = self.report(self.failure_order[0])
            assert first.error is not None
            return ProvisioningFailed(first.resource_id, first.error, self)
        if not self.succeeded:
            blocked = next(
                r.resource_id for r in self.reports if r.state != ResourceState.READY
            )
            return ProvisioningFailed(
                blocked, RunCancelled("run cancelled before completion"), self
            )
        return None

    def raise_for_failure(self) -> None:
        """Raise ``ProvisioningFailed`` unless every resource is READY."""
        failure = self.first_failure()
        if failure is not None:
            raise failure

    def merge(self, other: RunResult) -> RunResult:
        """Combine the primary and a follow-up result into one deployment view."""
        return RunResult(
            outputs={**self.outputs, **other.outputs},
            resources={**self.resources, **other.resources},
            reports=[*self.reports, *other.reports],
            resolved=[*self.resolved, *other.resolved],
            failure_order=[*self.failure_order, *other.failure_order],
            cancelled=self.cancelled or other.cancelled,
        )


def collect_outputs(
    plan: ExecutionPlan, state: ProvisioningState, *, cancelled: bool = False
) -> RunResult:
    """Build the run result from the executor's final state."""
    result = RunResult(failure_order=list(state.failures), cancelled=cancelled)
    for descriptor in plan:
        record = state.records[descriptor.id]
        result.reports.append(
            ResourceReport(
                resource_id=descriptor.id,
                kind=descriptor.kind,
                state=record.state,
                backend_id=record.backend_id,
                error=record.error,
            )
        )
        if record.state != ResourceState.READY:
            continue
        assert record.backend_id is not None
        result.resources[descriptor.id] = record.backend_id
        for name, path in descriptor.outputs.items():
            result.outputs[name] = state.values.get(descriptor.id, path)

    provided = plan.provided
    result.resolved = [v for v in state.values if v.source_id not in provided]
    return result


def unstarted_result(plan: ExecutionPlan) -> RunResult:
    """Result for a plan that was never handed to the executor."""
    return RunResult(
        reports=[
            ResourceReport(d.id, d.kind, ResourceState.PENDING) for d in plan
        ]
    )
