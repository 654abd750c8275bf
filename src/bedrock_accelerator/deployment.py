"""Deployment orchestrator — primary stack, then the optional accelerator branch."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from bedrock_accelerator.config.models import AcceleratorConfig
from bedrock_accelerator.graph.resolver import ExecutionPlan, resolve_plan
from bedrock_accelerator.provisioning.backend import ProvisioningBackend
from bedrock_accelerator.provisioning.executor import ProvisioningExecutor
from bedrock_accelerator.provisioning.outputs import RunResult, unstarted_result
from bedrock_accelerator.stack.accelerator import (
    AbsentBranch,
    Branch,
    PresentBranch,
    build_accelerator_branch,
)
from bedrock_accelerator.stack.primary import build_primary_descriptors

logger = structlog.get_logger()


@dataclass(frozen=True)
class DeploymentPlan:
    """Both execution plans, resolved before any backend call is made."""

    primary: ExecutionPlan
    branch: ExecutionPlan | None = None

    @property
    def order(self) -> list[str]:
        return self.primary.order + (self.branch.order if self.branch else [])


def plan_deployment(config: AcceleratorConfig) -> DeploymentPlan:
    """Build and resolve every descriptor for *config*.

    Any ``MalformedDependency`` / ``CyclicDependency`` / ``UnknownDependency``
    surfaces here, with nothing provisioned yet.
    """
    primary = resolve_plan(build_primary_descriptors(config))
    branch = build_accelerator_branch(config)
    return plan_with_branch(primary, branch)


def plan_with_branch(primary: ExecutionPlan, branch: Branch) -> DeploymentPlan:
    """Attach *branch* to the primary plan; an absent branch leaves it alone."""
    if isinstance(branch, AbsentBranch):
        logger.info("deployment.branch_absent")
        return DeploymentPlan(primary)
    if isinstance(branch, PresentBranch):
        if branch.anchor not in primary:
            msg = f"branch anchor '{branch.anchor}' is not part of the primary plan"
            raise ValueError(msg)
        branch_plan = resolve_plan(branch.descriptors, provided=primary.order)
        primary = primary.exporting(branch_plan.external_placeholders())
        return DeploymentPlan(primary, branch_plan)
    msg = f"Unsupported branch variant: {branch!r}"
    raise TypeError(msg)


class Deployment:
    """Runs a ``DeploymentPlan`` through one executor.

    The branch only starts once every primary resource is READY; if the
    primary stack fails, the branch is never attempted and the run reports
    the primary failure.
    """

    def __init__(
        self,
        config: AcceleratorConfig,
        backend: ProvisioningBackend,
        plan: DeploymentPlan | None = None,
    ) -> None:
        self._config = config
        self._plan = plan or plan_deployment(config)
        self._executor = ProvisioningExecutor(backend, config.executor)

    @property
    def plan(self) -> DeploymentPlan:
        return self._plan

    async def run(self, cancel: asyncio.Event | None = None) -> RunResult:
        """Provision everything; never raises for resource-level failures.

        Call ``raise_for_failure()`` on the result to turn a partial run into
        ``ProvisioningFailed``.
        """
        result = await self._executor.execute(self._plan.primary, cancel=cancel)
        if self._plan.branch is None:
            return result

        if not result.succeeded:
            logger.warning(
                "deployment.branch_skipped",
                reason="primary stack incomplete",
                failed=result.failed,
            )
            return result.merge(unstarted_result(self._plan.branch))

        logger.info("deployment.branch_started", resources=self._plan.branch.order)
        branch_result = await self._executor.execute(
            self._plan.branch, seed=result.resolved, cancel=cancel
        )
        return result.merge(branch_result)

    async def deploy(self, cancel: asyncio.Event | None = None) -> RunResult:
        """Like ``run`` but raises ``ProvisioningFailed`` on any partial outcome."""
        result = await self.run(cancel)
        result.raise_for_failure()
        return result
