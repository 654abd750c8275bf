"""Provisioning executor — drives an ExecutionPlan against a backend.

Each resource walks PENDING → CREATING → AWAITING_DISCOVERY → READY, or ends
in FAILED. A resource only starts once every dependency is READY, so a failure
stops the subtree below it while unrelated branches keep going. Nothing is
rolled back: resources that reached READY stay live and are reported.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

import structlog

from bedrock_accelerator.config.models import ExecutorConfig
from bedrock_accelerator.errors import InvariantViolation
from bedrock_accelerator.graph.descriptor import ID_FIELD, substitute
from bedrock_accelerator.graph.resolver import ExecutionPlan
from bedrock_accelerator.provisioning.backend import ProvisioningBackend
from bedrock_accelerator.provisioning.discovery import Discoverer, resolve_from
from bedrock_accelerator.provisioning.outputs import RunResult, collect_outputs
from bedrock_accelerator.provisioning.state import (
    DiscoveryQuery,
    ProvisioningState,
    ResolvedValue,
    ResourceState,
)

logger = structlog.get_logger()


class ProvisioningExecutor:
    """Runs execution plans; stateless between ``execute`` calls."""

    def __init__(
        self,
        backend: ProvisioningBackend,
        config: ExecutorConfig | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or ExecutorConfig()
        self._discoverer = Discoverer(backend, self._config.discovery)

    async def execute(
        self,
        plan: ExecutionPlan,
        *,
        seed: Iterable[ResolvedValue] = (),
        cancel: asyncio.Event | None = None,
    ) -> RunResult:
        """Provision every resource of *plan* and return the run result.

        *seed* carries values resolved by an earlier plan (the ``provided``
        ids). Once *cancel* is set no further resource starts; resources
        already in flight run to a terminal state.
        """
        state = ProvisioningState()
        for entry in seed:
            state.values.put(entry.source_id, entry.field_path, entry.value)
        for descriptor in plan:
            state.add(descriptor.id, descriptor.kind)

        in_flight: dict[asyncio.Task[None], str] = {}
        started: set[str] = set()
        limit = self._config.max_concurrency
        cancelled = False
        broken: InvariantViolation | None = None

        logger.info(
            "executor.run_started", resources=plan.order, max_concurrency=limit
        )

        while True:
            if cancel is not None and cancel.is_set() and not cancelled:
                cancelled = True
                logger.warning(
                    "executor.cancelled",
                    in_flight=sorted(in_flight.values()),
                    not_started=[r for r in plan.order if r not in started],
                )
            if not cancelled and broken is None:
                for resource_id in plan.order:
                    if len(in_flight) >= limit:
                        break
                    if resource_id in started or not self._runnable(
                        plan, state, resource_id
                    ):
                        continue
                    started.add(resource_id)
                    task = asyncio.create_task(
                        self._provision(plan, state, resource_id),
                        name=f"provision:{resource_id}",
                    )
                    in_flight[task] = resource_id

            if not in_flight:
                break

            waiters: set[asyncio.Task[Any]] = set(in_flight)
            cancel_waiter: asyncio.Task[Any] | None = None
            if cancel is not None and not cancelled:
                cancel_waiter = asyncio.create_task(cancel.wait())
                waiters.add(cancel_waiter)
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if cancel_waiter is not None and cancel_waiter not in done:
                cancel_waiter.cancel()
            for task in done:
                if task is cancel_waiter:
                    continue
                in_flight.pop(task)
                try:
                    task.result()
                except InvariantViolation as exc:
                    # Broken plan: start nothing else, let in-flight work settle.
                    if broken is None:
                        broken = exc
                        logger.error(
                            "executor.invariant_violated",
                            error=str(exc),
                            in_flight=sorted(in_flight.values()),
                        )

        result = collect_outputs(plan, state, cancelled=cancelled)
        if broken is not None:
            broken.result = result
            raise broken
        logger.info(
            "executor.run_finished",
            succeeded=result.succeeded,
            ready=result.ready,
            failed=result.failed,
            not_started=result.not_started,
        )
        return result

    @staticmethod
    def _runnable(
        plan: ExecutionPlan, state: ProvisioningState, resource_id: str
    ) -> bool:
        if state.state(resource_id) != ResourceState.PENDING:
            return False
        return all(
            dep in plan.provided or state.state(dep) == ResourceState.READY
            for dep in plan.get(resource_id).depends_on
        )

    async def _provision(
        self, plan: ExecutionPlan, state: ProvisioningState, resource_id: str
    ) -> None:
        descriptor = plan.get(resource_id)
        record = state.records[resource_id]
        log = logger.bind(resource_id=resource_id, kind=descriptor.kind)

        # A cache miss here means the plan ordering is broken; let it propagate.
        config = substitute(descriptor.config, state.values.lookup)

        state.transition(resource_id, ResourceState.CREATING)
        log.info("executor.creating")
        try:
            created = await self._backend.create(descriptor.kind, config)
        except Exception as exc:
            state.fail(resource_id, exc)
            log.error("executor.create_failed", error=str(exc))
            return
        record.backend_id = created.id

        required = plan.required_fields(resource_id)
        found, missing = resolve_from(created.id, created.attributes, required)
        # ``id`` is always known once created, dependents may rely on it
        # even when nothing else asks for it.
        found.setdefault(ID_FIELD, created.id)
        for path, value in found.items():
            state.values.put(resource_id, path, value)

        if missing:
            state.transition(resource_id, ResourceState.AWAITING_DISCOVERY)
            log.info(
                "executor.awaiting_discovery", backend_id=created.id, fields=missing
            )
            queries = [DiscoveryQuery(resource_id, path) for path in missing]
            try:
                discovered, attempts = await self._discoverer.discover(
                    resource_id, created.id, queries
                )
            except Exception as exc:
                record.discovery_attempts = getattr(exc, "attempts", 0)
                state.fail(resource_id, exc)
                log.error(
                    "executor.discovery_failed", backend_id=created.id, error=str(exc)
                )
                return
            record.discovery_attempts = attempts
            for path, value in discovered.items():
                state.values.put(resource_id, path, value)

        state.transition(resource_id, ResourceState.READY)
        log.info("executor.resource_ready", backend_id=created.id)
