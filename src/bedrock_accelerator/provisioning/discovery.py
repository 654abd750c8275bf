"""Discovery queries — polling created resources for late-assigned attributes."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from bedrock_accelerator.config.models import DiscoveryConfig
from bedrock_accelerator.errors import DiscoveryTimeout, ResourceNotFound
from bedrock_accelerator.graph.descriptor import ID_FIELD
from bedrock_accelerator.provisioning.backend import ProvisioningBackend
from bedrock_accelerator.provisioning.state import DiscoveryQuery

logger = structlog.get_logger()

MISSING: Any = object()


class AttributePending(Exception):
    """The resource exists but some requested attributes are not populated yet."""

    def __init__(self, field_paths: Sequence[str]) -> None:
        self.field_paths = tuple(field_paths)
        super().__init__(", ".join(self.field_paths))


def extract_field(attributes: Mapping[str, Any], field_path: str) -> Any:
    """Follow a dotted path through nested mappings/lists.

    Integer segments index lists. Returns ``MISSING`` when any segment is
    absent, ``None`` or an empty string — an attribute the backend has not
    filled in yet looks the same as one that does not exist.
    """
    current: Any = attributes
    for segment in field_path.split("."):
        if isinstance(current, Mapping):
            current = current.get(segment, MISSING)
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else MISSING
        else:
            return MISSING
        if current is MISSING or current is None or current == "":
            return MISSING
    return current


def resolve_from(
    backend_id: str, attributes: Mapping[str, Any], field_paths: Sequence[str]
) -> tuple[dict[str, Any], list[str]]:
    """Split *field_paths* into (resolved values, still-missing paths)."""
    found: dict[str, Any] = {}
    missing: list[str] = []
    for path in field_paths:
        value = backend_id if path == ID_FIELD else extract_field(attributes, path)
        if value is MISSING:
            missing.append(path)
        else:
            found[path] = value
    return found, missing


class Discoverer:
    """Runs discovery queries against a backend with bounded, jittered retry.

    ``ResourceNotFound``, a per-query timeout and not-yet-populated attributes
    are retried; any other backend error propagates on the first occurrence.
    """

    def __init__(self, backend: ProvisioningBackend, config: DiscoveryConfig) -> None:
        self._backend = backend
        self._config = config

    def _wait(self) -> Any:
        cfg = self._config
        return wait_exponential_jitter(
            initial=cfg.initial_wait_seconds,
            max=cfg.max_wait_seconds,
            exp_base=cfg.multiplier,
            jitter=cfg.jitter_seconds if cfg.jitter else 0,
        )

    async def _query(self, backend_id: str) -> dict[str, Any]:
        async with asyncio.timeout(self._config.query_timeout_seconds):
            return await self._backend.describe(backend_id)

    async def discover(
        self,
        resource_id: str,
        backend_id: str,
        queries: Sequence[DiscoveryQuery],
    ) -> tuple[dict[str, Any], int]:
        """Poll until every query resolves; return (values by field path, attempts).

        Each attempt issues one ``describe`` and satisfies as many queries as
        the response allows. Raises ``DiscoveryTimeout`` when the retry budget
        runs out.
        """
        resolved: dict[str, Any] = {}
        outstanding = [q.field_path for q in queries]
        attempts = 0

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(
                (ResourceNotFound, AttributePending, TimeoutError)
            ),
            stop=stop_after_attempt(self._config.max_attempts),
            wait=self._wait(),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    try:
                        attributes = await self._query(backend_id)
                    except (ResourceNotFound, TimeoutError) as exc:
                        logger.info(
                            "discovery.resource_not_visible",
                            resource_id=resource_id,
                            backend_id=backend_id,
                            attempt=attempts,
                            reason=type(exc).__name__,
                        )
                        raise
                    found, outstanding = resolve_from(
                        backend_id, attributes, outstanding
                    )
                    resolved.update(found)
                    if outstanding:
                        logger.info(
                            "discovery.attribute_pending",
                            resource_id=resource_id,
                            backend_id=backend_id,
                            fields=outstanding,
                            attempt=attempts,
                        )
                        raise AttributePending(outstanding)
        except RetryError as exc:
            raise DiscoveryTimeout(resource_id, outstanding, attempts) from exc

        logger.info(
            "discovery.resolved",
            resource_id=resource_id,
            backend_id=backend_id,
            fields=sorted(resolved),
            attempts=attempts,
        )
        return resolved, attempts
