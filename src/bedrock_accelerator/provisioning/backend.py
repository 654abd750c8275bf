"""Provisioning backend protocol — the only surface the executor talks to."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(slots=True)
class CreatedResource:
    """Acknowledgement of a create call.

    ``attributes`` holds whatever the backend returned synchronously; values
    assigned asynchronously (network interfaces, DNS names) may be absent and
    must be discovered with ``describe``.
    """

    id: str
    attributes: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ProvisioningBackend(Protocol):
    """Protocol every provisioning backend must satisfy.

    Both calls raise ``BackendError`` on transport, permission or validation
    failures; ``describe`` raises ``ResourceNotFound`` when the id is not (yet)
    visible.
    """

    async def create(self, kind: str, config: dict[str, Any]) -> CreatedResource:
        """Create one resource of *kind* and return its identifier."""
        ...

    async def describe(self, resource_id: str) -> dict[str, Any]:
        """Return the current attributes of an existing resource."""
        ...
