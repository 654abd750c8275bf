"""Exception taxonomy for planning and provisioning runs."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bedrock_accelerator.provisioning.outputs import RunResult


class ProvisioningError(Exception):
    """Base class for every error raised by this package."""


# -- Construction / resolution time (no backend calls made) -------------------


class MalformedDependency(ProvisioningError):
    """A descriptor references a resource it does not declare as a dependency."""

    def __init__(self, resource_id: str, detail: str) -> None:
        self.resource_id = resource_id
        super().__init__(f"Malformed dependency in '{resource_id}': {detail}")


class CyclicDependency(ProvisioningError):
    """The dependency graph contains at least one cycle."""

    def __init__(self, participants: Iterable[str]) -> None:
        self.participants = tuple(participants)
        super().__init__(
            "Cyclic dependency between: " + ", ".join(self.participants)
        )


class UnknownDependency(ProvisioningError):
    """A descriptor depends on an id that is not part of the descriptor set."""

    def __init__(self, resource_id: str, missing: str) -> None:
        self.resource_id = resource_id
        self.missing = missing
        super().__init__(f"'{resource_id}' depends on unknown resource '{missing}'")


# -- Execution time ------------------------------------------------------------


class BackendError(ProvisioningError):
    """A provisioning backend call failed (transport, permission, validation)."""

    def __init__(self, code: str | int, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}" if message else f"[{code}]")


class ResourceNotFound(BackendError):
    """``describe`` found no resource with the requested id (yet)."""

    def __init__(self, resource_id: str, message: str = "") -> None:
        self.resource_id = resource_id
        super().__init__("NotFound", message or f"{resource_id} not found")


class DiscoveryTimeout(ProvisioningError):
    """Discovery polling exhausted its retry budget."""

    def __init__(
        self, resource_id: str, field_paths: Iterable[str], attempts: int
    ) -> None:
        self.resource_id = resource_id
        self.field_paths = tuple(field_paths)
        self.attempts = attempts
        super().__init__(
            f"Gave up discovering {', '.join(self.field_paths)} on "
            f"'{resource_id}' after {attempts} attempt(s)"
        )


class InvariantViolation(ProvisioningError):
    """Internal error: a resolved value was missing or written twice.

    When raised out of a run, ``result`` describes what had been provisioned
    by the time every in-flight resource settled.
    """

    result: RunResult | None = None


class ProvisioningFailed(ProvisioningError):
    """Top-level run failure wrapping the first resource-level failure."""

    def __init__(
        self,
        resource_id: str,
        cause: BaseException,
        result: RunResult | None = None,
    ) -> None:
        self.resource_id = resource_id
        self.cause = cause
        self.result = result
        super().__init__(f"Provisioning failed at '{resource_id}': {cause}")

    @property
    def code(self) -> Any:
        """Backend error code of the cause, if it carries one."""
        return getattr(self.cause, "code", None)


class RunCancelled(ProvisioningError):
    """The run was cancelled before every resource could start."""
