"""Resource descriptors — immutable units of the provisioning graph.

A descriptor's config is a nested structure of literals and ``Pending``
placeholders. A placeholder stands for an attribute of another resource that
only exists once that resource has been created (an ARN, an allocated IP, a
network interface id) and is substituted by the executor right before the
create call.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from bedrock_accelerator.errors import MalformedDependency

ID_FIELD = "id"


@dataclass(frozen=True, slots=True)
class Pending:
    """Placeholder for ``field_path`` of resource ``source_id``."""

    source_id: str
    field_path: str = ID_FIELD

    def __str__(self) -> str:
        return f"${{{self.source_id}.{self.field_path}}}"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def iter_placeholders(value: Any) -> Iterator[Pending]:
    """Yield every ``Pending`` found in a nested config value."""
    if isinstance(value, Pending):
        yield value
    elif isinstance(value, Mapping):
        for v in value.values():
            yield from iter_placeholders(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_placeholders(v)


def substitute(value: Any, lookup: Any) -> Any:
    """Return a mutable copy of *value* with placeholders replaced by *lookup(p)*."""
    if isinstance(value, Pending):
        return lookup(value)
    if isinstance(value, Mapping):
        return {k: substitute(v, lookup) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [substitute(v, lookup) for v in value]
    return value


@dataclass(frozen=True, slots=True)
class ResourceDescriptor:
    """One provisionable unit.

    ``depends_on`` may list ids that no placeholder references (pure ordering
    edges), but every placeholder must point at a declared dependency.
    ``outputs`` maps logical output names to field paths of this resource.
    """

    id: str
    kind: str
    config: Mapping[str, Any] = field(default_factory=dict)
    depends_on: frozenset[str] = frozenset()
    outputs: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))
        object.__setattr__(self, "config", _freeze(self.config))
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))

        if not self.id:
            raise MalformedDependency(self.id, "resource id must not be empty")
        if self.id in self.depends_on:
            raise MalformedDependency(self.id, "a resource cannot depend on itself")
        for placeholder in self.placeholders():
            if placeholder.source_id not in self.depends_on:
                raise MalformedDependency(
                    self.id,
                    f"placeholder {placeholder} references '{placeholder.source_id}' "
                    "which is not declared in depends_on",
                )

    def placeholders(self) -> list[Pending]:
        return list(iter_placeholders(self.config))
