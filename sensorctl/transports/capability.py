"""Capability gates answering whether scan/connect operations are permitted."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from sensorctl.core.model import Capability


class StaticCapabilityGate:
    """Gate backed by a mutable grant set; grants everything by default."""

    def __init__(self, granted: Iterable[Capability] | None = None) -> None:
        self._granted = set(Capability if granted is None else granted)

    def has_capability(self, capability: Capability) -> bool:
        return capability in self._granted

    def grant(self, capability: Capability) -> None:
        self._granted.add(capability)

    def revoke(self, capability: Capability) -> None:
        self._granted.discard(capability)


class CallableCapabilityGate:
    """Gate that defers every check to a predicate, e.g. an OS permission query."""

    def __init__(self, predicate: Callable[[Capability], bool]) -> None:
        self._predicate = predicate

    def has_capability(self, capability: Capability) -> bool:
        return bool(self._predicate(capability))
