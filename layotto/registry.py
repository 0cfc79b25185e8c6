"""Factories and registries for pluggable runtime components."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

LOCK_SERVICE = "lock"
PUBSUB_SERVICE = "pubSub"
STATE_SERVICE = "state"


@dataclass
class Factory:
    """A named constructor of one component implementation."""

    name: str
    factory_method: Optional[Callable[[], Any]]


class ComponentNotRegisteredError(LookupError):
    """No factory is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"service component {name} is not regsitered")
        self.name = name


class ComponentRegistry:
    """Registry of component factories for one kind of service.

    ``info``, when given, is told about the service and about each component
    that is registered or loaded, through its ``add_service``,
    ``register_component`` and ``load_component`` methods.
    """

    def __init__(self, service_name: str, info: Any = None) -> None:
        self.service_name = service_name
        self._info = info
        self._factories: dict[str, Optional[Callable[[], Any]]] = {}
        if info is not None:
            info.add_service(service_name)

    def register(self, *factories: Factory) -> None:
        """Register factories; a later one replaces an earlier of the same name."""
        for factory in factories:
            self._factories[factory.name] = factory.factory_method
            if self._info is not None:
                self._info.register_component(self.service_name, factory.name)

    def create(self, name: str) -> Any:
        """Build a new component from the factory registered as ``name``."""
        try:
            method = self._factories[name]
        except KeyError:
            raise ComponentNotRegisteredError(name) from None
        if self._info is not None:
            self._info.load_component(self.service_name, name)
        if method is None:
            raise TypeError(f"factory for component {name} has no method")
        return method()

    def __contains__(self, name: object) -> bool:
        return name in self._factories