"""Options that configure which components and hooks a runtime starts with."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from layotto.registry import Factory

ErrInterceptor = Callable[..., None]
"""Called as ``interceptor(error, message_format, *args)`` when a component fails."""


@dataclass
class RuntimeOptions:
    """Everything a runtime is told before it starts.

    The ``hellos``, ``config_stores`` and ``rpcs`` lists hold factories for
    services whose registries live elsewhere; ``pub_subs``, ``states`` and
    ``locks`` hold :class:`~layotto.registry.Factory` objects.
    """

    hellos: list[Any] = field(default_factory=list)
    config_stores: list[Any] = field(default_factory=list)
    rpcs: list[Any] = field(default_factory=list)
    pub_subs: list[Factory] = field(default_factory=list)
    states: list[Factory] = field(default_factory=list)
    locks: list[Factory] = field(default_factory=list)
    srv_maker: Optional[Callable[..., Any]] = None
    err_interceptor: Optional[ErrInterceptor] = None
    grpc_options: list[Any] = field(default_factory=list)


Option = Callable[[RuntimeOptions], None]


def with_new_server(maker: Callable[..., Any]) -> Option:
    """Use ``maker`` to build the server the runtime exposes."""

    def apply(options: RuntimeOptions) -> None:
        options.srv_maker = maker

    return apply


def with_grpc_options(*grpc_options: Any) -> Option:
    """Pass extra options to the server."""

    def apply(options: RuntimeOptions) -> None:
        options.grpc_options.extend(grpc_options)

    return apply


def with_err_interceptor(interceptor: ErrInterceptor) -> Option:
    """Install the hook called when a component fails; it may be set only once."""

    def apply(options: RuntimeOptions) -> None:
        if options.err_interceptor is not None:
            raise RuntimeError("the error interceptor was already set")
        options.err_interceptor = interceptor

    return apply


def with_hello_factory(*factories: Any) -> Option:
    """Add hello service factories."""

    def apply(options: RuntimeOptions) -> None:
        options.hellos.extend(factories)

    return apply


def with_config_stores_factory(*factories: Any) -> Option:
    """Add configuration store factories."""

    def apply(options: RuntimeOptions) -> None:
        options.config_stores.extend(factories)

    return apply


def with_rpc_factory(*factories: Any) -> Option:
    """Add rpc invoker factories."""

    def apply(options: RuntimeOptions) -> None:
        options.rpcs.extend(factories)

    return apply


def with_pubsub_factory(*factories: Factory) -> Option:
    """Add pub/sub component factories."""

    def apply(options: RuntimeOptions) -> None:
        options.pub_subs.extend(factories)

    return apply


def with_state_factory(*factories: Factory) -> Option:
    """Add state store factories."""

    def apply(options: RuntimeOptions) -> None:
        options.states.extend(factories)

    return apply


def with_lock_factory(*factories: Factory) -> Option:
    """Add lock store factories."""

    def apply(options: RuntimeOptions) -> None:
        options.locks.extend(factories)

    return apply