"""State API of the client: types, conversions and the calls themselves.

Requests sent through ``proto_client`` and the responses it returns are
plain dicts keyed by the wire field names (``store_name``, ``key``,
``states``, ``data``, ``etag`` and so on).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import IntEnum
from typing import Any, Callable, Mapping, Optional, Sequence

UNDEFINED_TYPE = "undefined"

_NANOS_PER_SECOND = 10**9


class _NamedEnum(IntEnum):
    """Integer enum whose unknown values read as UNDEFINED."""

    @classmethod
    def _missing_(cls, value: object) -> "_NamedEnum":
        return cls(0)

    def __str__(self) -> str:
        return self.name.lower().replace("_", "-")


class StateConsistency(_NamedEnum):
    """Consistency a state store is asked for."""

    UNDEFINED = 0
    EVENTUAL = 1
    STRONG = 2


class StateConcurrency(_NamedEnum):
    """Concurrency control a state store is asked for."""

    UNDEFINED = 0
    FIRST_WRITE = 1
    LAST_WRITE = 2


class OperationType(_NamedEnum):
    """Kind of operation inside a state transaction."""

    UNDEFINED = 0
    UPSERT = 1
    DELETE = 2


@dataclass
class ETag:
    """Version of a stored record."""

    value: str


@dataclass
class StateOptions:
    """Persistence policy of a state operation."""

    concurrency: StateConcurrency = StateConcurrency.UNDEFINED
    consistency: StateConsistency = StateConsistency.UNDEFINED


_DEFAULT_OPTIONS = StateOptions(
    concurrency=StateConcurrency.LAST_WRITE,
    consistency=StateConsistency.STRONG,
)


@dataclass
class StateItem:
    """A single state item as read from a store."""

    key: str
    value: Optional[bytes] = None
    etag: str = ""
    metadata: Optional[dict[str, str]] = None


@dataclass
class BulkStateItem:
    """A single state item from a bulk read, with its own error text."""

    key: str
    value: Optional[bytes] = None
    etag: str = ""
    metadata: Optional[dict[str, str]] = None
    error: str = ""


@dataclass
class SetStateItem:
    """A single state to be persisted."""

    key: str
    value: Optional[bytes] = None
    etag: Optional[ETag] = None
    metadata: Optional[dict[str, str]] = None
    options: Optional[StateOptions] = None


@dataclass
class DeleteStateItem(SetStateItem):
    """A single state to be deleted; its value is ignored."""


@dataclass
class StateOperation:
    """One operation of a state transaction."""

    type: OperationType
    item: SetStateItem


StateOption = Callable[[StateOptions], None]


def with_concurrency(concurrency: StateConcurrency) -> StateOption:
    """Option setting the concurrency of a save."""

    def apply(options: StateOptions) -> None:
        options.concurrency = StateConcurrency(concurrency)

    return apply


def with_consistency(consistency: StateConsistency) -> StateOption:
    """Option setting the consistency of a save."""

    def apply(options: StateOptions) -> None:
        options.consistency = StateConsistency(consistency)

    return apply


def to_proto_state_options(options: Optional[StateOptions]) -> dict[str, int]:
    """Wire form of state options; the default policy when ``options`` is None."""
    chosen = options if options is not None else _DEFAULT_OPTIONS
    return {
        "concurrency": int(chosen.concurrency),
        "consistency": int(chosen.consistency),
    }


def to_proto_duration(seconds: float | timedelta) -> dict[str, int]:
    """Wire form of a duration: whole seconds and the nanoseconds left over."""
    if isinstance(seconds, timedelta):
        total = (seconds.days * 86400 + seconds.seconds) * _NANOS_PER_SECOND
        total += seconds.microseconds * 1000
    else:
        total = int(round(seconds * _NANOS_PER_SECOND))
    whole = abs(total) // _NANOS_PER_SECOND
    if total < 0:
        whole = -whole
    return {"seconds": whole, "nanos": total - whole * _NANOS_PER_SECOND}


def _copy_default_options() -> StateOptions:
    return StateOptions(
        concurrency=_DEFAULT_OPTIONS.concurrency,
        consistency=_DEFAULT_OPTIONS.consistency,
    )


def _proto_etag(etag: Optional[ETag]) -> Optional[dict[str, str]]:
    return {"value": etag.value} if etag is not None else None


def _proto_save_item(item: SetStateItem) -> dict[str, Any]:
    return {
        "key": item.key,
        "value": item.value,
        "metadata": item.metadata,
        "options": to_proto_state_options(item.options),
        "etag": _proto_etag(item.etag),
    }


def _check_required(store_name: str, key: str) -> None:
    if not store_name:
        raise ValueError("missing required arguments: store")
    if not key:
        raise ValueError("missing required arguments: key")


class StateClientMixin:
    """State calls of the client; expects a ``proto_client`` attribute."""

    proto_client: Any

    def execute_state_transaction(
        self,
        store_name: str,
        meta: Optional[Mapping[str, str]],
        ops: Sequence[StateOperation],
    ) -> None:
        """Run several operations on one store as a transaction."""
        if not store_name:
            raise ValueError("nil storeName")
        if not ops:
            return
        request = {
            "store_name": store_name,
            "metadata": dict(meta) if meta is not None else None,
            "operations": [
                {"operation_type": str(OperationType(op.type)), "request": _proto_save_item(op.item)}
                for op in ops
            ],
        }
        try:
            self.proto_client.execute_state_transaction(request)
        except Exception as exc:
            raise RuntimeError(f"error executing state transaction: {exc}") from exc

    def save_state(self, store_name: str, key: str, data: Optional[bytes], *options: StateOption) -> None:
        """Save raw data; without options the policy is strong, last-write."""
        if options:
            state_options = StateOptions()
            for option in options:
                option(state_options)
        else:
            state_options = _copy_default_options()
        self.save_bulk_state(store_name, SetStateItem(key=key, value=data, options=state_options))

    def save_bulk_state(self, store_name: str, *items: SetStateItem) -> None:
        """Save several items to one store."""
        if not store_name:
            raise ValueError("nil store")
        if not items:
            raise ValueError("nil item")
        request = {
            "store_name": store_name,
            "states": [_proto_save_item(item) for item in items],
        }
        try:
            self.proto_client.save_state(request)
        except Exception as exc:
            raise RuntimeError(f"error saving state: {exc}") from exc

    def get_bulk_state(
        self,
        store_name: str,
        keys: Sequence[str],
        meta: Optional[Mapping[str, str]],
        parallelism: int,
    ) -> list[BulkStateItem]:
        """Read several keys from one store."""
        if not store_name:
            raise ValueError("nil store")
        if not keys:
            raise ValueError("keys required")
        request = {
            "store_name": store_name,
            "keys": list(keys),
            "metadata": dict(meta) if meta is not None else None,
            "parallelism": parallelism,
        }
        try:
            results = self.proto_client.get_bulk_state(request)
        except Exception as exc:
            raise RuntimeError(f"error getting state: {exc}") from exc
        if not results or results.get("items") is None:
            return []
        return [
            BulkStateItem(
                key=result.get("key", ""),
                value=result.get("data"),
                etag=result.get("etag", ""),
                metadata=result.get("metadata"),
                error=result.get("error", ""),
            )
            for result in results["items"]
        ]

    def get_state(self, store_name: str, key: str) -> StateItem:
        """Read one key with strong consistency."""
        return self.get_state_with_consistency(store_name, key, None, StateConsistency.STRONG)

    def get_state_with_consistency(
        self,
        store_name: str,
        key: str,
        meta: Optional[Mapping[str, str]],
        consistency: StateConsistency,
    ) -> StateItem:
        """Read one key with the given consistency."""
        _check_required(store_name, key)
        request = {
            "store_name": store_name,
            "key": key,
            "consistency": int(consistency),
            "metadata": dict(meta) if meta is not None else None,
        }
        try:
            result = self.proto_client.get_state(request) or {}
        except Exception as exc:
            raise RuntimeError(f"error getting state: {exc}") from exc
        return StateItem(
            key=key,
            value=result.get("data"),
            etag=result.get("etag", ""),
            metadata=result.get("metadata"),
        )

    def delete_state(self, store_name: str, key: str) -> None:
        """Delete one key with the default policy."""
        self.delete_state_with_etag(store_name, key, None, None, None)

    def delete_state_with_etag(
        self,
        store_name: str,
        key: str,
        etag: Optional[ETag],
        meta: Optional[Mapping[str, str]],
        options: Optional[StateOptions],
    ) -> None:
        """Delete one key, guarded by ``etag`` when given."""
        _check_required(store_name, key)
        request = {
            "store_name": store_name,
            "key": key,
            "options": to_proto_state_options(options),
            "metadata": dict(meta) if meta is not None else None,
            "etag": _proto_etag(etag),
        }
        try:
            self.proto_client.delete_state(request)
        except Exception as exc:
            raise RuntimeError(f"error deleting state: {exc}") from exc

    def delete_bulk_state(self, store_name: str, keys: Sequence[str]) -> None:
        """Delete several keys from one store."""
        if not keys:
            return
        self.delete_bulk_state_items(store_name, [DeleteStateItem(key=key) for key in keys])

    def delete_bulk_state_items(self, store_name: str, items: Sequence[DeleteStateItem]) -> None:
        """Delete several items, each with its own etag, metadata and options."""
        if not items:
            return
        states = []
        for item in items:
            _check_required(store_name, item.key)
            states.append(
                {
                    "key": item.key,
                    "metadata": item.metadata,
                    "options": to_proto_state_options(item.options),
                    "etag": _proto_etag(item.etag),
                }
            )
        self.proto_client.delete_bulk_state({"store_name": store_name, "states": states})