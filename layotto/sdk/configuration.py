"""Configuration API of the client: get, save, delete and subscribe.

Requests sent through ``proto_client`` and the responses it returns are
plain dicts keyed by the wire field names (``store_name``, ``app_id``,
``group``, ``label``, ``keys``, ``items`` and so on).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Optional


@dataclass
class ConfigurationRequestItem:
    """Selects configuration items for a get, delete or subscribe request.

    ``app_id`` is only honoured for admin clients; the runtime resets it
    for ordinary ones.
    """

    store_name: str = ""
    app_id: str = ""
    group: str = ""
    label: str = ""
    keys: list[str] = field(default_factory=list)
    metadata: Optional[dict[str, str]] = None


@dataclass
class ConfigurationItem:
    """One configuration entry.

    ``content`` is empty when the entry is not set, including when it has
    just been unset.
    """

    key: str
    content: str = ""
    group: str = ""
    label: str = ""
    tags: Optional[dict[str, str]] = None
    metadata: Optional[dict[str, str]] = None


@dataclass
class SaveConfigurationRequest:
    """Items to save into a configuration store.

    To delete an existing item, give its key (and label) with empty content.
    """

    store_name: str = ""
    app_id: str = ""
    items: list[ConfigurationItem] = field(default_factory=list)
    metadata: Optional[dict[str, str]] = None


@dataclass
class SubConfigurationResp:
    """One update pushed by a configuration subscription."""

    store_name: str = ""
    app_id: str = ""
    items: list[ConfigurationItem] = field(default_factory=list)


@dataclass
class WatchResponse:
    """An update of a subscription, or the error that ended it.

    The response carrying ``err`` keeps the last update received, if any.
    """

    item: Optional[SubConfigurationResp] = None
    err: Optional[BaseException] = None


def _request_to_proto(request: ConfigurationRequestItem) -> dict[str, Any]:
    return {
        "store_name": request.store_name,
        "app_id": request.app_id,
        "group": request.group,
        "label": request.label,
        "keys": list(request.keys),
        "metadata": request.metadata,
    }


def _item_to_proto(item: ConfigurationItem) -> dict[str, Any]:
    return {
        "key": item.key,
        "content": item.content,
        "group": item.group,
        "label": item.label,
        "tags": item.tags,
        "metadata": item.metadata,
    }


def _item_from_proto(data: Mapping[str, Any]) -> ConfigurationItem:
    return ConfigurationItem(
        key=data.get("key", ""),
        content=data.get("content", ""),
        group=data.get("group", ""),
        label=data.get("label", ""),
        tags=data.get("tags"),
        metadata=data.get("metadata"),
    )


def _watch(stream: Iterator[Mapping[str, Any]]) -> Iterator[WatchResponse]:
    last: Optional[SubConfigurationResp] = None
    while True:
        try:
            response = next(stream)
        except StopIteration:
            yield WatchResponse(item=last, err=EOFError("configuration stream ended"))
            return
        except Exception as exc:
            yield WatchResponse(item=last, err=exc)
            return
        last = SubConfigurationResp(
            store_name=response.get("store_name", ""),
            app_id=response.get("app_id", ""),
            items=[_item_from_proto(item) for item in response.get("items") or []],
        )
        yield WatchResponse(item=last)


class ConfigurationMixin:
    """Configuration calls of the client; expects a ``proto_client`` attribute."""

    proto_client: Any

    def get_configuration(self, request: ConfigurationRequestItem) -> list[ConfigurationItem]:
        """Read the requested configuration items."""
        response = self.proto_client.get_configuration(_request_to_proto(request)) or {}
        return [_item_from_proto(item) for item in response.get("items") or []]

    def save_configuration(self, request: SaveConfigurationRequest) -> None:
        """Save configuration items into the store."""
        self.proto_client.save_configuration(
            {
                "store_name": request.store_name,
                "app_id": request.app_id,
                "items": [_item_to_proto(item) for item in request.items],
                "metadata": request.metadata,
            }
        )

    def delete_configuration(self, request: ConfigurationRequestItem) -> None:
        """Delete the requested configuration items."""
        self.proto_client.delete_configuration(_request_to_proto(request))

    def subscribe_configuration(self, request: ConfigurationRequestItem) -> Iterator[WatchResponse]:
        """Subscribe to the requested items and iterate over their updates.

        The stream is opened at once; the last response carries the error
        that ended it, an EOFError when the server closed it.
        """
        try:
            stream = iter(self.proto_client.subscribe_configuration(_request_to_proto(request)))
        except Exception as exc:
            return iter([WatchResponse(err=exc)])
        return _watch(stream)