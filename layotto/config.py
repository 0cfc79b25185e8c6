"""Runtime configuration model and its JSON parser."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping

METADATA_KEY_PUBSUB_NAME = "pubsubName"
DIAL_TIMEOUT = 30.0  # seconds


def _expect_str(value: Any, where: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{where}: expected a string, got {type(value).__name__}")
    return value


def _expect_int(value: Any, where: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{where}: expected an integer, got {type(value).__name__}")
    return value


def _expect_object(value: Any, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{where}: expected an object, got {type(value).__name__}")
    return dict(value)


@dataclass
class AppConfig:
    """Settings of the application the runtime serves."""

    app_id: str = ""
    grpc_callback_port: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "AppConfig":
        obj = _expect_object(data, "app")
        return cls(
            app_id=_expect_str(obj.get("app_id"), "app.app_id"),
            grpc_callback_port=_expect_int(
                obj.get("grpc_callback_port"), "app.grpc_callback_port"
            ),
        )


@dataclass
class ComponentConfig:
    """Configuration of a pub/sub, state or lock component."""

    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any, where: str = "component") -> "ComponentConfig":
        obj = _expect_object(data, where)
        raw = _expect_object(obj.get("metadata"), f"{where}.metadata")
        metadata = {
            key: _expect_str(value, f"{where}.metadata.{key}")
            for key, value in raw.items()
        }
        return cls(metadata=metadata)


@dataclass
class RuntimeConfig:
    """The whole runtime configuration, one section per kind of component."""

    app: AppConfig = field(default_factory=AppConfig)
    hellos: dict[str, Any] = field(default_factory=dict)
    config_stores: dict[str, Any] = field(default_factory=dict)
    rpcs: dict[str, Any] = field(default_factory=dict)
    pub_subs: dict[str, ComponentConfig] = field(default_factory=dict)
    state: dict[str, ComponentConfig] = field(default_factory=dict)
    lock: dict[str, ComponentConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "RuntimeConfig":
        obj = _expect_object(data, "runtime config")

        def components(section: str) -> dict[str, ComponentConfig]:
            return {
                name: ComponentConfig.from_dict(value, f"{section}.{name}")
                for name, value in _expect_object(obj.get(section), section).items()
            }

        return cls(
            app=AppConfig.from_dict(obj.get("app")),
            hellos=_expect_object(obj.get("hellos"), "hellos"),
            config_stores=_expect_object(obj.get("config_stores"), "config_stores"),
            rpcs=_expect_object(obj.get("rpcs"), "rpcs"),
            pub_subs=components("pub_subs"),
            state=components("state"),
            lock=components("lock"),
        )


def parse_runtime_config(data: str | bytes | bytearray | Mapping) -> RuntimeConfig:
    """Parse a runtime configuration from JSON text or an already decoded mapping.

    Raises ValueError when the JSON is malformed or a field has the wrong type.
    """
    if isinstance(data, (str, bytes, bytearray)):
        data = json.loads(data)
    return RuntimeConfig.from_dict(data)