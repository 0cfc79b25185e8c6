"""Configuration of the wasm stream filter."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


@dataclass
class FilterConfig:
    """Parsed filter configuration.

    ``user_data`` holds every top-level string entry other than
    ``from_wasm_plugin``; it is handed to the plugin as its configuration.
    """

    from_wasm_plugin: str = ""
    vm_config: Optional[dict[str, Any]] = None
    instance_num: int = 0
    root_context_id: int = 1
    user_data: dict[str, str] = field(default_factory=dict)


def _as_int(value: Any, where: str, low: Optional[int] = None, high: Optional[int] = None) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"{where}: expected a number, got bool")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{where}: {value} is not an integer")
        value = int(value)
    if not isinstance(value, int):
        raise ValueError(f"{where}: expected a number, got {type(value).__name__}")
    if (low is not None and value < low) or (high is not None and value > high):
        raise ValueError(f"{where}: {value} is out of range")
    return value


def _decode_into(obj: Any, config: FilterConfig) -> None:
    if not isinstance(obj, Mapping):
        raise ValueError(f"filter config must be an object, got {type(obj).__name__}")
    if "from_wasm_plugin" in obj:
        plugin = obj["from_wasm_plugin"]
        if plugin is not None and not isinstance(plugin, str):
            raise ValueError("from_wasm_plugin: expected a string")
        config.from_wasm_plugin = plugin or ""
    if "vm_config" in obj:
        vm = obj["vm_config"]
        if vm is not None and not isinstance(vm, Mapping):
            raise ValueError("vm_config: expected an object")
        config.vm_config = dict(vm) if vm is not None else None
    if "instance_num" in obj:
        config.instance_num = _as_int(obj["instance_num"], "instance_num")
    if "root_context_id" in obj and obj["root_context_id"] is not None:
        config.root_context_id = _as_int(
            obj["root_context_id"], "root_context_id", _INT32_MIN, _INT32_MAX
        )


def parse_filter_config(cfg: Mapping[str, Any]) -> FilterConfig:
    """Build a :class:`FilterConfig` from the filter's raw configuration.

    Raises ValueError when the configuration cannot be encoded or decoded,
    or when it names neither a plugin nor a vm configuration.
    """
    config = FilterConfig()
    try:
        raw = json.dumps(cfg)
    except (TypeError, ValueError) as exc:
        logger.error("[proxywasm][config] fail to marshal filter config, err: %s", exc)
        raise ValueError(f"cannot encode filter config: {exc}") from exc

    try:
        _decode_into(json.loads(raw), config)
    except ValueError as exc:
        logger.error("[proxywasm][config] fail to unmarshal filter config, err: %s", exc)
        raise

    try:
        check_vm_config(config)
    except ValueError as exc:
        logger.error("[proxywasm][config] fail to check vm config, err: %s", exc)
        raise

    try:
        parse_user_data(raw, config)
    except ValueError as exc:
        logger.error("[proxywasm][config] fail to parse user data, err: %s", exc)
        raise

    return config


def check_vm_config(config: FilterConfig) -> None:
    """Normalise the vm settings: a named plugin drops them, otherwise they are required."""
    if config.from_wasm_plugin:
        config.vm_config = None
        config.instance_num = 0
        return
    if config.vm_config is None:
        logger.error("[proxywasm][config] checkVmConfig fail, nil vm config")
        raise ValueError("nil vm config")
    if config.instance_num <= 0:
        config.instance_num = os.cpu_count() or 1


def parse_user_data(raw: str | bytes, config: Optional[FilterConfig]) -> None:
    """Collect the top-level string entries of ``raw`` into ``config.user_data``."""
    if not raw or config is None:
        logger.error(
            "[proxywasm][config] fail to parse user data, invalid param, raw: %r, config: %r",
            raw,
            config,
        )
        raise ValueError("invalid param")

    try:
        decoded = json.loads(raw)
    except ValueError as exc:
        logger.error("[proxywasm][config] fail to unmarshal user data, err: %s", exc)
        raise
    if not isinstance(decoded, dict):
        raise ValueError("user data must be an object")

    strings = {
        key: value
        for key, value in decoded.items()
        if key != "from_wasm_plugin" and isinstance(value, str)
    }
    if strings:
        config.user_data = strings