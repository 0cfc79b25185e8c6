"""Key prefixing strategies for state and lock stores."""

from __future__ import annotations

from typing import Mapping

STRATEGY_KEY = "keyPrefix"
STRATEGY_APPID = "appid"
STRATEGY_STORE_NAME = "name"
STRATEGY_NONE = "none"
STRATEGY_DEFAULT = STRATEGY_APPID

SEPARATOR = "||"

_CONSISTENCY_NAMES = {1: "eventual", 2: "strong"}
_CONCURRENCY_NAMES = {1: "first-write", 2: "last-write"}


class IllegalKeyError(ValueError):
    """A key or key prefix contains the reserved separator."""

    def __init__(self, key: str) -> None:
        super().__init__(f"input key/keyPrefix '{key}' can't contain '{SEPARATOR}'")
        self.key = key


def _check_key(key: str) -> None:
    if SEPARATOR in key:
        raise IllegalKeyError(key)


class KeyPrefixConfig:
    """Remembers the key prefix strategy of each store."""

    def __init__(self) -> None:
        self._strategies: dict[str, str] = {}

    def save(self, store_name: str, metadata: Mapping[str, str]) -> None:
        """Record the strategy named by the store's ``keyPrefix`` metadata."""
        raw = metadata.get(STRATEGY_KEY, "")
        strategy = raw.lower()
        if not strategy:
            strategy = STRATEGY_DEFAULT
        else:
            _check_key(raw)
        self._strategies[store_name] = strategy

    def strategy(self, store_name: str) -> str:
        """The strategy of a store, falling back to (and recording) the default."""
        return self._strategies.setdefault(store_name, STRATEGY_DEFAULT)

    def modified_key(self, key: str, store_name: str, app_id: str) -> str:
        """Return ``key`` prefixed as the store's strategy demands."""
        _check_key(key)
        strategy = self.strategy(store_name)
        if strategy == STRATEGY_NONE:
            return key
        if strategy == STRATEGY_STORE_NAME:
            return f"{store_name}{SEPARATOR}{key}"
        if strategy == STRATEGY_APPID:
            return f"{app_id}{SEPARATOR}{key}" if app_id else key
        return f"{strategy}{SEPARATOR}{key}"


_lock_configuration = KeyPrefixConfig()
_state_configuration = KeyPrefixConfig()


def save_lock_configuration(store_name: str, metadata: Mapping[str, str]) -> None:
    _lock_configuration.save(store_name, metadata)


def get_modified_lock_key(key: str, store_name: str, app_id: str) -> str:
    return _lock_configuration.modified_key(key, store_name, app_id)


def save_state_configuration(store_name: str, metadata: Mapping[str, str]) -> None:
    _state_configuration.save(store_name, metadata)


def get_modified_state_key(key: str, store_name: str, app_id: str) -> str:
    return _state_configuration.modified_key(key, store_name, app_id)


def get_original_state_key(modified_key: str) -> str:
    """Strip the prefix from a key produced by :func:`get_modified_state_key`."""
    parts = modified_key.split(SEPARATOR)
    if len(parts) <= 1:
        return modified_key
    return parts[1]


def state_consistency_to_string(consistency: int) -> str:
    """Name of a state consistency value, or an empty string when unspecified."""
    return _CONSISTENCY_NAMES.get(int(consistency), "")


def state_concurrency_to_string(concurrency: int) -> str:
    """Name of a state concurrency value, or an empty string when unspecified."""
    return _CONCURRENCY_NAMES.get(int(concurrency), "")