"""Application runtime core: configuration, registries, key prefixes, options and event delivery."""

__version__ = "0.1.0"