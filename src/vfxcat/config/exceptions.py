"""Exceptions raised while loading vfxcat configuration."""


class ConfigError(Exception):
    """Raised when configuration data cannot be parsed or validated."""
