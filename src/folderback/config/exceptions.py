"""Configuration errors."""


class ConfigError(Exception):
    """Raised when configuration is missing, unparseable, or fails validation."""
