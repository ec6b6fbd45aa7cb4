"""
HASS Satellite - expose host commands to Home Assistant over MQTT.

Keeps a registry of configured commands (shutdown, lock, media keys,
scripts, URLs, ...), reconciles it against desired configuration and
continuously publishes MQTT discovery, subscriptions and state for them.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("hass_satellite")
except PackageNotFoundError:
    # Package is not installed
    __version__ = "0.0.0-dev"

__all__ = [
    "__version__",
]
