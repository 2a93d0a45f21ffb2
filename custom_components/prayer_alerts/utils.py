"""Utility functions for Prayer Alerts integration."""

from __future__ import annotations

import logging
from typing import Any, Final, TYPE_CHECKING

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry

_LOGGER = logging.getLogger(__name__)


def get_config_value(
    source: ConfigEntry | dict[str, Any],
    key: str,
    default: Any = None,
) -> Any:
    """Get config value from entry or dict.

    For ConfigEntry: checks options first, then data, then default.
    For dict: checks the dict directly, then default.

    Args:
        source: ConfigEntry or dict to read from
        key: Configuration key to look up
        default: Default value if key not found

    Returns:
        The configuration value or default
    """
    if hasattr(source, "options") and hasattr(source, "data"):
        # ConfigEntry: check options first (user overrides)
        if key in source.options:
            return source.options[key]
        return source.data.get(key, default)
    elif isinstance(source, dict):
        return source.get(key, default)
    return default


def merged_config(entry: ConfigEntry) -> dict[str, Any]:
    """Return entry data overlaid with options."""
    return {**entry.data, **entry.options}


# Logger names for Prayer Alerts modules
PRAYER_ALERTS_LOGGERS: Final = (
    "custom_components.prayer_alerts",
    "custom_components.prayer_alerts.config_flow",
    "custom_components.prayer_alerts.prayer_times",
    "custom_components.prayer_alerts.scheduling",
    "custom_components.prayer_alerts.scheduling.compiler",
    "custom_components.prayer_alerts.scheduling.ledger",
    "custom_components.prayer_alerts.scheduling.notifier",
    "custom_components.prayer_alerts.scheduling.reconciler",
    "custom_components.prayer_alerts.sensor",
)


def apply_debug_logging(enabled: bool) -> None:
    """Apply debug logging setting to all Prayer Alerts loggers.

    Args:
        enabled: True to enable DEBUG level, False for INFO level
    """
    level = logging.DEBUG if enabled else logging.INFO

    for logger_name in PRAYER_ALERTS_LOGGERS:
        logging.getLogger(logger_name).setLevel(level)

    _LOGGER.info("Prayer Alerts debug logging %s", "enabled" if enabled else "disabled")
