"""Sensor platform for Prayer Alerts schedule status."""

from __future__ import annotations

import logging
from typing import Any

from homeassistant.components.sensor import SensorEntity, SensorStateClass
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers import device_registry as dr
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.entity_platform import AddConfigEntryEntitiesCallback

from .const import DOMAIN, SIGNAL_REPORT_UPDATED

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddConfigEntryEntitiesCallback,
) -> None:
    """Set up Prayer Alerts sensors from a config entry."""
    async_add_entities([ScheduledNotificationsSensor(hass, entry)])


class ScheduledNotificationsSensor(SensorEntity):
    """Number of pending prayer notifications, with the last pass as attributes."""

    _attr_has_entity_name = True
    _attr_name = "Scheduled Notifications"
    _attr_icon = "mdi:bell-ring-outline"
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_should_poll = False  # We use signals instead of polling

    def __init__(self, hass: HomeAssistant, entry: ConfigEntry) -> None:
        """Initialize the sensor."""
        self.hass = hass
        self._entry = entry
        self._attr_unique_id = f"{entry.entry_id}_scheduled_notifications"
        self._attr_device_info = dr.DeviceInfo(
            identifiers={(DOMAIN, entry.entry_id)},
            name=entry.title,
            manufacturer="Prayer Alerts",
            model="Notification Scheduler",
            entry_type=dr.DeviceEntryType.SERVICE,
        )

    async def async_added_to_hass(self) -> None:
        """Register signal listener when added to hass."""
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass,
                f"{SIGNAL_REPORT_UPDATED}_{self._entry.entry_id}",
                self._handle_report_update,
            )
        )

    @callback
    def _handle_report_update(self) -> None:
        """Handle report update signal."""
        self.async_write_ha_state()

    def _get_entry_data(self) -> dict[str, Any]:
        return self.hass.data.get(DOMAIN, {}).get(self._entry.entry_id, {})

    @property
    def native_value(self) -> int:
        """Return the number of pending notifications."""
        return self._get_entry_data().get("pending_count", 0)

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return additional attributes."""
        data = self._get_entry_data()
        report = data.get("last_report")
        return {
            "next_notification": data.get("next_trigger"),
            "scheduled_dates": data.get("scheduled_dates", []),
            "last_error": data.get("last_error"),
            "last_report": report.as_dict() if report is not None else None,
        }
