"""Prayer Alerts - prayer-time notifications for Home Assistant.

Keeps a rolling window of prayer alerts and reminders scheduled, and
reconciles them whenever Home Assistant starts, on a periodic refresh,
when preferences change, or on demand through services.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

# Set up logging FIRST
_LOGGER = logging.getLogger(__name__)

try:
    import voluptuous as vol

    from homeassistant.config_entries import ConfigEntry
    from homeassistant.const import EVENT_HOMEASSISTANT_STARTED, Platform
    from homeassistant.core import (
        Event,
        HomeAssistant,
        ServiceCall,
        ServiceResponse,
        SupportsResponse,
    )
    from homeassistant.exceptions import ServiceValidationError
    from homeassistant.helpers import config_validation as cv
    from homeassistant.helpers.aiohttp_client import async_get_clientsession
    from homeassistant.helpers.dispatcher import async_dispatcher_send
    from homeassistant.helpers.event import async_track_time_interval
    from homeassistant.util import dt as dt_util
except ImportError as e:
    _LOGGER.error("Prayer Alerts __init__.py: Failed to import HA core: %s", e)
    raise

from .const import (
    ATTR_CONFIG_ENTRY_ID,
    ATTR_TABLE,
    CONF_CALC_METHOD,
    CONF_DEBUG_LOGGING,
    CONF_LATITUDE,
    CONF_LONGITUDE,
    CONF_LOOKAHEAD_DAYS,
    CONF_NOTIFY_SERVICE,
    CONF_REFRESH_INTERVAL,
    CONF_SCHOOL,
    DEFAULT_CALC_METHOD,
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_LOOKAHEAD_DAYS,
    DEFAULT_NOTIFY_SERVICE,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_SCHOOL,
    DOMAIN,
    MAX_LOOKAHEAD_DAYS,
    SERVICE_REFRESH,
    SERVICE_RESCHEDULE_ALL,
    SIGNAL_REPORT_UPDATED,
)
from .models import Preferences, PrayerTimesUnavailable, ReconcileReport
from .prayer_times import AladhanPrayerTimeSource
from .scheduling import (
    HassNotificationScheduler,
    PrayerNotificationReconciler,
    ScheduleLedgerStore,
    ledger_storage_key,
)
from .utils import apply_debug_logging, get_config_value, merged_config

# Schema indicating this integration is only configurable via config entries
CONFIG_SCHEMA = cv.config_entry_only_config_schema(DOMAIN)

PLATFORMS: list[Platform] = [Platform.SENSOR]

REFRESH_SCHEMA = vol.Schema(
    {
        vol.Optional(ATTR_CONFIG_ENTRY_ID): cv.string,
        vol.Optional(ATTR_TABLE): vol.Schema({cv.string: vol.Schema({cv.string: cv.string})}),
    }
)

RESCHEDULE_ALL_SCHEMA = vol.Schema(
    {
        vol.Optional(ATTR_CONFIG_ENTRY_ID): cv.string,
    }
)


async def async_setup(hass: HomeAssistant, config: dict[str, Any]) -> bool:
    """Set up the Prayer Alerts component."""
    hass.data.setdefault(DOMAIN, {})
    _async_register_services(hass)
    return True


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up Prayer Alerts from a config entry."""
    _LOGGER.info("Setting up Prayer Alerts integration")

    apply_debug_logging(get_config_value(entry, CONF_DEBUG_LOGGING, DEFAULT_DEBUG_LOGGING))

    ledger_store = ScheduleLedgerStore(hass, key=ledger_storage_key(entry.entry_id))
    scheduler = HassNotificationScheduler(
        hass, get_config_value(entry, CONF_NOTIFY_SERVICE, DEFAULT_NOTIFY_SERVICE)
    )
    source = AladhanPrayerTimeSource(
        async_get_clientsession(hass),
        latitude=float(get_config_value(entry, CONF_LATITUDE, hass.config.latitude)),
        longitude=float(get_config_value(entry, CONF_LONGITUDE, hass.config.longitude)),
        method=int(get_config_value(entry, CONF_CALC_METHOD, DEFAULT_CALC_METHOD)),
        school=int(get_config_value(entry, CONF_SCHOOL, DEFAULT_SCHOOL)),
    )

    hass.data.setdefault(DOMAIN, {})
    hass.data[DOMAIN][entry.entry_id] = {
        "ledger_store": ledger_store,
        "scheduler": scheduler,
        "reconciler": PrayerNotificationReconciler(ledger_store, scheduler),
        "source": source,
        "last_report": None,
        "last_error": None,
        "pending_count": 0,
        "next_trigger": None,
        "scheduled_dates": [],
        "refresh_timer": None,
    }

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    # Preference changes reconcile in place, no reload
    entry.async_on_unload(entry.add_update_listener(async_update_options))

    _start_refresh_timer(hass, entry)

    if hass.is_running:
        hass.async_create_task(_async_refresh_safely(hass, entry, "setup"))
    else:
        listener_called = False

        async def _on_started(event: Event) -> None:
            nonlocal listener_called
            listener_called = True
            await _async_refresh_safely(hass, entry, "startup")

        unsub_started = hass.bus.async_listen_once(EVENT_HOMEASSISTANT_STARTED, _on_started)

        def _unsub_started() -> None:
            # A fired once-listener is already gone
            if not listener_called:
                unsub_started()

        entry.async_on_unload(_unsub_started)

    _LOGGER.info("Prayer Alerts integration setup complete")
    return True


def _start_refresh_timer(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """(Re)start the periodic refresh timer for an entry."""
    entry_data = hass.data[DOMAIN][entry.entry_id]
    _cancel_refresh_timer(entry_data)

    try:
        interval_minutes = max(1, int(get_config_value(entry, CONF_REFRESH_INTERVAL, DEFAULT_REFRESH_INTERVAL)))
    except (TypeError, ValueError):
        interval_minutes = DEFAULT_REFRESH_INTERVAL

    async def _refresh(now: Any) -> None:
        await _async_refresh_safely(hass, entry, "interval")

    entry_data["refresh_timer"] = async_track_time_interval(
        hass, _refresh, timedelta(minutes=interval_minutes)
    )
    _LOGGER.debug("Refresh timer started (interval: %d minutes)", interval_minutes)


def _cancel_refresh_timer(entry_data: dict[str, Any]) -> None:
    cancel = entry_data.get("refresh_timer")
    if cancel is not None:
        cancel()
        entry_data["refresh_timer"] = None


def _lookahead_days(entry: ConfigEntry) -> int:
    try:
        days = int(get_config_value(entry, CONF_LOOKAHEAD_DAYS, DEFAULT_LOOKAHEAD_DAYS))
    except (TypeError, ValueError):
        days = DEFAULT_LOOKAHEAD_DAYS
    return min(max(days, 1), MAX_LOOKAHEAD_DAYS)


async def async_refresh_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    table: dict[str, dict[str, str]] | None = None,
) -> ReconcileReport | None:
    """Fetch the lookahead window (unless given) and reconcile notifications.

    Returns None when no pass ran because prayer times were unavailable.
    """
    entry_data = hass.data.get(DOMAIN, {}).get(entry.entry_id)
    if entry_data is None:
        _LOGGER.debug("Entry %s not loaded, skipping refresh", entry.entry_id)
        return None

    preferences = Preferences.from_options(merged_config(entry))

    if table is None:
        try:
            table = await entry_data["source"].async_fetch_window(
                dt_util.now().date(), _lookahead_days(entry)
            )
        except PrayerTimesUnavailable as err:
            _LOGGER.warning("Skipping notification refresh: %s", err)
            entry_data["last_error"] = str(err)
            async_dispatcher_send(hass, f"{SIGNAL_REPORT_UPDATED}_{entry.entry_id}")
            return None

    report = await entry_data["reconciler"].async_reconcile(table, preferences)
    entry_data["last_report"] = report
    entry_data["last_error"] = report.error
    await _async_update_schedule_summary(entry_data)

    async_dispatcher_send(hass, f"{SIGNAL_REPORT_UPDATED}_{entry.entry_id}")
    return report


async def async_reschedule_entry(hass: HomeAssistant, entry: ConfigEntry) -> dict[str, Any]:
    """Cancel everything, clear the ledger and schedule the window afresh."""
    entry_data = hass.data[DOMAIN][entry.entry_id]
    reset_report = await entry_data["reconciler"].async_reset()
    report = await async_refresh_entry(hass, entry)
    return {
        "reset": reset_report.as_dict(),
        "report": report.as_dict() if report is not None else None,
        "error": entry_data["last_error"],
    }


async def _async_update_schedule_summary(entry_data: dict[str, Any]) -> None:
    """Cache what the sensor shows: pending count, next trigger, covered dates."""
    try:
        live = await entry_data["scheduler"].async_list_scheduled()
    except Exception as err:
        _LOGGER.debug("Could not list scheduled notifications: %s", err)
        live = set()
    ledger = await entry_data["ledger_store"].async_load()

    entry_data["pending_count"] = len(live)
    entry_data["next_trigger"] = (
        min(item.trigger_at for item in live).isoformat() if live else None
    )
    entry_data["scheduled_dates"] = sorted({item.date.isoformat() for item in ledger})


async def _async_refresh_safely(hass: HomeAssistant, entry: ConfigEntry, reason: str) -> None:
    """Run a refresh from a trigger, logging instead of raising."""
    _LOGGER.debug("Refreshing prayer notifications (%s)", reason)
    try:
        await async_refresh_entry(hass, entry)
    except Exception as err:
        _LOGGER.exception("Prayer notification refresh (%s) failed: %s", reason, err)


def _resolve_entries(hass: HomeAssistant, call: ServiceCall) -> list[ConfigEntry]:
    """Return the loaded entries a service call targets."""
    loaded = hass.data.get(DOMAIN, {})
    entry_id = call.data.get(ATTR_CONFIG_ENTRY_ID)
    if entry_id:
        entry = hass.config_entries.async_get_entry(entry_id)
        if entry is None or entry.entry_id not in loaded:
            raise ServiceValidationError(f"Prayer Alerts entry {entry_id} is not loaded")
        return [entry]

    entries = [
        entry
        for entry in hass.config_entries.async_entries(DOMAIN)
        if entry.entry_id in loaded
    ]
    if not entries:
        raise ServiceValidationError("No Prayer Alerts entry is loaded")
    return entries


def _async_register_services(hass: HomeAssistant) -> None:
    """Register integration services."""
    if hass.services.has_service(DOMAIN, SERVICE_REFRESH):
        return

    async def _handle_refresh(call: ServiceCall) -> ServiceResponse:
        table = call.data.get(ATTR_TABLE)
        reports: dict[str, Any] = {}
        for entry in _resolve_entries(hass, call):
            report = await async_refresh_entry(hass, entry, table)
            reports[entry.entry_id] = {
                "report": report.as_dict() if report is not None else None,
                "error": hass.data[DOMAIN][entry.entry_id]["last_error"],
            }
        return {"entries": reports}

    async def _handle_reschedule_all(call: ServiceCall) -> ServiceResponse:
        results: dict[str, Any] = {}
        for entry in _resolve_entries(hass, call):
            _LOGGER.info("Rescheduling all prayer notifications for %s", entry.title)
            results[entry.entry_id] = await async_reschedule_entry(hass, entry)
        return {"entries": results}

    hass.services.async_register(
        DOMAIN,
        SERVICE_REFRESH,
        _handle_refresh,
        schema=REFRESH_SCHEMA,
        supports_response=SupportsResponse.OPTIONAL,
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_RESCHEDULE_ALL,
        _handle_reschedule_all,
        schema=RESCHEDULE_ALL_SCHEMA,
        supports_response=SupportsResponse.OPTIONAL,
    )


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    _LOGGER.info("Unloading Prayer Alerts integration")

    entry_data = hass.data.get(DOMAIN, {}).get(entry.entry_id, {})
    _cancel_refresh_timer(entry_data)

    # Disarm timers; the ledger stays so the next setup reconciles against it
    try:
        scheduler = entry_data.get("scheduler")
        if scheduler:
            await scheduler.async_shutdown()
    except Exception as err:
        _LOGGER.warning("Error shutting down notification scheduler: %s", err)

    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)

    if unload_ok:
        hass.data[DOMAIN].pop(entry.entry_id, None)

    return unload_ok


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Delete the entry's schedule ledger when the entry is removed."""
    try:
        await ScheduleLedgerStore(hass, key=ledger_storage_key(entry.entry_id)).async_remove()
    except Exception as err:
        _LOGGER.warning("Error removing schedule ledger: %s", err)


async def async_update_options(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Handle options update: apply preferences and reconcile."""
    _LOGGER.debug("Prayer Alerts options updated, reconciling")
    entry_data = hass.data.get(DOMAIN, {}).get(entry.entry_id)
    if entry_data is None:
        return

    apply_debug_logging(get_config_value(entry, CONF_DEBUG_LOGGING, DEFAULT_DEBUG_LOGGING))
    entry_data["scheduler"].set_notify_service(
        get_config_value(entry, CONF_NOTIFY_SERVICE, DEFAULT_NOTIFY_SERVICE)
    )
    _start_refresh_timer(hass, entry)
    await _async_refresh_safely(hass, entry, "options")
