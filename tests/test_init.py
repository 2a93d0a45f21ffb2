"""Tests for Prayer Alerts integration setup, refresh and services."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from custom_components.prayer_alerts import (
    _async_register_services,
    async_refresh_entry,
    async_remove_entry,
    async_reschedule_entry,
    async_update_options,
)
from custom_components.prayer_alerts.const import (
    CONF_LOOKAHEAD_DAYS,
    CONF_MUTED_SESSIONS,
    CONF_NOTIFY_SERVICE,
    CONF_REMINDER_LEAD_MINUTES,
    DOMAIN,
    SERVICE_REFRESH,
    SERVICE_RESCHEDULE_ALL,
)
from custom_components.prayer_alerts.models import (
    IntentKind,
    PrayerSession,
    PrayerTimesUnavailable,
    ReconcileReport,
    ScheduledNotification,
)
from custom_components.prayer_alerts.scheduling.ledger import (
    Ledger,
    LedgerEntry,
    LedgerHandle,
    ScheduleLedgerStore,
)

DISPATCH_PATH = "custom_components.prayer_alerts.async_dispatcher_send"
SGT = timezone(timedelta(hours=8))
FIRST = datetime(2099, 3, 2, 13, 5, tzinfo=SGT)
TABLE = {"2099-03-02": {"Zohor": "13:05"}}


def _entry(options: dict | None = None) -> MagicMock:
    entry = MagicMock()
    entry.entry_id = "entry_1"
    entry.title = "Home"
    entry.data = {"latitude": 1.35, "longitude": 103.82}
    entry.options = options or {}
    return entry


async def _setup(options: dict | None = None) -> tuple[MagicMock, MagicMock, dict]:
    hass = MagicMock()
    entry = _entry(options)
    ledger_store = ScheduleLedgerStore(hass=None)
    entry_record = LedgerEntry(date(2099, 3, 2), PrayerSession.ZOHOR)
    entry_record.add(LedgerHandle("h1", IntentKind.ALERT, FIRST))
    await ledger_store.async_save(Ledger([entry_record]))

    entry_data = {
        "ledger_store": ledger_store,
        "scheduler": MagicMock(
            async_list_scheduled=AsyncMock(
                return_value={
                    ScheduledNotification("h1", FIRST),
                    ScheduledNotification("h2", FIRST + timedelta(days=1)),
                }
            )
        ),
        "reconciler": MagicMock(
            async_reconcile=AsyncMock(return_value=ReconcileReport(created=2)),
            async_reset=AsyncMock(return_value=ReconcileReport(cancelled=3)),
        ),
        "source": MagicMock(async_fetch_window=AsyncMock(return_value=TABLE)),
        "last_report": None,
        "last_error": None,
        "pending_count": 0,
        "next_trigger": None,
        "scheduled_dates": [],
        "refresh_timer": None,
    }
    hass.data = {DOMAIN: {entry.entry_id: entry_data}}
    hass.config_entries.async_entries = MagicMock(return_value=[entry])
    hass.config_entries.async_get_entry = MagicMock(return_value=entry)
    return hass, entry, entry_data


class TestRefresh:
    """Test refreshing an entry."""

    @pytest.mark.asyncio
    async def test_refresh_fetches_and_reconciles(self) -> None:
        """A refresh reconciles the fetched window with current preferences."""
        hass, entry, entry_data = await _setup(
            {CONF_REMINDER_LEAD_MINUTES: 10, CONF_MUTED_SESSIONS: ["Asar"]}
        )

        with patch(DISPATCH_PATH) as dispatch:
            report = await async_refresh_entry(hass, entry)

        assert report.created == 2
        table, preferences = entry_data["reconciler"].async_reconcile.call_args.args
        assert table == TABLE
        assert preferences.reminder_lead_minutes == 10
        assert preferences.muted_sessions == frozenset({PrayerSession.ASAR})
        assert entry_data["last_report"] is report
        assert entry_data["pending_count"] == 2
        assert entry_data["next_trigger"] == FIRST.isoformat()
        assert entry_data["scheduled_dates"] == ["2099-03-02"]
        dispatch.assert_called_once_with(hass, f"{DOMAIN}_report_updated_entry_1")

    @pytest.mark.asyncio
    async def test_refresh_uses_default_lookahead(self) -> None:
        """The default window is five days."""
        hass, entry, entry_data = await _setup()

        with patch(DISPATCH_PATH):
            await async_refresh_entry(hass, entry)

        _start, days = entry_data["source"].async_fetch_window.call_args.args
        assert days == 5

    @pytest.mark.asyncio
    async def test_refresh_clamps_lookahead(self) -> None:
        """Oversized windows are clamped."""
        hass, entry, entry_data = await _setup({CONF_LOOKAHEAD_DAYS: 99})

        with patch(DISPATCH_PATH):
            await async_refresh_entry(hass, entry)

        _start, days = entry_data["source"].async_fetch_window.call_args.args
        assert days == 14

    @pytest.mark.asyncio
    async def test_explicit_table_skips_fetch(self) -> None:
        """A supplied table is reconciled as-is."""
        hass, entry, entry_data = await _setup()
        table = {"2099-03-03": {"Asar": "16:28"}}

        with patch(DISPATCH_PATH):
            await async_refresh_entry(hass, entry, table)

        entry_data["source"].async_fetch_window.assert_not_awaited()
        assert entry_data["reconciler"].async_reconcile.call_args.args[0] == table

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_pass(self) -> None:
        """Without prayer times no pass runs and the error is kept."""
        hass, entry, entry_data = await _setup()
        entry_data["source"].async_fetch_window = AsyncMock(
            side_effect=PrayerTimesUnavailable("offline")
        )

        with patch(DISPATCH_PATH) as dispatch:
            report = await async_refresh_entry(hass, entry)

        assert report is None
        assert entry_data["last_error"] == "offline"
        entry_data["reconciler"].async_reconcile.assert_not_awaited()
        dispatch.assert_called_once()

    @pytest.mark.asyncio
    async def test_unloaded_entry_is_ignored(self) -> None:
        hass, entry, _entry_data = await _setup()
        hass.data = {DOMAIN: {}}

        assert await async_refresh_entry(hass, entry) is None

    @pytest.mark.asyncio
    async def test_reschedule_resets_then_refreshes(self) -> None:
        """Force reschedule clears everything before a fresh pass."""
        hass, entry, entry_data = await _setup()

        with patch(DISPATCH_PATH):
            result = await async_reschedule_entry(hass, entry)

        entry_data["reconciler"].async_reset.assert_awaited_once()
        entry_data["reconciler"].async_reconcile.assert_awaited_once()
        assert result["reset"]["cancelled"] == 3
        assert result["report"]["created"] == 2


class TestOptionsUpdate:
    """Test preference changes."""

    @pytest.mark.asyncio
    async def test_options_update_reconciles_without_reload(self) -> None:
        """Changing options updates the scheduler and runs a pass."""
        hass, entry, entry_data = await _setup({CONF_NOTIFY_SERVICE: "mobile_app_phone"})

        with patch(DISPATCH_PATH), patch(
            "custom_components.prayer_alerts.async_track_time_interval",
            return_value=MagicMock(),
        ) as track:
            await async_update_options(hass, entry)

        entry_data["scheduler"].set_notify_service.assert_called_once_with("mobile_app_phone")
        entry_data["reconciler"].async_reconcile.assert_awaited_once()
        track.assert_called_once()
        assert track.call_args.args[2] == timedelta(minutes=60)
        hass.config_entries.async_reload.assert_not_called()


class TestServices:
    """Test service handlers."""

    def _handlers(self, hass: MagicMock) -> dict:
        hass.services.has_service = MagicMock(return_value=False)
        _async_register_services(hass)
        return {
            call.args[1]: call.args[2]
            for call in hass.services.async_register.call_args_list
        }

    @pytest.mark.asyncio
    async def test_refresh_service_returns_reports(self) -> None:
        """The refresh service responds with each entry's report."""
        hass, _entry, entry_data = await _setup()
        handlers = self._handlers(hass)
        call = MagicMock()
        call.data = {"table": TABLE}

        with patch(DISPATCH_PATH):
            response = await handlers[SERVICE_REFRESH](call)

        assert response["entries"]["entry_1"]["report"]["created"] == 2
        entry_data["source"].async_fetch_window.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reschedule_all_service(self) -> None:
        """The reschedule service resets and refreshes each entry."""
        hass, _entry, entry_data = await _setup()
        handlers = self._handlers(hass)
        call = MagicMock()
        call.data = {}

        with patch(DISPATCH_PATH):
            response = await handlers[SERVICE_RESCHEDULE_ALL](call)

        assert response["entries"]["entry_1"]["reset"]["cancelled"] == 3
        entry_data["reconciler"].async_reset.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_entry_is_rejected(self) -> None:
        """Targeting an entry that is not loaded raises a validation error."""
        from homeassistant.exceptions import ServiceValidationError

        hass, _entry, _entry_data = await _setup()
        hass.config_entries.async_get_entry = MagicMock(return_value=None)
        handlers = self._handlers(hass)
        call = MagicMock()
        call.data = {"config_entry_id": "missing"}

        with pytest.raises(ServiceValidationError):
            await handlers[SERVICE_REFRESH](call)


class TestRemoveEntry:
    """Test removing a config entry."""

    @pytest.mark.asyncio
    async def test_remove_deletes_entry_ledger(self) -> None:
        """Removal deletes only that entry's ledger document."""
        hass, entry, _entry_data = await _setup()

        with patch("custom_components.prayer_alerts.scheduling.ledger.Store") as store_cls:
            store_cls.return_value.async_remove = AsyncMock()
            await async_remove_entry(hass, entry)

        store_cls.assert_called_once_with(hass, 1, "prayer_alerts.schedule_ledger.entry_1")
        store_cls.return_value.async_remove.assert_awaited_once()
