"""Notification capability for Prayer Alerts.

The reconciler only talks to ``NotificationCapability``. The Home Assistant
implementation arms a point-in-time listener per notification and delivers
through a notify service when it fires.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from homeassistant.core import HomeAssistant, callback
from homeassistant.helpers.event import async_track_point_in_time
from homeassistant.util import dt as dt_util

from ..const import DEFAULT_NOTIFY_SERVICE, NOTIFICATION_ID_PREFIX
from ..models import NotificationContent, NotificationScheduleError, ScheduledNotification

_LOGGER = logging.getLogger(__name__)


class NotificationCapability(ABC):
    """Abstract notification capability."""

    @abstractmethod
    async def async_schedule(self, content: NotificationContent, trigger_at: datetime) -> str:
        """Schedule content at trigger_at and return an opaque handle."""

    @abstractmethod
    async def async_cancel(self, handle: str) -> None:
        """Cancel a scheduled notification."""

    @abstractmethod
    async def async_list_scheduled(self) -> set[ScheduledNotification]:
        """Return what is currently scheduled."""


@dataclass
class _PendingNotification:
    handle: str
    content: NotificationContent
    trigger_at: datetime
    unsub: Callable[[], None]


def _split_service(service_name: str) -> tuple[str, str] | None:
    raw = str(service_name or "").strip()
    if not raw:
        return None
    if "." not in raw:
        # Bare target such as "mobile_app_pixel" means notify.<target>
        if raw == DEFAULT_NOTIFY_SERVICE:
            return None
        return "notify", raw
    domain, service = raw.split(".", 1)
    if not domain or not service:
        return None
    return domain, service


class HassNotificationScheduler(NotificationCapability):
    """Schedule notifications on the Home Assistant event loop."""

    def __init__(self, hass: HomeAssistant, notify_service: str = DEFAULT_NOTIFY_SERVICE) -> None:
        self._hass = hass
        self._notify_service = notify_service
        self._pending: dict[str, _PendingNotification] = {}

    @property
    def notify_service(self) -> str:
        return self._notify_service

    def set_notify_service(self, notify_service: str) -> None:
        """Change the delivery target for notifications that fire from now on."""
        self._notify_service = notify_service or DEFAULT_NOTIFY_SERVICE

    async def async_schedule(self, content: NotificationContent, trigger_at: datetime) -> str:
        if trigger_at.tzinfo is None:
            trigger_at = trigger_at.replace(tzinfo=dt_util.DEFAULT_TIME_ZONE)
        if trigger_at <= dt_util.now():
            raise NotificationScheduleError(f"Trigger {trigger_at.isoformat()} is in the past")

        handle = uuid.uuid4().hex

        @callback
        def _fire(_now: datetime) -> None:
            pending = self._pending.pop(handle, None)
            if pending is None:
                return
            self._hass.async_create_task(self._async_deliver(pending))

        unsub = async_track_point_in_time(self._hass, _fire, trigger_at)
        self._pending[handle] = _PendingNotification(handle, content, trigger_at, unsub)
        _LOGGER.debug("Scheduled notification %s '%s' at %s", handle, content.title, trigger_at.isoformat())
        return handle

    async def async_cancel(self, handle: str) -> None:
        pending = self._pending.pop(handle, None)
        if pending is None:
            return
        pending.unsub()
        _LOGGER.debug("Cancelled notification %s '%s'", handle, pending.content.title)

    async def async_list_scheduled(self) -> set[ScheduledNotification]:
        return {
            ScheduledNotification(pending.handle, pending.trigger_at)
            for pending in self._pending.values()
        }

    async def async_shutdown(self) -> None:
        """Disarm every timer, leaving the ledger untouched."""
        for pending in self._pending.values():
            pending.unsub()
        count = len(self._pending)
        self._pending.clear()
        if count:
            _LOGGER.debug("Disarmed %d pending notifications", count)

    async def _async_deliver(self, pending: _PendingNotification) -> None:
        """Deliver a fired notification; delivery failures are logged only."""
        content = pending.content
        target = _split_service(self._notify_service)

        try:
            if target is not None and self._hass.services.has_service(*target):
                domain, service = target
                await self._hass.services.async_call(
                    domain,
                    service,
                    self._build_notify_payload(content),
                    blocking=True,
                )
                return

            if target is not None:
                _LOGGER.warning(
                    "Notify service %s.%s unavailable, falling back to persistent notification",
                    *target,
                )

            from homeassistant.components.persistent_notification import async_create

            async_create(
                self._hass,
                content.message,
                title=content.title,
                notification_id=f"{NOTIFICATION_ID_PREFIX}{pending.handle}",
            )
        except Exception as err:
            _LOGGER.warning("Failed to deliver notification '%s': %s", content.title, err)

    def _build_notify_payload(self, content: NotificationContent) -> dict[str, Any]:
        data: dict[str, Any] = dict(content.data)
        if content.sound:
            # Companion app reads the sound from push options
            data["push"] = {"sound": content.sound}
        return {
            "title": content.title,
            "message": content.message,
            "data": data,
        }
