"""Prayer-time source backed by the Aladhan API."""

from __future__ import annotations

import json
import logging
import re
from datetime import date, timedelta
from typing import Any

import aiohttp

from .const import (
    ALADHAN_API_URL,
    ALADHAN_TIMEOUT_SECONDS,
    ALADHAN_TIMINGS,
    DEFAULT_CALC_METHOD,
    DEFAULT_SCHOOL,
)
from .models import PrayerTimesUnavailable

_LOGGER = logging.getLogger(__name__)

# Aladhan appends the zone to each timing, e.g. "05:43 (+08)"
_ANNOTATION_PATTERN = re.compile(r"\s*\([^)]*\)\s*$")


def strip_time_annotation(value: Any) -> str | None:
    """Return the bare HH:MM part of an Aladhan timing."""
    if not isinstance(value, str):
        return None
    stripped = _ANNOTATION_PATTERN.sub("", value).strip()
    return stripped or None


class AladhanPrayerTimeSource:
    """Fetch a window of daily prayer-time tables from Aladhan."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        latitude: float,
        longitude: float,
        method: int = DEFAULT_CALC_METHOD,
        school: int = DEFAULT_SCHOOL,
    ) -> None:
        self._session = session
        self._latitude = latitude
        self._longitude = longitude
        self._method = method
        self._school = school

    async def async_fetch_window(self, start: date, days: int) -> dict[str, dict[str, str]]:
        """Fetch ``days`` consecutive tables starting at ``start``.

        Days that fail are logged and left out. Raises PrayerTimesUnavailable
        only when nothing could be fetched at all.
        """
        if days < 1:
            raise ValueError("days must be at least 1")

        table: dict[str, dict[str, str]] = {}
        last_error: Exception | None = None
        for offset in range(days):
            day = start + timedelta(days=offset)
            try:
                table[day.isoformat()] = await self.async_fetch_day(day)
            except PrayerTimesUnavailable as err:
                _LOGGER.warning("Prayer times for %s unavailable: %s", day.isoformat(), err)
                last_error = err

        if not table:
            raise PrayerTimesUnavailable(
                f"No prayer times fetched for {days} day(s) from {start.isoformat()}: {last_error}"
            )

        _LOGGER.debug("Fetched prayer times for %d of %d day(s)", len(table), days)
        return table

    async def async_fetch_day(self, day: date) -> dict[str, str]:
        """Fetch the timings of one day, keyed by local session name."""
        url = f"{ALADHAN_API_URL}/{day.strftime('%d-%m-%Y')}"
        params = {
            "latitude": str(self._latitude),
            "longitude": str(self._longitude),
            "method": str(self._method),
            "school": str(self._school),
        }

        try:
            async with self._session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=ALADHAN_TIMEOUT_SECONDS),
            ) as response:
                if response.status != 200:
                    raise PrayerTimesUnavailable(f"Aladhan returned status {response.status}")
                payload = await response.json()
        except (aiohttp.ClientError, TimeoutError, json.JSONDecodeError) as err:
            raise PrayerTimesUnavailable(f"Aladhan request failed: {err}") from err

        return self._parse_timings(payload)

    @staticmethod
    def _parse_timings(payload: Any) -> dict[str, str]:
        if not isinstance(payload, dict) or payload.get("code") != 200:
            status = payload.get("status") if isinstance(payload, dict) else None
            raise PrayerTimesUnavailable(f"Aladhan error: {status or 'unexpected response'}")

        data = payload.get("data")
        timings = data.get("timings") if isinstance(data, dict) else None
        if not isinstance(timings, dict):
            raise PrayerTimesUnavailable("Aladhan response has no timings")

        sessions: dict[str, str] = {}
        for api_name, session_name in ALADHAN_TIMINGS.items():
            value = strip_time_annotation(timings.get(api_name))
            if value is not None:
                sessions[session_name] = value

        if not sessions:
            raise PrayerTimesUnavailable("Aladhan timings contain no known prayers")
        return sessions
