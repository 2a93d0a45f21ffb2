"""Desired-schedule compiler.

Translates a window of prayer-time tables and a preferences snapshot into the
notification intents that should exist at a given instant. Pure: no I/O, no
clock reads, and malformed input degrades to omitted intents.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any

from homeassistant.util import dt as dt_util

from ..const import (
    ALERT_MESSAGE,
    ALERT_TITLE_TEMPLATE,
    REMINDER_MESSAGE,
    REMINDER_TITLE_TEMPLATE,
    SUNRISE_MESSAGE,
    SUNRISE_TITLE,
)
from ..models import (
    IntentKind,
    NotificationContent,
    NotificationIntent,
    PrayerSession,
    PrayerTimeTable,
    Preferences,
)

_LOGGER = logging.getLogger(__name__)

# "13:05", "5:43", "05:43:00", "05:43 (+08)", "05:43 (SGT)"
_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(?:\([^)]*\))?\s*$")


def parse_table_date(value: Any) -> date | None:
    """Parse a table key into a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        return None


def parse_time_of_day(value: Any) -> time | None:
    """Parse a wall-clock time string, returning None when malformed."""
    if not isinstance(value, str):
        return None
    match = _TIME_PATTERN.match(value)
    if match is None:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        return None
    return time(hours, minutes, seconds)


def compile_intents(
    table: PrayerTimeTable,
    preferences: Preferences,
    now: datetime,
) -> list[NotificationIntent]:
    """Compile the notification intents that should exist at ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_util.DEFAULT_TIME_ZONE)
    tzinfo = now.tzinfo
    sound = preferences.sound
    lead_minutes = max(0, int(preferences.reminder_lead_minutes or 0))

    intents: list[NotificationIntent] = []
    for raw_date, sessions in table.items():
        day = parse_table_date(raw_date)
        if day is None:
            _LOGGER.debug("Skipping malformed table date %r", raw_date)
            continue
        if not hasattr(sessions, "items"):
            _LOGGER.debug("Skipping malformed sessions for %s", day)
            continue

        for raw_name, raw_time in sessions.items():
            session = PrayerSession.from_name(raw_name)
            if session is None:
                _LOGGER.debug("Skipping unknown session %r on %s", raw_name, day)
                continue
            if preferences.is_muted(session):
                continue

            time_of_day = parse_time_of_day(raw_time)
            if time_of_day is None:
                _LOGGER.debug("Skipping malformed time %r for %s on %s", raw_time, session.value, day)
                continue

            trigger_at = datetime.combine(day, time_of_day, tzinfo=tzinfo)
            if trigger_at <= now:
                continue

            if session.is_informational:
                intents.append(
                    NotificationIntent(day, session, IntentKind.ALERT, trigger_at, sound_id=None)
                )
                continue

            intents.append(
                NotificationIntent(day, session, IntentKind.ALERT, trigger_at, sound_id=sound)
            )

            if lead_minutes > 0:
                reminder_at = trigger_at - timedelta(minutes=lead_minutes)
                if reminder_at > now:
                    intents.append(
                        NotificationIntent(
                            day,
                            session,
                            IntentKind.REMINDER,
                            reminder_at,
                            sound_id=None,
                            lead_minutes=lead_minutes,
                        )
                    )

    # Duplicate keys (e.g. "Fajr" and "Subuh" on one date) collapse to the first.
    unique: dict[tuple, NotificationIntent] = {}
    for intent in intents:
        unique.setdefault(intent.key, intent)

    return sorted(unique.values(), key=lambda intent: intent.sort_key)


def render_content(intent: NotificationIntent) -> NotificationContent:
    """Render the user-facing content for an intent."""
    data = {
        "date": intent.date.isoformat(),
        "session": intent.session.value,
        "kind": intent.kind.value,
    }

    if intent.session.is_informational:
        return NotificationContent(SUNRISE_TITLE, SUNRISE_MESSAGE, sound=None, data=data)

    if intent.kind is IntentKind.REMINDER:
        return NotificationContent(
            REMINDER_TITLE_TEMPLATE.format(session=intent.session.value, minutes=intent.lead_minutes),
            REMINDER_MESSAGE,
            sound=None,
            data=data,
        )

    if intent.sound_id:
        data["sound"] = intent.sound_id
    return NotificationContent(
        ALERT_TITLE_TEMPLATE.format(session=intent.session.value),
        ALERT_MESSAGE,
        sound=intent.sound_id,
        data=data,
    )
