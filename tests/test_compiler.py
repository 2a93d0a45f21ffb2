"""Tests for the Prayer Alerts desired-schedule compiler."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import pytest

from custom_components.prayer_alerts.models import (
    IntentKind,
    PrayerSession,
    Preferences,
)
from custom_components.prayer_alerts.scheduling.compiler import (
    compile_intents,
    parse_table_date,
    parse_time_of_day,
    render_content,
)

SGT = timezone(timedelta(hours=8))
DAY = date(2025, 3, 2)


def _at(hour: int, minute: int, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=SGT)


def _summary(intents) -> list[tuple]:
    return [
        (intent.session, intent.kind, intent.trigger_at, intent.sound_id)
        for intent in intents
    ]


class TestParsing:
    """Test table date and time parsing."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("13:05", time(13, 5)),
            ("5:43", time(5, 43)),
            ("05:43:20", time(5, 43, 20)),
            ("05:43 (+08)", time(5, 43)),
            (" 19:21 (SGT) ", time(19, 21)),
        ],
    )
    def test_valid_times(self, raw: str, expected: time) -> None:
        """Accepted time formats parse to wall-clock times."""
        assert parse_time_of_day(raw) == expected

    @pytest.mark.parametrize("raw", ["", "25:00", "12:60", "noon", "1305", None, 1305])
    def test_malformed_times(self, raw) -> None:
        """Malformed or out-of-range times parse to None."""
        assert parse_time_of_day(raw) is None

    def test_table_dates(self) -> None:
        """Dates may be ISO strings, dates, or datetimes."""
        assert parse_table_date("2025-03-02") == DAY
        assert parse_table_date(DAY) == DAY
        assert parse_table_date(_at(10, 0)) == DAY
        assert parse_table_date("02-03-2025") is None


class TestCompileIntents:
    """Test compile_intents."""

    table = {"2025-03-02": {"Zohor": "13:05", "Syuruk": "07:10"}}
    preferences = Preferences(reminder_lead_minutes=10, alert_sound_id="X")

    def test_early_morning_scenario(self) -> None:
        """Before sunrise every future intent is compiled, Syuruk without reminder."""
        intents = compile_intents(self.table, self.preferences, _at(6, 0))

        assert _summary(intents) == [
            (PrayerSession.SYURUK, IntentKind.ALERT, _at(7, 10), None),
            (PrayerSession.ZOHOR, IntentKind.ALERT, _at(13, 5), "X"),
            (PrayerSession.ZOHOR, IntentKind.REMINDER, _at(12, 55), None),
        ]

    def test_midday_scenario(self) -> None:
        """Past instants and reminders already due are omitted."""
        intents = compile_intents(self.table, self.preferences, _at(13, 0))

        assert _summary(intents) == [
            (PrayerSession.ZOHOR, IntentKind.ALERT, _at(13, 5), "X"),
        ]

    def test_muted_session_compiles_nothing(self) -> None:
        """A muted session gets neither alert nor reminder."""
        preferences = Preferences(
            reminder_lead_minutes=10,
            muted_sessions=frozenset({PrayerSession.ZOHOR}),
            alert_sound_id="X",
        )

        intents = compile_intents(self.table, preferences, _at(6, 0))

        assert all(intent.session is not PrayerSession.ZOHOR for intent in intents)
        assert len(intents) == 1

    def test_prayer_at_now_is_excluded(self) -> None:
        """An instant equal to now is treated as past."""
        intents = compile_intents(self.table, self.preferences, _at(13, 5))

        assert intents == []

    def test_reminder_at_now_is_dropped(self) -> None:
        """A reminder landing exactly on now is dropped while its alert stays."""
        intents = compile_intents(self.table, self.preferences, _at(12, 55))

        assert _summary(intents) == [
            (PrayerSession.ZOHOR, IntentKind.ALERT, _at(13, 5), "X"),
        ]

    def test_reminder_lead_consistency(self) -> None:
        """Every reminder sits exactly lead minutes before its alert."""
        table = {
            "2025-03-02": {"Subuh": "05:43", "Asar": "16:28", "Maghrib": "19:18", "Isyak": "20:32"},
            "2025-03-03": {"Subuh": "05:43", "Asar": "16:27"},
        }
        preferences = Preferences(reminder_lead_minutes=15)

        intents = compile_intents(table, preferences, _at(5, 35))
        alerts = {(i.date, i.session): i for i in intents if i.kind is IntentKind.ALERT}
        reminders = [i for i in intents if i.kind is IntentKind.REMINDER]

        assert reminders
        for reminder in reminders:
            alert = alerts[(reminder.date, reminder.session)]
            assert reminder.trigger_at == alert.trigger_at - timedelta(minutes=15)
            assert reminder.trigger_at > _at(5, 35)
            assert reminder.lead_minutes == 15
        # 05:28 reminder for today's Subuh is already past
        assert (DAY, PrayerSession.SUBUH) not in {(r.date, r.session) for r in reminders}

    def test_no_reminders_when_lead_is_zero(self) -> None:
        """A zero lead disables reminders."""
        intents = compile_intents(self.table, Preferences(), _at(6, 0))

        assert {intent.kind for intent in intents} == {IntentKind.ALERT}

    def test_sound_none_means_silent(self) -> None:
        """The "none" sound id compiles to no sound."""
        intents = compile_intents(self.table, Preferences(alert_sound_id="None"), _at(6, 0))

        assert all(intent.sound_id is None for intent in intents)

    def test_malformed_entries_are_skipped(self) -> None:
        """Bad dates, bad times, and unknown sessions drop only themselves."""
        table = {
            "not-a-date": {"Zohor": "13:05"},
            "2025-03-02": {"Zohor": "1:5pm", "Asar": "16:28", "Tahajjud": "03:00"},
            "2025-03-03": "garbage",
        }

        intents = compile_intents(table, Preferences(), _at(6, 0))

        assert _summary(intents) == [(PrayerSession.ASAR, IntentKind.ALERT, _at(16, 28), None)]

    def test_english_names_and_duplicates(self) -> None:
        """Aladhan names resolve to local sessions; duplicates keep the first."""
        table = {DAY: {"Dhuhr": "13:05", "Zohor": "13:06", "isha": "20:32"}}

        intents = compile_intents(table, Preferences(), _at(6, 0))

        assert _summary(intents) == [
            (PrayerSession.ZOHOR, IntentKind.ALERT, _at(13, 5), None),
            (PrayerSession.ISYAK, IntentKind.ALERT, _at(20, 32), None),
        ]

    def test_ordering_across_dates(self) -> None:
        """Intents are ordered by date, then session, then kind."""
        table = {
            "2025-03-03": {"Isyak": "20:32", "Subuh": "05:43"},
            "2025-03-02": {"Maghrib": "19:18", "Asar": "16:28"},
        }

        intents = compile_intents(table, Preferences(reminder_lead_minutes=5), _at(6, 0))

        assert [intent.sort_key for intent in intents] == sorted(intent.sort_key for intent in intents)
        assert intents[0].date == DAY
        assert intents[-1].session is PrayerSession.ISYAK

    def test_compile_is_deterministic(self) -> None:
        """The same inputs always compile to the same intents."""
        first = compile_intents(self.table, self.preferences, _at(6, 0))
        second = compile_intents(self.table, self.preferences, _at(6, 0))

        assert first == second


class TestRenderContent:
    """Test notification content rendering."""

    def test_alert_content(self) -> None:
        """Alerts carry the prayer title and the configured sound."""
        intent = compile_intents(
            {"2025-03-02": {"Zohor": "13:05"}},
            Preferences(alert_sound_id="mishary_rashid_alafasy"),
            _at(6, 0),
        )[0]

        content = render_content(intent)

        assert content.title == "Zohor Prayer Time"
        assert content.message == "Time for prayer"
        assert content.sound == "mishary_rashid_alafasy"
        assert content.data["sound"] == "mishary_rashid_alafasy"
        assert content.data["kind"] == "alert"

    def test_reminder_content(self) -> None:
        """Reminders announce the lead time without sound."""
        intents = compile_intents(
            {"2025-03-02": {"Asar": "16:28"}},
            Preferences(reminder_lead_minutes=20, alert_sound_id="X"),
            _at(6, 0),
        )
        reminder = next(intent for intent in intents if intent.kind is IntentKind.REMINDER)

        content = render_content(reminder)

        assert content.title == "Asar in 20 minutes"
        assert content.message == "Time to prepare for prayer"
        assert content.sound is None

    def test_sunrise_content(self) -> None:
        """Syuruk is informational and silent."""
        intent = compile_intents(
            {"2025-03-02": {"Syuruk": "07:10"}},
            Preferences(alert_sound_id="X"),
            _at(6, 0),
        )[0]

        content = render_content(intent)

        assert content.title == "Syuruk"
        assert content.message == "Sunrise. Subuh time has ended."
        assert content.sound is None
