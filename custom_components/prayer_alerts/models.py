"""Data models for prayer notification scheduling."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from .const import ALERT_SOUND_NONE, CONF_ALERT_SOUND, CONF_MUTED_SESSIONS, CONF_REMINDER_LEAD_MINUTES

# date (ISO string or date) -> session name -> wall-clock time string
PrayerTimeTable = Mapping[Any, Mapping[str, str]]


class PrayerAlertsError(Exception):
    """Base exception for Prayer Alerts errors."""


class NotificationScheduleError(PrayerAlertsError):
    """The notification capability rejected a schedule or cancel request."""


class LedgerPersistError(PrayerAlertsError):
    """The schedule ledger could not be written."""


class PrayerTimesUnavailable(PrayerAlertsError):
    """No prayer-time data could be fetched for the requested window."""


class PrayerSession(str, Enum):
    """Prayer sessions of a day, in daily order."""

    SUBUH = "Subuh"
    SYURUK = "Syuruk"
    ZOHOR = "Zohor"
    ASAR = "Asar"
    MAGHRIB = "Maghrib"
    ISYAK = "Isyak"

    @property
    def order(self) -> int:
        """Position of the session within the day."""
        return _SESSION_ORDER[self]

    @property
    def is_informational(self) -> bool:
        """Sunrise marks the end of Subuh; it is announced but never alarmed."""
        return self is PrayerSession.SYURUK

    @classmethod
    def from_name(cls, raw: Any) -> PrayerSession | None:
        """Resolve a local or English session name, case-insensitively."""
        if isinstance(raw, PrayerSession):
            return raw
        key = str(raw or "").strip().casefold()
        if not key:
            return None
        return _SESSION_LOOKUP.get(key)


_SESSION_ORDER: dict[PrayerSession, int] = {
    session: index for index, session in enumerate(PrayerSession)
}

_SESSION_LOOKUP: dict[str, PrayerSession] = {
    **{session.value.casefold(): session for session in PrayerSession},
    "fajr": PrayerSession.SUBUH,
    "sunrise": PrayerSession.SYURUK,
    "dhuhr": PrayerSession.ZOHOR,
    "zuhr": PrayerSession.ZOHOR,
    "asr": PrayerSession.ASAR,
    "isha": PrayerSession.ISYAK,
}


class IntentKind(str, Enum):
    """Kind of a desired notification."""

    ALERT = "alert"
    REMINDER = "reminder"

    @property
    def order(self) -> int:
        """Ordering of kinds within one session."""
        return 0 if self is IntentKind.ALERT else 1


class ReconcileState(str, Enum):
    """Phase of a reconciliation pass."""

    IDLE = "idle"
    LOADING = "loading"
    DIFFING = "diffing"
    APPLYING = "applying"
    PERSISTING = "persisting"


@dataclass(frozen=True)
class Preferences:
    """Immutable snapshot of the user's notification preferences."""

    reminder_lead_minutes: int = 0
    muted_sessions: frozenset[PrayerSession] = frozenset()
    alert_sound_id: str = ALERT_SOUND_NONE

    @property
    def sound(self) -> str | None:
        """Sound identifier for alerts, or None when silenced."""
        value = (self.alert_sound_id or "").strip()
        if not value or value.casefold() == ALERT_SOUND_NONE:
            return None
        return value

    def is_muted(self, session: PrayerSession) -> bool:
        """Return True when notifications for session are muted."""
        return session in self.muted_sessions

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> Preferences:
        """Build a snapshot from config entry options, tolerating bad values."""
        try:
            lead = int(options.get(CONF_REMINDER_LEAD_MINUTES, 0) or 0)
        except (TypeError, ValueError):
            lead = 0

        raw_muted = options.get(CONF_MUTED_SESSIONS) or []
        if isinstance(raw_muted, str):
            raw_muted = [raw_muted]
        muted = frozenset(
            session
            for session in (PrayerSession.from_name(name) for name in raw_muted)
            if session is not None
        )

        sound = str(options.get(CONF_ALERT_SOUND) or ALERT_SOUND_NONE).strip() or ALERT_SOUND_NONE
        return cls(
            reminder_lead_minutes=max(0, lead),
            muted_sessions=muted,
            alert_sound_id=sound,
        )


@dataclass(frozen=True)
class NotificationIntent:
    """A notification that should exist with the notification capability."""

    date: date
    session: PrayerSession
    kind: IntentKind
    trigger_at: datetime
    sound_id: str | None = None
    lead_minutes: int = 0

    @property
    def key(self) -> tuple[date, PrayerSession, IntentKind]:
        """Identity of the intent within one pass."""
        return (self.date, self.session, self.kind)

    @property
    def sort_key(self) -> tuple[date, int, int]:
        """Stable ordering: date, then session, then kind."""
        return (self.date, self.session.order, self.kind.order)

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "date": self.date.isoformat(),
            "session": self.session.value,
            "kind": self.kind.value,
            "trigger_at": self.trigger_at.isoformat(),
            "sound_id": self.sound_id,
        }


@dataclass(frozen=True)
class NotificationContent:
    """What the user sees when a notification fires."""

    title: str
    message: str
    sound: str | None = None
    data: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class ScheduledNotification:
    """One entry reported by the notification capability."""

    handle: str
    trigger_at: datetime


@dataclass
class ReconcileFailure:
    """An intent that could not be scheduled."""

    intent: NotificationIntent
    error: str


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""

    created: int = 0
    cancelled: int = 0
    failed: list[ReconcileFailure] = field(default_factory=list)
    cancel_failures: list[tuple[str, str]] = field(default_factory=list)
    persist_error: str | None = None
    error: str | None = None
    coalesced: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        """True when every requested change went through."""
        return (
            not self.failed
            and not self.cancel_failures
            and self.persist_error is None
            and self.error is None
        )

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "created": self.created,
            "cancelled": self.cancelled,
            "failed": [
                {"intent": failure.intent.as_dict(), "error": failure.error}
                for failure in self.failed
            ],
            "cancel_failures": [
                {"handle": handle, "error": error} for handle, error in self.cancel_failures
            ],
            "persist_error": self.persist_error,
            "error": self.error,
            "coalesced": self.coalesced,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
