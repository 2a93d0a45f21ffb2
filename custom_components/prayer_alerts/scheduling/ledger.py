"""Schedule ledger for Prayer Alerts.

Records which notification handles were last believed live for each
(date, session) so repeated passes stay idempotent. The ledger is bookkeeping
only: the notification capability's own listing is ground truth, and a
reconciliation pass is the only writer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from homeassistant.core import HomeAssistant
from homeassistant.helpers.storage import Store
from homeassistant.util import dt as dt_util

from ..const import LEDGER_STORAGE_KEY, LEDGER_STORAGE_VERSION
from ..models import (
    IntentKind,
    LedgerPersistError,
    NotificationIntent,
    PrayerSession,
    ScheduledNotification,
)

_LOGGER = logging.getLogger(__name__)

EntryKey = tuple[date, PrayerSession]
IntentKey = tuple[date, PrayerSession, IntentKind]


def _empty_store_data() -> dict[str, Any]:
    """Return empty ledger storage structure."""
    return {
        "version": LEDGER_STORAGE_VERSION,
        "entries": [],
    }


def _parse_instant(value: Any) -> datetime | None:
    """Parse a stored ISO instant into an aware datetime."""
    if not isinstance(value, str) or not value:
        return None
    parsed = dt_util.parse_datetime(value)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_util.DEFAULT_TIME_ZONE)
    return parsed


@dataclass(frozen=True)
class LedgerHandle:
    """One notification handle recorded under a ledger entry."""

    handle: str
    kind: IntentKind
    trigger_at: datetime
    sound_id: str | None = None

    def matches(self, intent: NotificationIntent) -> bool:
        """Return True when this record still describes intent exactly."""
        return (
            self.kind is intent.kind
            and self.trigger_at == intent.trigger_at
            and self.sound_id == intent.sound_id
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "kind": self.kind.value,
            "trigger_at": self.trigger_at.isoformat(),
            "sound_id": self.sound_id,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> LedgerHandle | None:
        if not isinstance(raw, dict):
            return None
        handle = str(raw.get("handle") or "").strip()
        trigger_at = _parse_instant(raw.get("trigger_at"))
        try:
            kind = IntentKind(raw.get("kind"))
        except ValueError:
            return None
        if not handle or trigger_at is None:
            return None
        sound_id = raw.get("sound_id")
        return cls(
            handle=handle,
            kind=kind,
            trigger_at=trigger_at,
            sound_id=str(sound_id) if sound_id else None,
        )


@dataclass
class LedgerEntry:
    """Handles believed live for one (date, session)."""

    date: date
    session: PrayerSession
    handles: list[LedgerHandle] = field(default_factory=list)

    @property
    def key(self) -> EntryKey:
        return (self.date, self.session)

    @property
    def last_trigger_at(self) -> datetime | None:
        """Latest trigger instant recorded for this entry."""
        if not self.handles:
            return None
        return max(record.trigger_at for record in self.handles)

    def add(self, record: LedgerHandle) -> None:
        """Add a handle, replacing any record with the same handle id."""
        self.handles = [item for item in self.handles if item.handle != record.handle]
        self.handles.append(record)
        self.handles.sort(key=lambda item: (item.kind.order, item.trigger_at, item.handle))

    def to_dict(self) -> dict[str, Any]:
        last_trigger = self.last_trigger_at
        return {
            "date": self.date.isoformat(),
            "session": self.session.value,
            "handles": [record.to_dict() for record in self.handles],
            "last_trigger_at": last_trigger.isoformat() if last_trigger else None,
        }


@dataclass
class LedgerDiff:
    """Changes needed to bring the notification capability to the desired state."""

    to_cancel: list[str] = field(default_factory=list)
    to_create: list[NotificationIntent] = field(default_factory=list)
    kept: dict[IntentKey, LedgerHandle] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.to_cancel and not self.to_create


class Ledger:
    """In-memory view of the persisted schedule ledger."""

    def __init__(self, entries: Iterable[LedgerEntry] | None = None) -> None:
        self._entries: dict[EntryKey, LedgerEntry] = {}
        for entry in entries or []:
            for record in entry.handles:
                self._record(entry.date, entry.session, record)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LedgerEntry]:
        return iter(sorted(self._entries.values(), key=lambda entry: (entry.date, entry.session.order)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ledger):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def get(self, day: date, session: PrayerSession) -> LedgerEntry | None:
        """Return the entry for (day, session) if one exists."""
        return self._entries.get((day, session))

    def handles(self) -> list[str]:
        """Return every recorded handle."""
        return [record.handle for entry in self for record in entry.handles]

    def _record(self, day: date, session: PrayerSession, record: LedgerHandle) -> None:
        entry = self._entries.get((day, session))
        if entry is None:
            entry = LedgerEntry(day, session)
            self._entries[(day, session)] = entry
        entry.add(record)

    def diff(
        self,
        desired: list[NotificationIntent],
        live: Iterable[ScheduledNotification | str],
    ) -> LedgerDiff:
        """Diff recorded handles against desired intents and the live snapshot.

        A recorded handle is kept only when the capability still lists it and
        its recorded trigger (and sound) match the desired intent for the same
        (date, session, kind). Everything else recorded is cancelled, and live
        handles the ledger does not know are cancelled as orphans.
        """
        live_by_handle: dict[str, datetime | None] = {}
        for item in live:
            if isinstance(item, ScheduledNotification):
                live_by_handle[item.handle] = item.trigger_at
            else:
                live_by_handle[str(item)] = None

        desired_by_key: dict[IntentKey, NotificationIntent] = {}
        for intent in desired:
            desired_by_key.setdefault(intent.key, intent)

        result = LedgerDiff()
        known: set[str] = set()
        for entry in self:
            for record in entry.handles:
                known.add(record.handle)
                key = (entry.date, entry.session, record.kind)
                intent = desired_by_key.get(key)
                live_trigger = live_by_handle.get(record.handle)
                is_live = record.handle in live_by_handle and (
                    live_trigger is None or live_trigger == record.trigger_at
                )
                if intent is not None and key not in result.kept and is_live and record.matches(intent):
                    result.kept[key] = record
                elif record.handle not in result.to_cancel:
                    result.to_cancel.append(record.handle)

        for handle in sorted(live_by_handle):
            if handle not in known:
                result.to_cancel.append(handle)

        result.to_create = [
            intent for intent in desired_by_key.values() if intent.key not in result.kept
        ]
        result.to_create.sort(key=lambda intent: intent.sort_key)
        return result

    def apply(
        self,
        diff: LedgerDiff,
        created: Iterable[tuple[NotificationIntent, str]],
        failed_cancels: Iterable[str] = (),
    ) -> Ledger:
        """Return the ledger that results from applying diff.

        Handles whose cancellation failed stay recorded, since they may still
        be live; the next pass tries again.
        """
        following = Ledger()
        for (day, session, _kind), record in diff.kept.items():
            following._record(day, session, record)

        for intent, handle in created:
            following._record(
                intent.date,
                intent.session,
                LedgerHandle(handle, intent.kind, intent.trigger_at, intent.sound_id),
            )

        still_live = set(failed_cancels)
        if still_live:
            for entry in self:
                for record in entry.handles:
                    if record.handle in still_live:
                        following._record(entry.date, entry.session, record)

        return following

    def to_dict(self) -> dict[str, Any]:
        """Serialize the ledger document."""
        return {
            "version": LEDGER_STORAGE_VERSION,
            "entries": [entry.to_dict() for entry in self if entry.handles],
        }

    @classmethod
    def from_dict(cls, stored: Any) -> Ledger:
        """Deserialize a ledger document, skipping malformed entries."""
        ledger = cls()
        data = stored if isinstance(stored, dict) else {}
        entries = data.get("entries", [])
        if not isinstance(entries, list):
            return ledger

        skipped = 0
        for raw in entries:
            if not isinstance(raw, dict):
                skipped += 1
                continue
            day = None
            try:
                day = date.fromisoformat(str(raw.get("date") or ""))
            except ValueError:
                pass
            session = PrayerSession.from_name(raw.get("session"))
            handles = raw.get("handles")
            if day is None or session is None or not isinstance(handles, list):
                skipped += 1
                continue
            for raw_handle in handles:
                record = LedgerHandle.from_dict(raw_handle)
                if record is None:
                    skipped += 1
                    continue
                ledger._record(day, session, record)

        if skipped:
            _LOGGER.warning("Skipped %d malformed schedule ledger records", skipped)
        return ledger


def ledger_storage_key(entry_id: str) -> str:
    """Return the storage key holding one config entry's ledger."""
    return f"{LEDGER_STORAGE_KEY}.{entry_id}"


class ScheduleLedgerStore:
    """Load and persist the schedule ledger with Home Assistant storage."""

    def __init__(
        self,
        hass: HomeAssistant | None,
        store: Any | None = None,
        key: str = LEDGER_STORAGE_KEY,
    ) -> None:
        """Initialize with optional Home Assistant storage backend.

        Each config entry passes its own key so entries never share a document.
        """
        self._hass = hass
        self._key = key
        self._store: Any | None = store
        if self._store is None and hass is not None:
            self._store = Store(hass, LEDGER_STORAGE_VERSION, key)

        # Used when running without a storage backend
        self._data: dict[str, Any] | None = None

    @property
    def key(self) -> str:
        return self._key

    async def async_load(self) -> Ledger:
        """Load the ledger; a missing or unreadable document starts fresh."""
        if self._store is None:
            return Ledger.from_dict(self._data) if self._data is not None else Ledger()

        try:
            stored = await self._store.async_load()
        except Exception as err:
            _LOGGER.warning("Schedule ledger unreadable, starting fresh: %s", err)
            return Ledger()

        if stored is None:
            _LOGGER.debug("No schedule ledger found, starting fresh")
            return Ledger()

        if not isinstance(stored, dict):
            _LOGGER.warning("Schedule ledger has unexpected shape, starting fresh")
            return Ledger()

        ledger = Ledger.from_dict(stored)
        _LOGGER.debug("Loaded schedule ledger with %d entries", len(ledger))
        return ledger

    async def async_save(self, ledger: Ledger) -> None:
        """Persist the ledger, raising LedgerPersistError on failure."""
        data = ledger.to_dict()
        if self._store is None:
            self._data = data
            return

        try:
            await self._store.async_save(data)
        except Exception as err:
            raise LedgerPersistError(f"Failed to save schedule ledger: {err}") from err

    async def async_clear(self) -> None:
        """Reset the persisted ledger to an empty document."""
        if self._store is None:
            self._data = _empty_store_data()
            return

        try:
            await self._store.async_save(_empty_store_data())
        except Exception as err:
            raise LedgerPersistError(f"Failed to clear schedule ledger: {err}") from err

    async def async_remove(self) -> None:
        """Delete the persisted document when its config entry is removed."""
        if self._store is None:
            self._data = None
            return
        await self._store.async_remove()

    def export_state(self) -> dict[str, Any]:
        """Return a copy of the in-memory document (for diagnostics/tests)."""
        return dict(self._data) if self._data is not None else _empty_store_data()
