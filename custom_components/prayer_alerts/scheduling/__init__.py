"""Notification scheduling for Prayer Alerts."""

from .compiler import compile_intents, render_content
from .ledger import (
    Ledger,
    LedgerDiff,
    LedgerEntry,
    LedgerHandle,
    ScheduleLedgerStore,
    ledger_storage_key,
)
from .notifier import HassNotificationScheduler, NotificationCapability
from .reconciler import PrayerNotificationReconciler

__all__ = [
	"compile_intents",
	"render_content",
	"Ledger",
	"LedgerDiff",
	"LedgerEntry",
	"LedgerHandle",
	"ScheduleLedgerStore",
	"ledger_storage_key",
	"HassNotificationScheduler",
	"NotificationCapability",
	"PrayerNotificationReconciler",
]
