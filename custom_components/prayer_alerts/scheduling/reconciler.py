"""Reconciliation of prayer notifications.

One pass loads the ledger, snapshots what the notification capability holds,
compiles the desired intents, cancels what no longer matches, creates what is
missing and persists the resulting ledger. Passes never overlap: a request
that arrives while a pass is in flight is folded into a single follow-up pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from homeassistant.util import dt as dt_util

from ..models import (
    LedgerPersistError,
    NotificationIntent,
    NotificationScheduleError,
    PrayerTimeTable,
    Preferences,
    ReconcileFailure,
    ReconcileReport,
    ReconcileState,
)
from .compiler import compile_intents, render_content
from .ledger import ScheduleLedgerStore
from .notifier import NotificationCapability

_LOGGER = logging.getLogger(__name__)


def _describe(err: BaseException) -> str:
    """Return a readable error string, even for message-less exceptions."""
    return str(err) or type(err).__name__


def _snapshot_table(table: PrayerTimeTable) -> dict[Any, dict[str, str]]:
    """Copy the table so a pass never sees later mutations."""
    if not isinstance(table, Mapping):
        raise TypeError(f"Prayer time table must be a mapping, got {type(table).__name__}")
    return {
        day: dict(sessions) if isinstance(sessions, Mapping) else sessions
        for day, sessions in table.items()
    }


def _settle_waiter(waiter: asyncio.Future[ReconcileReport] | None, err: BaseException) -> None:
    if waiter is None or waiter.done():
        return
    if isinstance(err, asyncio.CancelledError):
        waiter.cancel()
    else:
        waiter.set_exception(err)


def _chain_waiter(
    source: asyncio.Future[ReconcileReport],
    target: asyncio.Future[ReconcileReport],
) -> None:
    """Resolve target with whatever source resolves to."""

    def _copy(done: asyncio.Future[ReconcileReport]) -> None:
        if target.done():
            return
        if done.cancelled():
            target.cancel()
        elif done.exception() is not None:
            target.set_exception(done.exception())
        else:
            target.set_result(done.result())

    source.add_done_callback(_copy)


class PrayerNotificationReconciler:
    """Keep scheduled prayer notifications in line with the desired schedule."""

    def __init__(
        self,
        ledger_store: ScheduleLedgerStore,
        capability: NotificationCapability,
        now_func: Callable[[], datetime] | None = None,
    ) -> None:
        self._ledger_store = ledger_store
        self._capability = capability
        self._now = now_func or dt_util.now
        self._state = ReconcileState.IDLE
        self._running = False
        self._queued: tuple[dict[Any, dict[str, str]], Preferences] | None = None
        self._queued_waiter: asyncio.Future[ReconcileReport] | None = None
        self._drain_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()
        self._last_report: ReconcileReport | None = None

    @property
    def state(self) -> ReconcileState:
        return self._state

    @property
    def in_progress(self) -> bool:
        return self._running

    @property
    def last_report(self) -> ReconcileReport | None:
        return self._last_report

    async def async_reconcile(
        self,
        table: PrayerTimeTable,
        preferences: Preferences,
    ) -> ReconcileReport:
        """Run (or join) a reconciliation pass.

        Partial failures never raise; they are captured in the returned report.
        Calls made while a pass is running share one follow-up pass that uses
        the most recent inputs, and all of them receive its report.
        If the caller driving the passes is cancelled, the queued pass moves
        to a background task instead of being dropped.
        """
        if table is None:
            raise ValueError("Prayer time table is required")
        if preferences is None:
            raise ValueError("Preferences are required")
        snapshot = _snapshot_table(table)

        if self._running:
            _LOGGER.debug("Reconciliation in progress, coalescing request")
            self._queued = (snapshot, preferences)
            if self._queued_waiter is None:
                self._queued_waiter = asyncio.get_running_loop().create_future()
            return await asyncio.shield(self._queued_waiter)

        self._running = True
        handed_off = False
        try:
            report = await self._async_run_pass(snapshot, preferences)
            await self._async_drain_queue()
        except asyncio.CancelledError:
            # Coalesced callers were not cancelled; their pass still runs
            if self._queued is not None:
                self._hand_off_queue()
                handed_off = True
            raise
        except BaseException as err:
            _settle_waiter(self._queued_waiter, err)
            raise
        finally:
            if not handed_off:
                self._finish()

        return report

    async def _async_drain_queue(self) -> None:
        """Run follow-up passes until no request is queued."""
        while self._queued is not None:
            inputs, waiter = self._queued, self._queued_waiter
            self._queued = None
            self._queued_waiter = None
            try:
                queued_report = await self._async_run_pass(*inputs, coalesced=True)
            except asyncio.CancelledError:
                self._requeue(inputs, waiter)
                raise
            except BaseException as err:
                _settle_waiter(waiter, err)
                raise
            if waiter is not None and not waiter.done():
                waiter.set_result(queued_report)

    def _requeue(
        self,
        inputs: tuple[dict[Any, dict[str, str]], Preferences],
        waiter: asyncio.Future[ReconcileReport] | None,
    ) -> None:
        """Put an interrupted follow-up back in the slot."""
        if self._queued is None:
            self._queued = inputs
            self._queued_waiter = waiter
        elif waiter is not None and self._queued_waiter is not None:
            # Newer inputs win; earlier callers get that pass's report
            _chain_waiter(self._queued_waiter, waiter)

    def _hand_off_queue(self) -> None:
        _LOGGER.debug("Reconciliation cancelled, running queued request in a new task")
        self._drain_task = asyncio.get_running_loop().create_task(self._async_drain_handed_off())

    async def _async_drain_handed_off(self) -> None:
        try:
            await self._async_drain_queue()
        except asyncio.CancelledError:
            _settle_waiter(self._queued_waiter, asyncio.CancelledError())
            raise
        except Exception as err:
            _LOGGER.warning("Follow-up reconciliation failed: %s", _describe(err))
            _settle_waiter(self._queued_waiter, err)
        finally:
            self._drain_task = None
            self._finish()

    def _finish(self) -> None:
        self._running = False
        self._state = ReconcileState.IDLE
        self._queued = None
        self._queued_waiter = None

    async def async_reset(self) -> ReconcileReport:
        """Cancel everything scheduled and clear the ledger.

        The next pass schedules the whole window from scratch.
        """
        report = ReconcileReport(started_at=self._now())
        async with self._write_lock:
            ledger = await self._ledger_store.async_load()
            try:
                live = await self._capability.async_list_scheduled()
            except Exception as err:
                _LOGGER.warning("Could not list scheduled notifications: %s", err)
                live = set()

            handles = sorted({item.handle for item in live} | set(ledger.handles()))
            await self._async_cancel_all(handles, report)

            try:
                await self._ledger_store.async_clear()
            except LedgerPersistError as err:
                _LOGGER.error("%s", err)
                report.persist_error = str(err)

        report.finished_at = self._now()
        _LOGGER.info(
            "Prayer notifications reset: %d cancelled, %d cancel failures",
            report.cancelled,
            len(report.cancel_failures),
        )
        self._last_report = report
        return report

    async def _async_run_pass(
        self,
        table: dict[Any, dict[str, str]],
        preferences: Preferences,
        coalesced: bool = False,
    ) -> ReconcileReport:
        async with self._write_lock:
            try:
                report = await self._async_run_pass_locked(table, preferences, coalesced)
            finally:
                self._state = ReconcileState.IDLE
        self._last_report = report
        return report

    async def _async_run_pass_locked(
        self,
        table: dict[Any, dict[str, str]],
        preferences: Preferences,
        coalesced: bool,
    ) -> ReconcileReport:
        now = self._now()
        report = ReconcileReport(coalesced=coalesced, started_at=now)

        self._state = ReconcileState.LOADING
        ledger = await self._ledger_store.async_load()
        try:
            live = await self._capability.async_list_scheduled()
        except Exception as err:
            # Without ground truth any create could duplicate a live notification
            _LOGGER.warning("Could not list scheduled notifications, skipping pass: %s", err)
            report.error = f"list_scheduled failed: {_describe(err)}"
            report.finished_at = self._now()
            return report

        self._state = ReconcileState.DIFFING
        desired = compile_intents(table, preferences, now)
        diff = ledger.diff(desired, live)
        _LOGGER.debug(
            "Reconciliation diff: %d desired, %d kept, %d to cancel, %d to create",
            len(desired),
            len(diff.kept),
            len(diff.to_cancel),
            len(diff.to_create),
        )

        self._state = ReconcileState.APPLYING
        failed_cancels = await self._async_cancel_all(diff.to_cancel, report)
        created = await self._async_create_all(diff.to_create, report)

        self._state = ReconcileState.PERSISTING
        following = ledger.apply(diff, created, failed_cancels)
        if following != ledger:
            try:
                await self._ledger_store.async_save(following)
            except LedgerPersistError as err:
                _LOGGER.error("%s", err)
                report.persist_error = str(err)

        report.finished_at = self._now()
        _LOGGER.info(
            "Prayer notification pass: %d created, %d cancelled, %d failed",
            report.created,
            report.cancelled,
            len(report.failed),
        )
        return report

    async def _async_cancel_all(self, handles: list[str], report: ReconcileReport) -> set[str]:
        """Cancel handles independently; return those whose cancellation failed."""
        if not handles:
            return set()

        results = await asyncio.gather(
            *(self._capability.async_cancel(handle) for handle in handles),
            return_exceptions=True,
        )
        failed: set[str] = set()
        for handle, result in zip(handles, results):
            if isinstance(result, BaseException):
                _LOGGER.warning("Failed to cancel notification %s: %s", handle, _describe(result))
                report.cancel_failures.append((handle, _describe(result)))
                failed.add(handle)
            else:
                report.cancelled += 1
        return failed

    async def _async_create_all(
        self,
        intents: list[NotificationIntent],
        report: ReconcileReport,
    ) -> list[tuple[NotificationIntent, str]]:
        """Schedule intents independently; return (intent, handle) for successes."""
        if not intents:
            return []

        results = await asyncio.gather(
            *(self._async_create(intent) for intent in intents),
            return_exceptions=True,
        )
        created: list[tuple[NotificationIntent, str]] = []
        for intent, result in zip(intents, results):
            if isinstance(result, BaseException):
                _LOGGER.warning(
                    "Failed to schedule %s %s on %s: %s",
                    intent.session.value,
                    intent.kind.value,
                    intent.date.isoformat(),
                    _describe(result),
                )
                report.failed.append(ReconcileFailure(intent, _describe(result)))
            else:
                created.append((intent, result))
                report.created += 1
        return created

    async def _async_create(self, intent: NotificationIntent) -> str:
        handle = await self._capability.async_schedule(render_content(intent), intent.trigger_at)
        if not handle:
            raise NotificationScheduleError("Notification capability returned an empty handle")
        return str(handle)
