"""
Background Scheduler
Keeps the daily wake registration in line with the user's configuration and
decides whether a wake should actually run the budget check.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import schedule

from .models import Config

LOGGER = logging.getLogger(__name__)

SYNC_TAG = "budget-pulse-daily-budget-sync"
SYNC_INTERVAL_HOURS = 24
MAX_SILENCE = timedelta(hours=36)
MORNING_HOUR = 8


def should_run_now(now: datetime, last_run_ms: Optional[int]) -> bool:
    """
    Once-daily morning throttle.

    Runs when nothing has run yet, when the last run is over 36 hours old, or
    on a new local calendar day from 08:00 onwards.
    """
    if not last_run_ms:
        return True

    last_run = datetime.fromtimestamp(last_run_ms / 1000)
    if now - last_run > MAX_SILENCE:
        return True

    return now.date() != last_run.date() and now.hour >= MORNING_HOUR


class BackgroundScheduler:
    """
    Wake registration on top of a ``schedule.Scheduler``.

    A periodic 24h job is preferred. When periodic registration is not
    available a same-tagged one-shot job is registered instead; it cancels
    itself after firing and is re-armed by the next registration refresh.
    """

    def __init__(
        self,
        wake: Callable[[str], object],
        scheduler: Optional[schedule.Scheduler] = None,
        periodic_supported: bool = True,
    ) -> None:
        self.wake = wake
        self.scheduler = scheduler or schedule.Scheduler()
        self.periodic_supported = periodic_supported

    @property
    def is_registered(self) -> bool:
        return bool(self.scheduler.get_jobs(SYNC_TAG))

    def _run_periodic(self):
        self.wake("periodic")

    def _run_one_shot(self):
        self.wake("one-shot")
        return schedule.CancelJob

    def register(self) -> bool:
        """Register the daily wake; returns False when it already exists."""
        if self.is_registered:
            LOGGER.debug("Background sync already registered")
            return False

        if self.periodic_supported:
            self.scheduler.every(SYNC_INTERVAL_HOURS).hours.do(self._run_periodic).tag(SYNC_TAG)
            LOGGER.info("Registered periodic background sync every %dh", SYNC_INTERVAL_HOURS)
        else:
            self.scheduler.every(SYNC_INTERVAL_HOURS).hours.do(self._run_one_shot).tag(SYNC_TAG)
            LOGGER.info("Periodic sync unavailable, registered one-shot background sync")
        return True

    def unregister(self) -> None:
        if self.is_registered:
            self.scheduler.clear(SYNC_TAG)
            LOGGER.info("Unregistered background sync")

    def refresh_registration(self, config: Config) -> bool:
        """Register when credentials exist and notifications are on, otherwise unregister."""
        if config.api_key and config.preferences.notifications_enabled:
            self.register()
            return True
        self.unregister()
        return False

    def run_pending(self) -> None:
        self.scheduler.run_pending()

    def trigger_now(self, trigger: str = "foreground"):
        return self.wake(trigger)
