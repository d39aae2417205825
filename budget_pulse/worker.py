"""
Background Worker
Wakes once a day, checks the current month's budgets and raises a single
alert for categories that are over budget or at risk.
"""

import asyncio
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .api_client import BudgetApiClient, merge_summaries_with_categories
from .cache_gateway import CacheStorage, OfflineCacheGateway
from .channel import CommandChannel, ConfigUpdate, SyncNow
from .classifier import build_budget_progress
from .dates import elapsed_fraction, month_window
from .errors import BudgetPulseError
from .models import BudgetProgress, CategorySummary, Config
from .notifier import (
    LoggingNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
    build_notification_payload,
    build_signature,
    filter_alerts,
)
from .scheduler import BackgroundScheduler, should_run_now
from .store import JsonFileStore

LOGGER = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".budget_pulse" / "cache"


def _never_visible() -> bool:
    return False


def classify_summaries(
    summaries: List[CategorySummary],
    period_key: str,
    elapsed: float,
    warn_at: float,
) -> List[BudgetProgress]:
    """Summary-only classification used by the background check."""
    return [
        build_budget_progress(summary, period_key, elapsed, warn_at)
        for summary in summaries
        if not summary.is_income and not summary.is_group and not summary.exclude_from_budget
    ]


class BackgroundContext:
    """Everything one background wake needs, injected so tests can swap parts."""

    def __init__(
        self,
        store: JsonFileStore,
        gateway: Optional[OfflineCacheGateway] = None,
        channel: Optional[CommandChannel] = None,
        sink: Optional[NotificationSink] = None,
        visibility_probe: Callable[[], bool] = _never_visible,
        clock: Callable[[], datetime] = datetime.now,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway or OfflineCacheGateway()
        self.channel = channel or CommandChannel()
        self.sink = sink or LoggingNotificationSink()
        self.visibility_probe = visibility_probe
        self.clock = clock
        self.scheduler = scheduler

    @classmethod
    def from_environment(cls, channel: Optional[CommandChannel] = None) -> "BackgroundContext":
        cache_dir = Path(os.getenv("BUDGET_PULSE_CACHE_DIR") or DEFAULT_CACHE_DIR)
        webhook_url = os.getenv("BUDGET_PULSE_WEBHOOK_URL")
        return cls(
            store=JsonFileStore(),
            gateway=OfflineCacheGateway.with_storage(CacheStorage(cache_dir)),
            channel=channel,
            sink=WebhookNotificationSink(webhook_url) if webhook_url else LoggingNotificationSink(),
        )

    def process_channel(self) -> bool:
        """
        Apply queued foreground commands.

        Returns True when the foreground asked for an immediate sync.
        """
        sync_requested = False
        for command in self.channel.drain():
            if isinstance(command, ConfigUpdate):
                self.store.store_config(command.config)
                if self.scheduler is not None:
                    self.scheduler.refresh_registration(command.config)
                LOGGER.info("Stored configuration update from foreground")
            elif isinstance(command, SyncNow):
                sync_requested = True
        return sync_requested

    async def _fetch_summaries(self, client: BudgetApiClient, start: str, end: str) -> List[CategorySummary]:
        summaries_result, categories_result = await asyncio.gather(
            client.get_budget_summaries(start, end),
            client.get_categories(),
            return_exceptions=True,
        )
        if isinstance(summaries_result, BaseException):
            raise summaries_result
        if isinstance(categories_result, BaseException):
            LOGGER.warning("Failed to load category metadata: %s", categories_result)
            return summaries_result
        return merge_summaries_with_categories(summaries_result, categories_result)

    def _deliver(self, progress: List[BudgetProgress], config: Config, state) -> Dict[str, Any]:
        alerts = filter_alerts(progress, config.preferences.hidden_category_ids)
        if not alerts:
            state.last_alert_signature = None
            return {'status': 'success', 'alerts': 0, 'delivered': False}

        signature = build_signature(alerts)
        if signature == state.last_alert_signature:
            LOGGER.info("Alert set unchanged since last delivery, skipping")
            return {'status': 'success', 'alerts': len(alerts), 'delivered': False, 'reason': 'duplicate'}

        if self.visibility_probe():
            # Deliver on a later wake once the dashboard is no longer in view
            state.last_alert_signature = None
            return {'status': 'success', 'alerts': len(alerts), 'delivered': False, 'reason': 'foreground_visible'}

        payload = build_notification_payload(
            alerts,
            config.preferences.currency,
            data={'url': '/', 'signature': signature},
        )
        self.sink.show(payload)
        state.last_alert_signature = signature
        LOGGER.info("Delivered budget alert for %d categories", len(alerts))
        return {'status': 'success', 'alerts': len(alerts), 'delivered': True, 'title': payload.title}

    async def handle_budget_sync(self, trigger: str = "periodic") -> Dict[str, Any]:
        """
        Run one background wake. Never raises; the result dict reports what
        happened.
        """
        self.process_channel()

        config = self.store.load_config()
        if not config.api_key or not config.preferences.notifications_enabled:
            LOGGER.debug("Background sync disabled (trigger=%s)", trigger)
            return {'status': 'skipped', 'reason': 'disabled'}

        state = self.store.load_state()
        now = self.clock()
        if not should_run_now(now, state.last_run_ms):
            LOGGER.debug("Background sync throttled (trigger=%s)", trigger)
            return {'status': 'skipped', 'reason': 'throttled'}

        LOGGER.info("Running background budget check (trigger=%s)", trigger)
        result: Dict[str, Any]
        try:
            today = now.date()
            window = month_window(today)
            elapsed = elapsed_fraction(window, today)
            client = BudgetApiClient(config.api_key, config.api_base_url, gateway=self.gateway)
            summaries = await self._fetch_summaries(client, window.start_iso, window.end_iso)
            progress = classify_summaries(
                summaries,
                window.start_iso,
                elapsed,
                config.preferences.warn_at_ratio,
            )
            result = self._deliver(progress, config, state)
        except BudgetPulseError as exc:
            LOGGER.error("Background budget check failed: %s", exc)
            result = {'status': 'error', 'error': str(exc)}
        except Exception as exc:
            LOGGER.exception("Unexpected error in background budget check")
            result = {'status': 'error', 'error': str(exc)}
        finally:
            state.last_run_ms = int(now.timestamp() * 1000)
            self.store.store_state(state)
            await self.gateway.drain()

        result['trigger'] = trigger
        return result

    def wake(self, trigger: str) -> Dict[str, Any]:
        return asyncio.run(self.handle_budget_sync(trigger))


def main():
    """Main worker loop"""
    logging.basicConfig(
        level=os.getenv("BUDGET_PULSE_LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )
    LOGGER.info("Starting Budget Pulse background worker")

    context = BackgroundContext.from_environment()
    env_config = Config.from_environment()
    if env_config.api_key:
        context.store.store_config(env_config)

    scheduler = BackgroundScheduler(context.wake)
    context.scheduler = scheduler
    scheduler.refresh_registration(context.store.load_config())

    # Catch up on start, the throttle keeps this to once a day
    context.wake("startup")

    while True:
        try:
            if context.process_channel():
                context.wake("foreground")
            scheduler.run_pending()
            time.sleep(60)

        except KeyboardInterrupt:
            LOGGER.info("Background worker shutting down...")
            break
        except Exception as exc:
            LOGGER.error("Worker loop error: %s", exc)
            time.sleep(60)


if __name__ == "__main__":
    main()
