"""
Availability Monitor — periodic refresh of open meal types and connectivity.

Runs on its own daemon thread at a fixed interval
(AVAILABILITY_REFRESH_SECONDS) inside the Flask app context:

    refresh()   probe the store, recompute the regular meal types open now,
                and publish an immutable AvailabilitySnapshot

Kiosk flows read ``snapshot()`` instead of querying on every keypress.
A failed refresh keeps the last known meal types and flips ``online`` to
False; it never cancels in-flight redemption work.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from flask import Flask

from mealpass.core.exceptions import ConfigurationError, ConnectivityError
from mealpass.services.redemption_service import RedemptionService
from mealpass.services.time_window import local_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilitySnapshot:
    online: bool
    checked_at: datetime | None
    meal_types: list = field(default_factory=list)
    error: str | None = None

    def to_dict(self):
        return {
            "online": self.online,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "meal_types": [m.to_dict() for m in self.meal_types],
            "error": self.error,
        }


class AvailabilityMonitor:
    """Background poller for one RedemptionService."""

    def __init__(self, service: RedemptionService, interval: float = 60.0, clock=None, app: Flask | None = None):
        self.service = service
        self.interval = interval
        self._clock = clock or local_now
        self._app = app
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._snapshot = AvailabilitySnapshot(online=False, checked_at=None)

    @classmethod
    def init_app(cls, app: Flask, service: RedemptionService | None = None) -> "AvailabilityMonitor":
        tz_name = app.config.get("LOCAL_TIMEZONE")
        monitor = cls(
            service or RedemptionService.from_config(app.config),
            interval=app.config.get("AVAILABILITY_REFRESH_SECONDS", 60),
            clock=lambda: local_now(tz_name),
            app=app,
        )
        app.extensions["availability_monitor"] = monitor
        if app.config.get("AVAILABILITY_MONITOR_ENABLED"):
            monitor.start()
        return monitor

    def snapshot(self) -> AvailabilitySnapshot:
        with self._lock:
            return self._snapshot

    def refresh(self) -> AvailabilitySnapshot:
        now = self._clock()
        try:
            self.service.executor.run(self.service.store.ping, label="connectivity probe")
            meal_types = self.service.open_meal_types(now)
        except (ConnectivityError, ConfigurationError) as exc:
            logger.warning("Availability refresh failed: %s", exc)
            with self._lock:
                self._snapshot = AvailabilitySnapshot(
                    online=False,
                    checked_at=now,
                    meal_types=self._snapshot.meal_types,
                    error=str(exc),
                )
                return self._snapshot

        with self._lock:
            self._snapshot = AvailabilitySnapshot(online=True, checked_at=now, meal_types=meal_types)
            return self._snapshot

    # ── Thread lifecycle ─────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="availability-monitor", daemon=True)
        self._thread.start()
        logger.info("Availability monitor started (every %ss)", self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                if self._app is not None:
                    with self._app.app_context():
                        self.refresh()
                else:
                    self.refresh()
            except Exception:
                # Keep polling; the next tick may succeed
                logger.exception("Availability monitor tick failed")
            self._stop.wait(self.interval)
