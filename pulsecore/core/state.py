"""
Shared application state.

Holds the operating mode, the current settings and the recent snapshot
buffer. The scheduler reads a consistent ``StateView`` once per tick.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from .database import HistoryStore
from .models import AppSettings, Mode, TelemetrySnapshot


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateView:
    """Read-only view of mode and settings taken at one instant."""

    mode: Mode
    settings: AppSettings


class AppState:
    """
    Settings collaborator and mode flag.

    Settings are persisted through the history store and cached; ``set``
    replaces them wholesale.
    """

    def __init__(
        self,
        store: HistoryStore,
        recent_history_size: int = 300,
        mode: Mode = Mode.NORMAL,
    ):
        self._store = store
        self._lock = threading.Lock()
        self._mode = mode
        self._settings: Optional[AppSettings] = None
        self._recent: Deque[TelemetrySnapshot] = deque(maxlen=max(1, recent_history_size))

    def load(self) -> AppSettings:
        """Read settings from the store, creating defaults on first run."""
        settings = self._store.load_settings()
        if settings is None:
            settings = AppSettings()
            self._store.save_settings(settings)
            logger.info("Created default settings")
        with self._lock:
            self._settings = settings
        return settings

    def get(self) -> AppSettings:
        with self._lock:
            settings = self._settings
        if settings is None:
            settings = self.load()
        return settings

    def set(self, settings: AppSettings):
        """Persist and publish new settings (last writer wins)."""
        self._store.save_settings(settings)
        with self._lock:
            self._settings = settings
        logger.info("Settings updated")

    @property
    def mode(self) -> Mode:
        with self._lock:
            return self._mode

    def set_mode(self, mode: Mode):
        with self._lock:
            changed = self._mode != mode
            self._mode = mode
        if changed:
            logger.info(f"Mode changed to {mode.value}")

    def view(self) -> StateView:
        settings = self.get()
        with self._lock:
            return StateView(mode=self._mode, settings=settings)

    def record_snapshot(self, snapshot: TelemetrySnapshot):
        with self._lock:
            self._recent.append(snapshot)

    def recent_snapshots(self, limit: Optional[int] = None) -> List[TelemetrySnapshot]:
        with self._lock:
            items = list(self._recent)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    @property
    def latest(self) -> Optional[TelemetrySnapshot]:
        with self._lock:
            return self._recent[-1] if self._recent else None
