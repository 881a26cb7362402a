"""Background autosync: debounced push after writes and periodic pull.

Both run on daemon timer threads. Failures are logged and left for the
next round; unsent actions stay in the action log.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

from td.errors import TDError
from td.models import ActionLog
from td.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], SyncEngine]


class AutoSync:
    """Schedules sync work for one CLI process.

    ``notify`` is a mutation listener: each call restarts the debounce
    timer, so a burst of writes produces one push. ``flush`` runs any
    pending push synchronously, which the CLI does before exiting.
    """

    def __init__(self, engine_factory: EngineFactory, debounce: timedelta,
                 interval: Optional[timedelta] = None, pull: bool = True) -> None:
        self._factory = engine_factory
        self._debounce = debounce.total_seconds()
        self._interval = interval.total_seconds() if interval else 0.0
        self._pull = pull
        self._lock = threading.Lock()
        self._push_timer: Optional[threading.Timer] = None
        self._pull_timer: Optional[threading.Timer] = None
        self._pending = False
        self._stopped = False

    # --- Push ---

    def notify(self, actions: list[ActionLog]) -> None:
        if not actions:
            return
        with self._lock:
            if self._stopped:
                return
            self._pending = True
            if self._push_timer is not None:
                self._push_timer.cancel()
            self._push_timer = threading.Timer(self._debounce, self._run_push)
            self._push_timer.daemon = True
            self._push_timer.start()

    def _run_push(self) -> None:
        with self._lock:
            if not self._pending:
                return
            self._pending = False
            self._push_timer = None
        self._guarded("push", lambda engine: engine.push())

    def flush(self) -> None:
        with self._lock:
            if self._push_timer is not None:
                self._push_timer.cancel()
                self._push_timer = None
            pending = self._pending
            self._pending = False
        if pending:
            self._guarded("push", lambda engine: engine.push())

    @property
    def pending(self) -> bool:
        return self._pending

    # --- Pull ---

    def start(self, on_start: bool = False) -> None:
        """Begin periodic pulls; with ``on_start`` pull once right away."""
        if on_start and self._pull:
            self._guarded("pull", lambda engine: engine.pull())
        self._schedule_pull()

    def _schedule_pull(self) -> None:
        if not self._pull or self._interval <= 0:
            return
        with self._lock:
            if self._stopped:
                return
            self._pull_timer = threading.Timer(self._interval, self._run_pull)
            self._pull_timer.daemon = True
            self._pull_timer.start()

    def _run_pull(self) -> None:
        self._guarded("pull", lambda engine: engine.pull())
        self._schedule_pull()

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            for timer in (self._push_timer, self._pull_timer):
                if timer is not None:
                    timer.cancel()
            self._push_timer = self._pull_timer = None

    def _guarded(self, what: str, fn: Callable[[SyncEngine], object]) -> None:
        try:
            engine = self._factory()
            fn(engine)
        except TDError as e:
            logger.warning("autosync %s failed: %s", what, e)
        except Exception:
            logger.exception("autosync %s failed unexpectedly", what)
