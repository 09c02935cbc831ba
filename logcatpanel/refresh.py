"""
Refresh coalescing.

Messages can arrive much faster than a terminal can redraw. The
RefreshCoordinator keeps at most one refresh task outstanding: the first
request after a refresh schedules a task, every further request until
that task runs is absorbed.

    IDLE            --request-->      REFRESH_PENDING   (task scheduled)
    REFRESH_PENDING --request-->      REFRESH_PENDING   (nothing scheduled)
    REFRESH_PENDING --task runs-->    IDLE              (view refreshed)

`schedule` is supplied by the presentation side and must hand the task
to whatever thread owns the view (e.g. a urwid watch_pipe). It is called
without the coordinator lock held.
"""

import threading
from enum import Enum


class RefreshState(Enum):
    IDLE            = 'idle'
    REFRESH_PENDING = 'refresh-pending'


class RefreshCoordinator:

    def __init__(self, view, schedule):
        """
        view:     object with is_at_latest(), refresh(), scroll_to_latest()
        schedule: callable(task) that runs task() later on the view's thread
        """
        self._view     = view
        self._schedule = schedule
        self._lock     = threading.Lock()
        self._state    = RefreshState.IDLE
        self._force_scroll = False
        self.refresh_count = 0

    @property
    def state(self) -> RefreshState:
        return self._state

    def request_refresh(self, scroll_to_latest: bool = False) -> bool:
        # Returns True when this call scheduled a new task.
        with self._lock:
            if scroll_to_latest:
                self._force_scroll = True
            if self._state is RefreshState.REFRESH_PENDING:
                return False
            self._state = RefreshState.REFRESH_PENDING
        self._schedule(self._run)
        return True

    def _run(self) -> None:
        # Back to IDLE before rendering: anything arriving mid-refresh
        # queues the next one instead of being dropped.
        with self._lock:
            self._state = RefreshState.IDLE
            force       = self._force_scroll
            self._force_scroll = False

        pinned = force or self._view.is_at_latest()
        self._view.refresh()
        self.refresh_count += 1
        if pinned:
            self._view.scroll_to_latest()
