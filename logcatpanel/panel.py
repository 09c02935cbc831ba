"""
LogcatPanel: the toolkit-independent core behind the logcat view.

The presentation layer calls into this object; it never reaches into
presentation state itself. Incoming batches, filter edits and unread
counters are serialised under one lock. Redraws go through a
RefreshCoordinator so a flood of messages costs one scheduled refresh.
"""

import threading
from dataclasses import dataclass
from pathlib import Path

from .filters import FilterRule, FilterSet, rules_from_query
from .messages import MAX_MESSAGES_DEFAULT, LogLevel, MessageStore
from .persistence import (FileFilterStorage, MemoryFilterStorage, decode_rules,
                          export_filters, import_filters)
from .refresh import RefreshCoordinator


@dataclass
class PanelConfig:
    max_messages: int         = MAX_MESSAGES_DEFAULT
    filters_path: Path | None = None


class LogcatPanel:

    def __init__(self, config: PanelConfig | None = None, storage=None):
        self.config = config or PanelConfig()
        if storage is None:
            storage = (FileFilterStorage(self.config.filters_path)
                       if self.config.filters_path else MemoryFilterStorage())
        self._storage = storage

        self._lock      = threading.RLock()
        self.store      = MessageStore(self.config.max_messages)
        self.filters    = FilterSet(decode_rules(storage.load()))
        self.filters.select(0)

        self.live_query = ''
        self.live_level = LogLevel.VERBOSE
        self._live_rules: list = rules_from_query('', LogLevel.VERBOSE)

        self._refresher: RefreshCoordinator | None = None

    # Presentation wiring

    def attach_view(self, view, schedule) -> RefreshCoordinator:
        self._refresher = RefreshCoordinator(view, schedule)
        self._refresher.request_refresh(scroll_to_latest=True)
        return self._refresher

    def _request_refresh(self, scroll_to_latest: bool = False) -> None:
        if self._refresher is not None:
            self._refresher.request_refresh(scroll_to_latest)

    # Ingestion

    def on_messages_received(self, batch) -> None:
        batch = list(batch)
        if not batch:
            return
        with self._lock:
            self.store.extend(batch)
            self.filters.update_unread_counts(batch)
        self._request_refresh()

    def clear_messages(self) -> None:
        with self._lock:
            self.store.clear()
        self._request_refresh(scroll_to_latest=True)

    def reset_source(self) -> None:
        # New device/stream: old counts no longer mean anything.
        with self._lock:
            self.store.clear()
            self.filters.reset_unread_counts()
        self._request_refresh(scroll_to_latest=True)

    def set_max_messages(self, n: int) -> None:
        with self._lock:
            self.store.resize(n)
            self.config.max_messages = n
        self._request_refresh()

    # Filters

    def select_filter(self, index: int) -> int:
        with self._lock:
            idx = self.filters.select(index)
        self._request_refresh(scroll_to_latest=True)
        return idx

    def add_filter(self, rule: FilterRule) -> int:
        with self._lock:
            idx = self.filters.add(rule)
            self._save_filters()
        return idx

    def remove_filter(self, index: int) -> bool:
        with self._lock:
            before = self.filters.selected_index
            ok     = self.filters.remove(index)
            if ok:
                self._save_filters()
        if ok and index == before:
            self._request_refresh(scroll_to_latest=True)
        return ok

    def edit_filter(self, index: int, rule: FilterRule) -> bool:
        with self._lock:
            ok = self.filters.edit(index, rule)
            if ok:
                self._save_filters()
            selected = ok and index == self.filters.selected_index
        if selected:
            self._request_refresh(scroll_to_latest=True)
        return ok

    def select_app_filter(self, app_name: str) -> int:
        # Session-only filter for one application; reused if it exists.
        with self._lock:
            idx = self.filters.find_transient_app_filter(app_name)
            if idx is None:
                idx = self.filters.add(FilterRule(f'{app_name} (Session Filter)',
                                                  app_name=app_name, transient=True))
        return self.select_filter(idx)

    def set_live_query(self, query: str, min_level: LogLevel = LogLevel.VERBOSE) -> None:
        # PatternError propagates; the previous live rules stay in force.
        rules = rules_from_query(query, min_level)
        with self._lock:
            self.live_query  = query
            self.live_level  = min_level
            self._live_rules = rules
        self._request_refresh(scroll_to_latest=True)

    def _save_filters(self) -> None:
        self._storage.save(export_filters(self.filters))

    # Persistence

    def export_filters(self) -> str:
        with self._lock:
            return export_filters(self.filters)

    def import_filters(self, text: str) -> FilterSet:
        return import_filters(text)

    # Queries

    def visible_messages(self) -> list:
        with self._lock:
            messages = self.store.snapshot()
            rules    = [self.filters.selected_rule] + list(self._live_rules)
        return [m for m in messages if all(r.matches(m) for r in rules)]

    def export_messages(self, messages, path) -> int:
        with open(path, 'w', encoding='utf-8') as fh:
            for m in messages:
                fh.write(f'{m}\n')
        return len(messages)
