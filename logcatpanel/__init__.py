"""
logcatpanel - logcat message filtering with saved filters, unread counts
and coalesced view refresh.

Modules:
    - messages: LogLevel, LogMessage and the bounded MessageStore
    - filters: FilterRule, FilterSet and live-query parsing
    - persistence: saved filter encoding and file storage
    - refresh: RefreshCoordinator (at most one pending refresh)
    - panel: LogcatPanel, the core the presentation layer drives
    - parser: `adb logcat` text output -> LogMessage
    - app: urwid terminal front end (`logcatpanel` command)
"""

from .filters import FilterRule, FilterSet, PatternError, rules_from_query
from .messages import LogLevel, LogMessage, MessageStore
from .panel import LogcatPanel, PanelConfig
from .persistence import export_filters, import_filters
from .refresh import RefreshCoordinator, RefreshState

__version__ = '0.1.0'
