"""
Log message model and the bounded message store.

LogMessage is created once by the ingestion side and never changes.
MessageStore keeps the newest `max_messages` of them; anything older is
evicted from the head.
"""

import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum


MAX_MESSAGES_DEFAULT = 5000


class LogLevel(Enum):
    VERBOSE = (2, 'V')
    DEBUG   = (3, 'D')
    INFO    = (4, 'I')
    WARN    = (5, 'W')
    ERROR   = (6, 'E')
    ASSERT  = (7, 'A')

    def __init__(self, priority: int, letter: str):
        self.priority = priority
        self.letter   = letter

    def __lt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.priority < other.priority

    def __le__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.priority <= other.priority

    def __gt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.priority > other.priority

    def __ge__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.priority >= other.priority

    @classmethod
    def parse(cls, value: str) -> 'LogLevel':
        # Accepts a letter ('W') or a name ('warn'), case-insensitive.
        # 'F' is what newer logcat prints for fatal/assert.
        if not isinstance(value, str):
            raise ValueError(f'unknown log level: {value!r}')
        v = value.strip().upper()
        if v == 'F':
            return cls.ASSERT
        for lvl in cls:
            if v in (lvl.letter, lvl.name):
                return lvl
        raise ValueError(f'unknown log level: {value!r}')


@dataclass(frozen=True)
class LogMessage:
    timestamp:    str
    pid:          int
    process_name: str
    tag:          str
    level:        LogLevel
    text:         str
    tid:          int | None = None

    def __str__(self) -> str:
        return f'{self.timestamp}: {self.level.letter}/{self.tag}({self.pid}): {self.text}'


class MessageStore:
    """
    Bounded FIFO of LogMessage.

    All mutations go through here under one lock, and snapshot() copies
    under the same lock, so a reader never sees a half-applied batch.
    """

    def __init__(self, max_messages: int = MAX_MESSAGES_DEFAULT):
        if max_messages < 1:
            raise ValueError(f'max_messages must be >= 1, got {max_messages}')
        self._lock     = threading.Lock()
        self._messages = deque(maxlen=max_messages)

    # Size / access

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def max_messages(self) -> int:
        return self._messages.maxlen

    def snapshot(self) -> tuple:
        with self._lock:
            return tuple(self._messages)

    # Mutation

    def append(self, message: LogMessage) -> int:
        with self._lock:
            evicted = int(len(self._messages) == self._messages.maxlen)
            self._messages.append(message)
        return evicted

    def extend(self, batch) -> int:
        # Append a batch and return how many messages fell off the head.
        batch = tuple(batch)
        if not batch:
            return 0
        with self._lock:
            evicted = max(0, len(self._messages) + len(batch) - self._messages.maxlen)
            self._messages.extend(batch)
        return evicted

    def resize(self, max_messages: int) -> int:
        if max_messages < 1:
            raise ValueError(f'max_messages must be >= 1, got {max_messages}')
        with self._lock:
            evicted        = max(0, len(self._messages) - max_messages)
            self._messages = deque(self._messages, maxlen=max_messages)
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
