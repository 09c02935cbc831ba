"""
Saved-filter persistence.

Filters are stored as newline-delimited JSON, one rule per line:

    {"name": "gms", "tag": "", "text": "", "pid": "", "app": "com.google", "level": "W"}

The default rule (index 0) and transient session filters are never
written. On import a corrupt line is reported and skipped; the rest of
the file still loads.
"""

import json
import os
from pathlib import Path

from .diagnostics import warn
from .filters import FilterRule, FilterSet, PatternError
from .messages import LogLevel


FILTERS_ENV = 'LOGCATPANEL_FILTERS'


def default_filters_path() -> Path:
    root = os.environ.get(FILTERS_ENV)
    if root:
        return Path(root)
    return Path.home() / '.config' / 'logcatpanel' / 'filters.jsonl'


def encode_rule(rule: FilterRule) -> str:
    return json.dumps({
        'name':  rule.name,
        'tag':   rule.tag,
        'text':  rule.text,
        'pid':   rule.pid,
        'app':   rule.app_name,
        'level': rule.min_level.letter,
    }, ensure_ascii=False)


def _field(d: dict, key: str, default: str = '') -> str:
    value = d.get(key, default)
    if key == 'pid' and isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise TypeError(f'{key!r} must be a string, got {type(value).__name__}')
    return value


def decode_rule(line: str) -> FilterRule:
    # Raises ValueError (json, level or PatternError) or KeyError/TypeError
    # for a line that is not a complete rule object.
    d = json.loads(line)
    if not isinstance(d, dict):
        raise TypeError(f'expected an object, got {type(d).__name__}')
    if 'name' not in d:
        raise KeyError('name')
    return FilterRule(
        _field(d, 'name'),
        tag       = _field(d, 'tag'),
        text      = _field(d, 'text'),
        pid       = _field(d, 'pid'),
        app_name  = _field(d, 'app'),
        min_level = LogLevel.parse(_field(d, 'level', 'V')),
    )


def export_filters(filters: FilterSet) -> str:
    return '\n'.join(encode_rule(r) for r in filters.persistent_rules())


def decode_rules(text: str) -> list:
    rules = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            rules.append(decode_rule(line))
        except PatternError as exc:
            warn(f'saved filter on line {lineno} skipped: {exc}')
        except (ValueError, KeyError, TypeError) as exc:
            warn(f'saved filter on line {lineno} is corrupt, skipped: {exc}')
    return rules


def import_filters(text: str) -> FilterSet:
    return FilterSet(decode_rules(text))


class FileFilterStorage:
    # Persistence collaborator backed by one text file.

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> str:
        try:
            return self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return ''
        except OSError as exc:
            warn(f'could not read filters from {self.path}: {exc}')
            return ''

    def save(self, text: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + '.tmp')
            tmp.write_text(text + '\n' if text else '', encoding='utf-8')
            os.replace(tmp, self.path)
        except OSError as exc:
            warn(f'could not save filters to {self.path}: {exc}')


class MemoryFilterStorage:
    # In-process storage; used when no filter file is configured.

    def __init__(self, text: str = ''):
        self.text = text

    def load(self) -> str:
        return self.text

    def save(self, text: str) -> None:
        self.text = text
