"""
Filter rules and the ordered filter set.

A FilterRule is a predicate over LogMessage built from up to four
patterns (tag, text, pid, app) and a minimum level. Its patterns are
compiled once, when the rule is built; only the unread counter changes
afterwards.

Live queries typed into a search box are parsed into one rule per
whitespace-separated token:

    sqlite              text must match 'sqlite'
    tag:MyApp error     tag must match 'MyApp' AND text must match 'error'
    pid:1234 app:gms    pid is exactly 1234 AND process name matches 'gms'
"""

import re

from .messages import LogLevel, LogMessage


DEFAULT_FILTER_NAME = 'All messages (no filters)'

PID_KEYWORD  = 'pid:'
APP_KEYWORD  = 'app:'
TAG_KEYWORD  = 'tag:'
TEXT_KEYWORD = 'text:'


class PatternError(ValueError):
    def __init__(self, field: str, pattern: str, reason: str):
        self.field   = field
        self.pattern = pattern
        self.reason  = reason
        super().__init__(f'invalid {field} pattern {pattern!r}: {reason}')


def _compile(field: str, pattern: str):
    # Smart case: all-lowercase patterns ignore case, anything with an
    # upper-case letter is matched exactly.
    if not pattern:
        return None
    flags = 0 if any(c.isupper() for c in pattern) else re.IGNORECASE
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise PatternError(field, pattern, str(exc)) from None


class FilterRule:
    """
    A saved or live filter definition with its unread-match counter.

    Raises PatternError from the constructor when a tag, text or app
    pattern does not compile, so an invalid rule never exists.
    """

    def __init__(self, name: str, tag: str = '', text: str = '', pid: str = '',
                 app_name: str = '', min_level: LogLevel = LogLevel.VERBOSE,
                 transient: bool = False):
        self.name      = name
        self.tag       = tag
        self.text      = text
        self.pid       = pid
        self.app_name  = app_name
        self.min_level = min_level
        self.is_transient = transient
        self.unread_count = 0

        self._pid     = pid.strip()
        self._tag_re  = _compile('tag', tag)
        self._text_re = _compile('text', text)
        self._app_re  = _compile('app', app_name)

    def __repr__(self):
        return (f'FilterRule({self.name!r}, tag={self.tag!r}, text={self.text!r}, '
                f'pid={self.pid!r}, app={self.app_name!r}, level={self.min_level.name})')

    def fields(self) -> dict:
        return {
            'name':      self.name,
            'tag':       self.tag,
            'text':      self.text,
            'pid':       self.pid,
            'app_name':  self.app_name,
            'min_level': self.min_level,
        }

    def with_fields(self, transient: bool = False, **changes) -> 'FilterRule':
        # Edited copy, starting with no unread. An edited session filter
        # becomes a saved one unless transient is passed explicitly.
        f = self.fields()
        f.update(changes)
        return FilterRule(transient=transient, **f)

    def matches(self, m: LogMessage) -> bool:
        if m.level < self.min_level:
            return False
        if self._pid and self._pid != str(m.pid):
            return False
        if self._app_re and not self._app_re.search(m.process_name):
            return False
        if self._tag_re and not self._tag_re.search(m.tag):
            return False
        if self._text_re and not self._text_re.search(m.text):
            return False
        return True

    # Unread counter

    def update_unread_count(self, messages) -> None:
        self.unread_count += sum(1 for m in messages if self.matches(m))

    def reset_unread_count(self) -> None:
        self.unread_count = 0


def rules_from_query(query: str, min_level: LogLevel = LogLevel.VERBOSE) -> list:
    # One rule per token, all ANDed by the caller. An empty query still
    # yields a rule so that min_level applies on its own.
    tokens = query.split()
    if not tokens:
        return [FilterRule('livefilter-', min_level=min_level)]

    rules = []
    for tok in tokens:
        fields = {'tag': '', 'text': '', 'pid': '', 'app_name': ''}
        if tok.startswith(PID_KEYWORD):
            fields['pid'] = tok[len(PID_KEYWORD):]
        elif tok.startswith(APP_KEYWORD):
            fields['app_name'] = tok[len(APP_KEYWORD):]
        elif tok.startswith(TAG_KEYWORD):
            fields['tag'] = tok[len(TAG_KEYWORD):]
        elif tok.startswith(TEXT_KEYWORD):
            fields['text'] = tok[len(TEXT_KEYWORD):]
        else:
            fields['text'] = tok
        rules.append(FilterRule(f'livefilter-{tok}', min_level=min_level, **fields))
    return rules


def make_default_rule() -> FilterRule:
    return FilterRule(DEFAULT_FILTER_NAME)


class FilterSet:
    """
    Ordered FilterRules with index-addressed selection.

    Index 0 always holds the default match-all rule; it can be selected
    but never removed or edited. The selected index is always valid.
    """

    def __init__(self, rules=None):
        self._rules    = [make_default_rule()] + list(rules or [])
        self._selected = 0

    # Size / access

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(list(self._rules))

    def __getitem__(self, idx: int) -> FilterRule:
        return self._rules[idx]

    @property
    def selected_index(self) -> int:
        return self._selected

    @property
    def selected_rule(self) -> FilterRule:
        return self._rules[self._selected]

    def _valid(self, index: int) -> bool:
        return 0 <= index < len(self._rules)

    # Selection

    def select(self, index: int) -> int:
        if not self._valid(index):
            index = 0
        self._selected = index
        self._rules[index].reset_unread_count()
        return index

    # Mutation

    def add(self, rule: FilterRule) -> int:
        self._rules.append(rule)
        return len(self._rules) - 1

    def remove(self, index: int) -> bool:
        if index == 0 or not self._valid(index):
            return False
        del self._rules[index]
        if index == self._selected:
            self.select(max(0, index - 1))
        elif index < self._selected:
            # same rule stays selected, it just moved up one slot
            self._selected -= 1
        return True

    def edit(self, index: int, rule: FilterRule) -> bool:
        if index == 0 or not self._valid(index):
            return False
        self._rules[index] = rule
        return True

    # Unread counters

    def update_unread_counts(self, messages) -> None:
        for i, rule in enumerate(self._rules):
            if i == self._selected:
                continue
            rule.update_unread_count(messages)

    def reset_unread_counts(self) -> None:
        for rule in self._rules:
            rule.reset_unread_count()

    # Queries

    def find_transient_app_filter(self, app_name: str):
        for i, rule in enumerate(self._rules):
            if rule.is_transient and rule.app_name == app_name:
                return i
        return None

    def persistent_rules(self) -> list:
        return [r for r in self._rules[1:] if not r.is_transient]
