"""Tests for FilterRule matching, live queries and FilterSet."""

import pytest

from logcatpanel.filters import (DEFAULT_FILTER_NAME, FilterRule, FilterSet,
                                 PatternError, rules_from_query)
from logcatpanel.messages import LogLevel, LogMessage


def make_message(text: str = 'hello', level: LogLevel = LogLevel.INFO,
                 tag: str = 'Tag', pid: int = 100, app: str = 'com.example') -> LogMessage:
    """Helper to create a LogMessage for testing."""
    return LogMessage(timestamp='01-01 00:00:00.000', pid=pid, process_name=app,
                      tag=tag, level=level, text=text)


def matches_all(rules, message) -> bool:
    return all(r.matches(message) for r in rules)


class TestFilterRuleMatching:
    """Tests for FilterRule.matches."""

    def test_empty_rule_matches_everything(self):
        rule = FilterRule('all')
        assert rule.matches(make_message(level=LogLevel.VERBOSE))

    def test_min_level(self):
        rule = FilterRule('warn+', min_level=LogLevel.WARN)
        assert rule.matches(make_message(level=LogLevel.WARN))
        assert rule.matches(make_message(level=LogLevel.ASSERT))
        assert not rule.matches(make_message(level=LogLevel.INFO))

    def test_tag_regex(self):
        rule = FilterRule('net', tag='^Net')
        assert rule.matches(make_message(tag='NetworkStack'))
        assert not rule.matches(make_message(tag='MyNet'))

    def test_text_regex_searches(self):
        rule = FilterRule('gc', text='GC.*freed')
        assert rule.matches(make_message(text='concurrent GC freed 12K'))
        assert not rule.matches(make_message(text='nothing here'))

    def test_pid_is_exact(self):
        rule = FilterRule('pid', pid='123')
        assert rule.matches(make_message(pid=123))
        assert not rule.matches(make_message(pid=1234))

    def test_pid_whitespace_kept_in_field_but_ignored_in_match(self):
        rule = FilterRule('pid', pid=' 12 ')
        assert rule.pid == ' 12 '
        assert rule.matches(make_message(pid=12))

    def test_app_is_substring(self):
        rule = FilterRule('app', app_name='browser')
        assert rule.matches(make_message(app='com.android.browser'))
        assert not rule.matches(make_message(app='com.android.phone'))

    def test_all_fields_are_anded(self):
        rule = FilterRule('both', tag='Net', text='timeout')
        assert rule.matches(make_message(tag='Net', text='socket timeout'))
        assert not rule.matches(make_message(tag='Net', text='connected'))
        assert not rule.matches(make_message(tag='Disk', text='socket timeout'))

    def test_lowercase_pattern_ignores_case(self):
        rule = FilterRule('ci', text='error')
        assert rule.matches(make_message(text='Fatal ERROR'))

    def test_uppercase_pattern_is_case_sensitive(self):
        rule = FilterRule('cs', tag='MyApp')
        assert rule.matches(make_message(tag='MyApp'))
        assert not rule.matches(make_message(tag='myapp'))

    def test_matches_is_pure(self):
        rule = FilterRule('x', tag='A', text='b')
        m    = make_message(tag='A', text='abc')
        assert [rule.matches(m) for _ in range(3)] == [True, True, True]
        twin = FilterRule('y', tag='A', text='b')
        assert twin.matches(m) == rule.matches(m)

    @pytest.mark.parametrize('field', ['tag', 'text', 'app_name'])
    def test_invalid_regex_rejected(self, field):
        with pytest.raises(PatternError) as info:
            FilterRule('bad', **{field: '(unclosed'})
        assert info.value.pattern == '(unclosed'
        assert isinstance(info.value, ValueError)

    def test_with_fields_copies_resets_unread_and_saves(self):
        rule = FilterRule('old', tag='A', transient=True)
        rule.unread_count = 7
        new = rule.with_fields(name='new', text='x')
        assert (new.name, new.tag, new.text) == ('new', 'A', 'x')
        assert not new.is_transient
        assert rule.with_fields(transient=True).is_transient
        assert new.unread_count == 0
        assert rule.name == 'old'


class TestUnreadCount:
    """Tests for per-rule unread counters."""

    def test_update_counts_matches_only(self):
        rule = FilterRule('err', min_level=LogLevel.ERROR)
        rule.update_unread_count([make_message(level=LogLevel.ERROR),
                                  make_message(level=LogLevel.INFO),
                                  make_message(level=LogLevel.ASSERT)])
        assert rule.unread_count == 2

    def test_reset_then_empty_update_stays_zero(self):
        rule = FilterRule('any')
        rule.update_unread_count([make_message()])
        rule.reset_unread_count()
        rule.update_unread_count([])
        assert rule.unread_count == 0


class TestLiveQuery:
    """Tests for prefix-scoped live queries."""

    def test_scenario_tag_and_text_with_level(self):
        rules = rules_from_query('tag:MyApp error', LogLevel.WARN)
        hit   = make_message(tag='MyApp', level=LogLevel.ERROR, text='error occurred')
        miss  = make_message(tag='Other', level=LogLevel.ERROR, text='error occurred')
        assert matches_all(rules, hit)
        assert not matches_all(rules, miss)

    def test_level_applies_to_every_token(self):
        rules = rules_from_query('tag:MyApp error', LogLevel.WARN)
        low   = make_message(tag='MyApp', level=LogLevel.INFO, text='error occurred')
        assert not matches_all(rules, low)

    def test_one_rule_per_token(self):
        rules = rules_from_query('pid:42 app:gms tag:Net text:up down')
        assert [r.name for r in rules] == [
            'livefilter-pid:42', 'livefilter-app:gms', 'livefilter-tag:Net',
            'livefilter-text:up', 'livefilter-down']
        assert rules[0].pid == '42'
        assert rules[1].app_name == 'gms'
        assert rules[2].tag == 'Net'
        assert rules[3].text == 'up'
        assert rules[4].text == 'down'

    def test_empty_query_filters_by_level_only(self):
        rules = rules_from_query('   ', LogLevel.ERROR)
        assert len(rules) == 1
        assert matches_all(rules, make_message(level=LogLevel.ERROR, text='anything'))
        assert not matches_all(rules, make_message(level=LogLevel.WARN))

    def test_invalid_token_raises(self):
        with pytest.raises(PatternError):
            rules_from_query('tag:[oops')


class TestFilterSet:
    """Tests for FilterSet selection and mutation."""

    def make_set(self, n: int = 3) -> FilterSet:
        return FilterSet([FilterRule(f'r{i}', tag=f'T{i}') for i in range(1, n + 1)])

    def test_index_zero_is_default(self):
        fs = FilterSet()
        assert len(fs) == 1
        assert fs[0].name == DEFAULT_FILTER_NAME
        assert fs.selected_index == 0

    def test_remove_zero_is_noop(self):
        fs     = self.make_set()
        before = [r.name for r in fs]
        assert fs.remove(0) is False
        assert [r.name for r in fs] == before

    def test_edit_zero_is_noop(self):
        fs = self.make_set()
        assert fs.edit(0, FilterRule('sneaky', tag='X')) is False
        assert fs[0].name == DEFAULT_FILTER_NAME

    def test_out_of_range_remove_and_edit(self):
        fs = self.make_set()
        assert fs.remove(99) is False
        assert fs.remove(-1) is False
        assert fs.edit(99, FilterRule('x')) is False
        assert len(fs) == 4

    @pytest.mark.parametrize('bad', [-1, 4, 100])
    def test_select_invalid_falls_back_to_zero(self, bad):
        fs = self.make_set()
        fs.select(2)
        assert fs.select(bad) == 0
        assert fs.selected_index == 0

    def test_add_returns_index(self):
        fs = self.make_set(2)
        assert fs.add(FilterRule('new')) == 3
        assert fs[3].name == 'new'

    def test_remove_selected_selects_previous(self):
        fs = self.make_set()
        fs.select(2)
        assert fs.remove(2) is True
        assert fs.selected_index == 1
        assert [r.name for r in fs][1:] == ['r1', 'r3']

    def test_remove_first_saved_selects_default(self):
        fs = self.make_set()
        fs.select(1)
        fs.remove(1)
        assert fs.selected_index == 0

    def test_remove_before_selected_keeps_same_rule(self):
        fs = self.make_set()
        fs.select(3)
        fs.remove(1)
        assert fs.selected_rule.name == 'r3'

    def test_select_resets_unread(self):
        fs = self.make_set()
        fs.update_unread_counts([make_message(tag='T2')])
        assert fs[2].unread_count == 1
        fs.select(2)
        assert fs[2].unread_count == 0

    def test_selected_rule_is_not_counted(self):
        fs = self.make_set()
        fs.select(1)
        fs.update_unread_counts([make_message(tag='T1'), make_message(tag='T2')])
        assert fs[1].unread_count == 0
        assert fs[2].unread_count == 1
        assert fs[0].unread_count == 2

    def test_reset_unread_counts(self):
        fs = self.make_set()
        fs.update_unread_counts([make_message(tag='T1')])
        fs.reset_unread_counts()
        assert all(r.unread_count == 0 for r in fs)

    def test_transient_rules(self):
        fs  = self.make_set(1)
        idx = fs.add(FilterRule('gms (Session Filter)', app_name='gms', transient=True))
        assert fs.find_transient_app_filter('gms') == idx
        assert fs.find_transient_app_filter('other') is None
        assert [r.name for r in fs.persistent_rules()] == ['r1']
