#!/usr/bin/env python3
"""
logcatpanel - terminal logcat viewer with saved filters and unread counts
Requires: urwid  →  pip install urwid

Usage:    logcatpanel -a [-s SERIAL]        stream `adb logcat -v threadtime`
          logcatpanel -f <dump.txt>          open a saved logcat dump
          adb logcat -v threadtime | logcatpanel -f -

Keys:
  /         focus the search bar (pid:, app:, tag:, text: limit the scope)
  Enter     return to log view
  Esc       clear the search, return to log view
  l / L     raise / lower the minimum level
  f         focus the saved-filter list
  n         new saved filter      e  edit selected      x  delete selected
  a         session filter for the app of the focused message
  c         clear the log
  s         save visible messages to logcat_<timestamp>.txt
  g / G     jump to top / bottom
  q         quit

Mouse:    scroll wheel navigates the log; click a level pill to set the minimum
          level; click a saved filter to select it
"""

import argparse
import os
import queue as _queue
import sys
import threading
from datetime import datetime

import urwid

from .diagnostics import warn
from .filters import FilterRule, PatternError
from .messages import MAX_MESSAGES_DEFAULT, LogLevel
from .panel import LogcatPanel, PanelConfig
from .parser import LogcatParser, open_adb_logcat, pump
from .persistence import default_filters_path


# Palette
PALETTE = [
    # chrome
    ('header',   'white,bold',        'dark blue'),
    ('h_dim',    'light blue',        'dark blue'),
    ('footer',   'black',             'light gray'),
    ('fk',       'dark blue,bold',    'light gray'),
    # search bar
    ('fl',       'dark cyan,bold',    'default'),
    ('fe',       'white',             'dark gray'),
    ('fe_f',     'white,bold',        'dark blue'),
    ('ferr',     'light red,bold',    'dark gray'),
    # level pills: normal / selected minimum
    ('pill',     'light gray',        'dark gray'),
    ('pill_a',   'black,bold',        'dark cyan'),
    # log lines, one per level
    ('lv',       'light gray',        'default'),
    ('ld',       'dark cyan',         'default'),
    ('li',       'light green',       'default'),
    ('lw',       'yellow',            'default'),
    ('le',       'light red',         'default'),
    ('la',       'light magenta,bold', 'default'),
    ('lmeta',    'dark gray',         'default'),
    ('focus',    'black',             'light gray'),
    # saved filter pane
    ('sp_border', 'dark cyan',        'default'),
    ('sp_body',   'light gray',       'default'),
    ('sp_sel',    'black,bold',       'dark cyan'),
    ('sp_unread', 'yellow,bold',      'default'),
    ('sp_focus',  'white,bold',       'dark blue'),
    # dialog
    ('dlg_box',  'white',             'dark blue'),
    ('dlg_err',  'light red,bold',    'dark blue'),
]

_LEVEL_ATTR = {
    LogLevel.VERBOSE: 'lv',
    LogLevel.DEBUG:   'ld',
    LogLevel.INFO:    'li',
    LogLevel.WARN:    'lw',
    LogLevel.ERROR:   'le',
    LogLevel.ASSERT:  'la',
}

FILTERS_WIDTH = 32   # chars for the left-side saved filter pane
FILE_BATCH    = 2000  # messages per batch when reading a finished file


def make_markup(m) -> list:
    attr = _LEVEL_ATTR.get(m.level, 'lv')
    meta = f'{m.timestamp:<18} {m.pid:>5} {m.process_name[:20]:<20} '
    return [('lmeta', meta), (attr, f'{m.level.letter} {m.tag[:20]:<20} {m.text}')]


# Lazy List Walker
class MessageWalker(urwid.ListWalker):
    """
    ListWalker over the currently visible messages that builds urwid.Text
    widgets only for rows the ListBox paints. Bounded cache; cleared on
    every reset().
    """
    CACHE_SIZE = 600

    def __init__(self):
        self._messages: list = []
        self._focus = 0
        self._cache: dict = {}
        self._cache_order: list = []

    def reset(self, messages: list) -> None:
        self._messages = messages
        self._focus    = max(0, min(self._focus, len(messages) - 1))
        self._cache.clear()
        self._cache_order.clear()
        self._modified()

    def message_at(self, pos: int):
        if 0 <= pos < len(self._messages):
            return self._messages[pos]
        return None

    def set_focus(self, pos):
        if 0 <= pos < len(self._messages):
            self._focus = pos
            self._modified()

    def _build(self, pos):
        if pos in self._cache:
            return self._cache[pos]
        w = urwid.AttrMap(urwid.Text(make_markup(self._messages[pos]), wrap='clip'),
                          None, 'focus')
        if len(self._cache) >= self.CACHE_SIZE:
            evict = self._cache_order.pop(0)
            self._cache.pop(evict, None)
        self._cache[pos] = w
        self._cache_order.append(pos)
        return w

    # ListWalker protocol
    def __len__(self):
        return len(self._messages)

    def get_focus(self):
        if not self._messages:
            return None, None
        return self._build(self._focus), self._focus

    def get_next(self, pos):
        nxt = pos + 1
        if nxt >= len(self._messages):
            return None, None
        return self._build(nxt), nxt

    def get_prev(self, pos):
        prv = pos - 1
        if prv < 0:
            return None, None
        return self._build(prv), prv

    # Scrolling protocol (for ScrollBar)
    def get_scrollpos(self, size=None, focus=False):
        return self._focus

    def rows_max(self, size=None, focus=False):
        return len(self._messages)


# Widgets
class SearchEdit(urwid.Edit):
    # Edit that lets Enter/Esc bubble up to unhandled_input.
    def keypress(self, size, key):
        if key in ('enter', 'esc'):
            return key
        return super().keypress(size, key)


class LevelPill(urwid.WidgetWrap):
    signals = ['select']

    def __init__(self, level: LogLevel):
        self.level  = level
        self.active = False
        self._icon  = urwid.SelectableIcon('', 0)
        self._am    = urwid.AttrMap(self._icon, 'pill')
        super().__init__(self._am)
        self._redraw()

    def selectable(self):
        return True

    def _redraw(self):
        mark = '▶' if self.active else ' '
        self._icon.set_text(f' {mark}{self.level.letter} ')
        self._am.set_attr_map({None: 'pill_a' if self.active else 'pill'})

    def set_active(self, active: bool) -> None:
        self.active = active
        self._redraw()

    def keypress(self, size, key):
        if key in ('enter', ' '):
            urwid.emit_signal(self, 'select', self)
            return
        return key

    def mouse_event(self, size, event, button, col, row, focus):
        if event == 'mouse press' and button == 1:
            urwid.emit_signal(self, 'select', self)
            return True
        return False


def filter_label(rule, selected: bool) -> str:
    mark   = '▶' if selected else ' '
    unread = f' ({rule.unread_count:,})' if rule.unread_count else ''
    sess   = ' *' if rule.is_transient else ''
    return f'{mark}{rule.name}{sess}{unread}'


# Filter editor overlay
def make_filter_dialog(behind: urwid.Widget, rule, on_save, on_cancel) -> urwid.Overlay:
    """
    rule:      FilterRule to pre-fill, or None for a new filter
    on_save:   callable(FilterRule), only called with a rule that compiled;
               errors stay in the dialog
    on_cancel: callable()
    """
    f = rule.fields() if rule else {'name': '', 'tag': '', 'text': '', 'pid': '',
                                    'app_name': '', 'min_level': LogLevel.VERBOSE}
    e_name  = urwid.Edit(' Name   : ', f['name'])
    e_tag   = urwid.Edit(' Tag    : ', f['tag'])
    e_text  = urwid.Edit(' Text   : ', f['text'])
    e_pid   = urwid.Edit(' PID    : ', f['pid'])
    e_app   = urwid.Edit(' App    : ', f['app_name'])
    e_level = urwid.Edit(' Level  : ', f['min_level'].letter)
    w_err   = urwid.Text('')

    def _save(_btn):
        name = e_name.get_edit_text().strip()
        if not name:
            w_err.set_text(('dlg_err', ' a filter needs a name'))
            return
        try:
            fields = dict(
                name      = name,
                tag       = e_tag.get_edit_text(),
                text      = e_text.get_edit_text(),
                pid       = e_pid.get_edit_text(),
                app_name  = e_app.get_edit_text(),
                min_level = LogLevel.parse(e_level.get_edit_text() or 'V'),
            )
            new_rule = rule.with_fields(**fields) if rule else FilterRule(**fields)
        except ValueError as exc:   # PatternError or a bad level letter
            w_err.set_text(('dlg_err', f' ⚠ {exc}'))
            return
        on_save(new_rule)

    b_save   = urwid.Button(' Save ')
    b_cancel = urwid.Button(' Cancel ')
    urwid.connect_signal(b_save,   'click', _save)
    urwid.connect_signal(b_cancel, 'click', lambda _b: on_cancel())

    body = urwid.Pile([
        e_name, e_tag, e_text, e_pid, e_app, e_level,
        urwid.Divider('─'),
        w_err,
        urwid.GridFlow([b_save, b_cancel], 12, 2, 0, 'left'),
    ])
    title = ' Edit Filter ' if rule else ' New Filter '
    box   = urwid.AttrMap(urwid.LineBox(urwid.Filler(body, valign='top'), title=title),
                          'dlg_box')
    return urwid.Overlay(
        box, behind,
        'center', ('relative', 60),
        'middle', 13,
    )


# Main Application
class LogcatApp:
    """
    urwid presentation adapter: implements the view side of the
    RefreshCoordinator (is_at_latest / refresh / scroll_to_latest) and
    forwards user actions to LogcatPanel.
    """

    def __init__(self, panel: LogcatPanel, source_name: str = ''):
        self.panel       = panel
        self.source_name = source_name

        self._search_alarm = None
        self.search_err    = ''
        self.visible: list = []
        self._status: str  = ''

        self._loop_ref = None
        self._overlay  = None
        self._tasks: _queue.SimpleQueue = _queue.SimpleQueue()
        self._refresh_fd = None

        self._build_ui()

    # Build
    def _build_ui(self):
        self.w_title = urwid.Text('', wrap='clip')

        self.w_edit = SearchEdit(caption='')
        urwid.connect_signal(self.w_edit, 'postchange',
                             lambda *_: self._on_edit_change())

        self.pills = {lvl: LevelPill(lvl) for lvl in LogLevel}
        for p in self.pills.values():
            urwid.connect_signal(p, 'select', self._on_pill_select)
        self.pills[self.panel.live_level].set_active(True)

        self.w_err_msg = urwid.Text('')
        self.w_search_cols = urwid.Columns(
            [('pack', urwid.Text(('fl', ' Search: '))),
             urwid.AttrMap(self.w_edit, 'fe', 'fe_f')]
            + [('pack', p) for p in self.pills.values()]
            + [('pack', urwid.AttrMap(self.w_err_msg, 'ferr'))],
            dividechars=0, focus_column=1)

        self.w_header = urwid.Pile([
            urwid.AttrMap(self.w_title, 'header'),
            self.w_search_cols,
        ])

        self.walker  = MessageWalker()
        self.listbox = urwid.ListBox(self.walker)
        self._scrollbar = urwid.ScrollBar(self.listbox, side='right', width=1,
                                          thumb_char='┃', trough_char='│')

        self.filter_walker  = urwid.SimpleFocusListWalker([])
        self.filter_listbox = urwid.ListBox(self.filter_walker)
        filters_pane = urwid.AttrMap(
            urwid.LineBox(self.filter_listbox, title=' Saved Filters ',
                          lline=' ', rline='│', tline='─', bline='─',
                          tlcorner='─', trcorner='┐',
                          blcorner='─', brcorner='┘'),
            'sp_border')

        self._body_cols = urwid.Columns(
            [('given', FILTERS_WIDTH, filters_pane), self._scrollbar],
            dividechars=0, focus_column=1)

        self.w_footer = urwid.Text('', wrap='clip')
        self.frame = urwid.Frame(
            body       = self._body_cols,
            header     = self.w_header,
            footer     = urwid.AttrMap(self.w_footer, 'footer'),
            focus_part = 'body',
        )
        self._rebuild_filters_pane()
        self._refresh_title()
        self._refresh_footer()

    def attach(self, loop) -> None:
        # Hook the panel's refresher up to this loop. Tasks scheduled from
        # any thread run on the main-loop thread via the pipe callback.
        self._loop_ref   = loop
        self._refresh_fd = loop.watch_pipe(self._on_refresh_pipe)
        self.panel.attach_view(self, self._schedule)

    def _schedule(self, task) -> None:
        self._tasks.put(task)
        try:
            os.write(self._refresh_fd, b'r')
        except OSError as exc:
            # The task stays queued and runs on the next pipe wake-up.
            warn(f'could not wake the UI for a refresh: {exc}')

    def _on_refresh_pipe(self, _data: bytes) -> None:
        while True:
            try:
                task = self._tasks.get_nowait()
            except _queue.Empty:
                break
            task()

    # View protocol (called by RefreshCoordinator on the loop thread)
    def is_at_latest(self) -> bool:
        n = len(self.walker)
        if n == 0:
            return True
        _, pos = self.walker.get_focus()
        return pos is None or pos >= n - 1

    def refresh(self) -> None:
        self.visible = self.panel.visible_messages()
        self.walker.reset(self.visible)
        self._rebuild_filters_pane()
        self._refresh_title()
        self._refresh_footer()

    def scroll_to_latest(self) -> None:
        if self.visible:
            self.listbox.focus_position = len(self.visible) - 1

    # Refresh
    def _refresh_title(self):
        rule = self.panel.filters.selected_rule
        self.w_title.set_text([
            ('header', ' ◉  logcatpanel  '),
            ('h_dim',  self.source_name),
            ('header', f'  [{rule.name}]  '),
        ])

    def _refresh_footer(self):
        n = len(self.panel.store)
        m = len(self.visible)
        status = [('footer', f'  {self._status}')] if self._status else []
        self.w_footer.set_text([
            ('fk', '  q'),   ('footer', ':quit  '),
            ('fk', '/'),     ('footer', ':search  '),
            ('fk', 'l'),     ('footer', '/'),
            ('fk', 'L'),     ('footer', ':level  '),
            ('fk', 'f'),     ('footer', ':filters  '),
            ('fk', 'n'),     ('footer', '/'),
            ('fk', 'e'),     ('footer', '/'),
            ('fk', 'x'),     ('footer', ':new/edit/del  '),
            ('fk', 'a'),     ('footer', ':app  '),
            ('fk', 'c'),     ('footer', ':clear  '),
            ('fk', 's'),     ('footer', ':save  '),
            ('footer', f'  {m:,} / {n:,} messages'),
            *status,
        ])

    def _rebuild_filters_pane(self):
        filters  = self.panel.filters
        selected = filters.selected_index
        focus    = self.filter_walker.focus if len(self.filter_walker) else None
        items = []
        for i, rule in enumerate(filters):
            btn = urwid.Button(filter_label(rule, i == selected))
            urwid.connect_signal(btn, 'click', lambda _b, idx=i: self.select_filter(idx))
            attr = 'sp_sel' if i == selected else (
                'sp_unread' if rule.unread_count else 'sp_body')
            items.append(urwid.AttrMap(btn, attr, 'sp_focus'))
        self.filter_walker[:] = items
        if items:
            self.filter_walker.set_focus(min(focus if focus is not None else selected,
                                             len(items) - 1))

    # Search
    def _on_edit_change(self):
        if self._loop_ref is None:
            self._apply_search()
            return
        if self._search_alarm is not None:
            self._loop_ref.remove_alarm(self._search_alarm)
            self._search_alarm = None
        self._search_alarm = self._loop_ref.set_alarm_in(0.15, self._on_search_alarm)

    def _on_search_alarm(self, loop, user_data):
        self._search_alarm = None
        self._apply_search()

    def _apply_search(self, level: LogLevel | None = None):
        level = level or self.panel.live_level
        try:
            self.panel.set_live_query(self.w_edit.get_edit_text(), level)
            self.search_err = ''
        except PatternError as exc:
            self.search_err = f'{exc.field}: {exc.reason}'
        self.w_err_msg.set_text(f'  ⚠ invalid regex ({self.search_err})'
                                if self.search_err else '')
        for lvl, pill in self.pills.items():
            pill.set_active(lvl is self.panel.live_level)

    def _on_pill_select(self, pill: LevelPill):
        self._apply_search(pill.level)

    def shift_level(self, step: int) -> None:
        levels = list(LogLevel)
        i = levels.index(self.panel.live_level) + step
        self._apply_search(levels[max(0, min(len(levels) - 1, i))])

    def focus_search(self):
        self.frame.focus_position = 'header'
        try:    self.w_header.focus_position = 1
        except IndexError: pass
        self.w_search_cols.focus_position = 1

    def clear_search(self):
        self.w_edit.set_edit_text('')       # triggers _on_edit_change
        self.frame.focus_position = 'body'

    # Filters
    def focus_filters(self):
        self.frame.focus_position = 'body'
        self._body_cols.focus_position = 0

    def focus_log(self):
        self.frame.focus_position = 'body'
        self._body_cols.focus_position = 1

    def select_filter(self, index: int) -> None:
        self.panel.select_filter(index)
        self.focus_log()

    def new_filter(self) -> None:
        def _save(rule):
            idx = self.panel.add_filter(rule)
            self._close_overlay()
            self.select_filter(idx)
        self._open_overlay(make_filter_dialog(self.frame, None, _save, self._close_overlay))

    def edit_selected_filter(self) -> None:
        idx = self.panel.filters.selected_index
        if idx == 0:
            self._set_status('the default filter cannot be edited')
            return
        rule = self.panel.filters.selected_rule

        def _save(new_rule):
            self.panel.edit_filter(idx, new_rule)
            self._close_overlay()
        self._open_overlay(make_filter_dialog(self.frame, rule, _save, self._close_overlay))

    def delete_selected_filter(self) -> None:
        if not self.panel.remove_filter(self.panel.filters.selected_index):
            self._set_status('the default filter cannot be deleted')

    def app_filter_for_focus(self) -> None:
        _, pos = self.walker.get_focus()
        m = self.walker.message_at(pos) if pos is not None else None
        if m is None or m.process_name == '?':
            self._set_status('no application known for this message')
            return
        self.panel.select_app_filter(m.process_name)

    # Overlay
    def _open_overlay(self, ov) -> None:
        self._overlay = ov
        if self._loop_ref:
            self._loop_ref.widget = ov

    def _close_overlay(self) -> None:
        self._overlay = None
        if self._loop_ref:
            self._loop_ref.widget = self.frame

    @property
    def overlay_open(self) -> bool:
        return self._overlay is not None

    # Actions
    def _set_status(self, text: str) -> None:
        self._status = text
        self._refresh_footer()

    def go_top(self):
        if self.visible:
            self.listbox.focus_position = 0

    def go_bottom(self):
        self.scroll_to_latest()

    def clear_log(self):
        self.panel.clear_messages()

    def save_visible(self) -> None:
        ts    = datetime.now().strftime('%Y%m%d_%H%M%S')
        fname = f'logcat_{ts}.txt'
        try:
            n = self.panel.export_messages(self.visible, os.path.join(os.getcwd(), fname))
            self._set_status(f'saved {n:,} -> {fname}')
        except OSError as exc:
            self._set_status(f'save failed: {exc}')


# Ingestion thread
def _ingest_worker(stream, on_batch, batch_size: int, on_eof):
    try:
        pump(stream, on_batch, batch_size=batch_size, parser=LogcatParser())
    except (OSError, ValueError) as exc:
        warn(f'logcat stream failed: {exc}')
    on_eof()


# Entry point
def main(argv=None):
    ap = argparse.ArgumentParser(
        description='logcatpanel - terminal logcat viewer',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__)
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument('-f', '--file', metavar='PATH',
                     help='logcat dump to open, - for stdin')
    src.add_argument('-a', '--adb', action='store_true',
                     help='stream `adb logcat -v threadtime`')
    ap.add_argument('-s', '--serial', metavar='SERIAL', help='device serial for --adb')
    ap.add_argument('--max-messages', type=int, default=MAX_MESSAGES_DEFAULT,
                    metavar='N', help=f'messages kept in memory (default {MAX_MESSAGES_DEFAULT})')
    ap.add_argument('--filters', metavar='PATH', default=None,
                    help='saved filter file (default ~/.config/logcatpanel/filters.jsonl)')
    ap.add_argument('--level', default='V', help='initial minimum level (V D I W E A)')
    ap.add_argument('--app', metavar='NAME', help='start with a session filter for NAME')
    args = ap.parse_args(argv)

    if args.max_messages < 1:
        ap.error('--max-messages must be at least 1')
    try:
        level = LogLevel.parse(args.level)
    except ValueError as exc:
        ap.error(str(exc))

    config = PanelConfig(max_messages=args.max_messages,
                         filters_path=args.filters or default_filters_path())
    panel  = LogcatPanel(config)

    proc = None
    if args.adb:
        try:
            proc = open_adb_logcat(args.serial)
        except OSError as exc:
            sys.exit(f'Error: could not run adb: {exc}')
        stream, name, batch = proc.stdout, f'adb {args.serial or ""}'.strip(), 1
    elif args.file == '-':
        stream, name, batch = sys.stdin, '(stdin)', 1
    else:
        if not os.path.isfile(args.file):
            sys.exit(f'Error: {args.file!r} not found.')
        stream = open(args.file, encoding='utf-8', errors='replace')
        name, batch = os.path.basename(args.file), FILE_BATCH

    app = LogcatApp(panel, source_name=name)

    def handle_input(key: str):
        if app.overlay_open:
            if key == 'esc':
                app._close_overlay()
            return

        if   key in ('q', 'Q'):
            raise urwid.ExitMainLoop()
        elif key == '/':
            app.focus_search()
        elif key in ('esc', 'enter'):
            if app.frame.focus_position == 'header' and key == 'enter':
                app.focus_log()
            elif key == 'esc':
                app.clear_search()
        elif key == 'l':
            app.shift_level(+1)
        elif key == 'L':
            app.shift_level(-1)
        elif key == 'f':
            app.focus_filters()
        elif key == 'n':
            app.new_filter()
        elif key == 'e':
            app.edit_selected_filter()
        elif key in ('x', 'delete'):
            app.delete_selected_filter()
        elif key == 'a':
            app.app_filter_for_focus()
        elif key == 'c':
            app.clear_log()
        elif key == 's':
            app.save_visible()
        elif key == 'g':
            app.go_top()
        elif key == 'G':
            app.go_bottom()

    loop = urwid.MainLoop(
        app.frame,
        palette         = PALETTE,
        unhandled_input = handle_input,
        handle_mouse    = True,
    )
    app.attach(loop)
    if level is not LogLevel.VERBOSE:
        app._apply_search(level)
    if args.app:
        panel.select_app_filter(args.app)

    eof_fd = loop.watch_pipe(lambda _: app._set_status('end of stream'))

    def _on_eof():
        try:   os.write(eof_fd, b'x')
        except OSError: pass

    threading.Thread(
        target=_ingest_worker,
        args=(stream, panel.on_messages_received, batch, _on_eof),
        daemon=True, name='ingest',
    ).start()

    try:
        loop.run()
    finally:
        if proc is not None:
            proc.terminate()


if __name__ == '__main__':
    main()
