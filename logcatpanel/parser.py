"""
`adb logcat` text output -> LogMessage.

Understands the two formats most people have lying around:

    threadtime  08-11 19:11:07.132   495   512 D dtag    : message
    brief       D/dtag    (  495): message

Process names are not part of either format. They are learned from
ActivityManager "Start proc" lines and forgotten on "has died", the
way pidcat tracks them; until then a pid maps to '?'.
"""

import re
import subprocess

from .messages import LogLevel, LogMessage


UNKNOWN_PROCESS = '?'

THREADTIME_LINE = re.compile(
    r'^(?P<date>\d\d-\d\d)\s+(?P<time>\d\d:\d\d:\d\d\.\d+)\s+'
    r'(?P<pid>\d+)\s+(?P<tid>\d+)\s+(?P<level>[VDIWEFA])\s+'
    r'(?P<tag>.*?)\s*: (?P<text>.*)$')
BRIEF_LINE = re.compile(r'^(?P<level>[VDIWEFA])/(?P<tag>.+?)\( *(?P<pid>\d+)\): (?P<text>.*)$')

PID_START      = re.compile(r'^Start proc (\d+):([a-zA-Z0-9._:]+)/[a-z0-9]+ for ')
PID_START_UGID = re.compile(r'^Start proc ([a-zA-Z0-9._:]+) for .*?: pid=(\d+) ')
PID_DEATH      = re.compile(r'^Process ([a-zA-Z0-9._:]+) \(pid (\d+)\) has died')


class LogcatParser:

    def __init__(self):
        self.pids: dict = {}

    def _track(self, tag: str, text: str) -> None:
        if tag != 'ActivityManager':
            return
        m = PID_START.match(text)
        if m:
            self.pids[int(m[1])] = m[2]
            return
        m = PID_START_UGID.match(text)
        if m:
            self.pids[int(m[2])] = m[1]
            return
        m = PID_DEATH.match(text)
        if m:
            self.pids.pop(int(m[2]), None)

    def parse_line(self, line: str):
        # Returns a LogMessage, or None for banners and unrecognised lines.
        line = line.rstrip('\r\n')
        m = THREADTIME_LINE.match(line)
        if m:
            ts  = f'{m["date"]} {m["time"]}'
            tid = int(m['tid'])
        else:
            m = BRIEF_LINE.match(line)
            if not m:
                return None
            ts  = ''
            tid = None

        pid = int(m['pid'])
        tag = m['tag'].strip()
        self._track(tag, m['text'])
        return LogMessage(
            timestamp    = ts,
            pid          = pid,
            process_name = self.pids.get(pid, UNKNOWN_PROCESS),
            tag          = tag,
            level        = LogLevel.parse(m['level']),
            text         = m['text'],
            tid          = tid,
        )

    def parse_lines(self, lines) -> list:
        out = []
        for line in lines:
            msg = self.parse_line(line)
            if msg is not None:
                out.append(msg)
        return out


def pump(stream, on_batch, batch_size: int = 1, parser: LogcatParser | None = None) -> int:
    """
    Read logcat text from *stream* until EOF, handing parsed messages to
    on_batch(list) in groups of up to batch_size. Runs on the ingestion
    thread; returns the number of messages delivered.
    """
    parser = parser or LogcatParser()
    batch  = []
    total  = 0
    for raw in stream:
        msg = parser.parse_line(raw)
        if msg is None:
            continue
        batch.append(msg)
        if len(batch) >= batch_size:
            on_batch(batch)
            total += len(batch)
            batch = []
    if batch:
        on_batch(batch)
        total += len(batch)
    return total


def adb_logcat_command(serial: str | None = None) -> list:
    cmd = ['adb']
    if serial:
        cmd += ['-s', serial]
    return cmd + ['logcat', '-v', 'threadtime']


def open_adb_logcat(serial: str | None = None) -> subprocess.Popen:
    return subprocess.Popen(
        adb_logcat_command(serial),
        stdout   = subprocess.PIPE,
        stderr   = subprocess.DEVNULL,
        text     = True,
        encoding = 'utf-8',
        errors   = 'replace',
        bufsize  = 1,
    )
