"""Tests for RefreshCoordinator coalescing and auto-scroll."""

import threading

from logcatpanel.refresh import RefreshCoordinator, RefreshState


class FakeView:
    """Records calls; at_latest controls the pinned state."""

    def __init__(self, at_latest: bool = True):
        self.at_latest = at_latest
        self.calls     = []
        self.on_refresh = None

    def is_at_latest(self):
        return self.at_latest

    def refresh(self):
        self.calls.append('refresh')
        if self.on_refresh:
            self.on_refresh()

    def scroll_to_latest(self):
        self.calls.append('scroll')


def make_coordinator(view=None):
    tasks = []
    view  = view or FakeView()
    return RefreshCoordinator(view, tasks.append), tasks, view


def run_all(tasks):
    while tasks:
        tasks.pop(0)()


class TestCoalescing:
    """Tests for the IDLE / REFRESH_PENDING state machine."""

    def test_starts_idle(self):
        rc, tasks, _ = make_coordinator()
        assert rc.state is RefreshState.IDLE
        assert tasks == []

    def test_first_request_schedules(self):
        rc, tasks, _ = make_coordinator()
        assert rc.request_refresh() is True
        assert rc.state is RefreshState.REFRESH_PENDING
        assert len(tasks) == 1

    def test_burst_produces_one_refresh(self):
        rc, tasks, view = make_coordinator()
        results = [rc.request_refresh() for _ in range(50)]
        assert results.count(True) == 1
        assert len(tasks) == 1
        run_all(tasks)
        assert view.calls.count('refresh') == 1
        assert rc.refresh_count == 1
        assert rc.state is RefreshState.IDLE

    def test_request_after_refresh_schedules_again(self):
        rc, tasks, view = make_coordinator()
        rc.request_refresh()
        run_all(tasks)
        rc.request_refresh()
        assert len(tasks) == 1
        run_all(tasks)
        assert rc.refresh_count == 2

    def test_request_during_refresh_is_not_lost(self):
        rc, tasks, view = make_coordinator()
        view.on_refresh = lambda: [rc.request_refresh() for _ in range(3)]
        rc.request_refresh()
        tasks.pop(0)()
        assert len(tasks) == 1
        assert rc.state is RefreshState.REFRESH_PENDING
        view.on_refresh = None
        run_all(tasks)
        assert rc.refresh_count == 2

    def test_concurrent_requests_schedule_once(self):
        rc, tasks, view = make_coordinator()
        start = threading.Barrier(8)

        def hammer():
            start.wait()
            for _ in range(1000):
                rc.request_refresh()

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(tasks) == 1
        assert rc.state is RefreshState.REFRESH_PENDING
        tasks.pop()()
        assert view.calls.count('refresh') == 1
        assert rc.state is RefreshState.IDLE


class TestAutoScroll:
    """Tests for the stay-pinned-to-latest policy."""

    def test_pinned_view_scrolls(self):
        rc, tasks, view = make_coordinator(FakeView(at_latest=True))
        rc.request_refresh()
        run_all(tasks)
        assert view.calls == ['refresh', 'scroll']

    def test_scrolled_away_view_keeps_position(self):
        rc, tasks, view = make_coordinator(FakeView(at_latest=False))
        rc.request_refresh()
        run_all(tasks)
        assert view.calls == ['refresh']

    def test_forced_scroll(self):
        rc, tasks, view = make_coordinator(FakeView(at_latest=False))
        rc.request_refresh()
        rc.request_refresh(scroll_to_latest=True)
        run_all(tasks)
        assert view.calls == ['refresh', 'scroll']
        rc.request_refresh()
        run_all(tasks)
        assert view.calls == ['refresh', 'scroll', 'refresh']
