"""
Tests for the UI automation layer: action replay and backend loading.

Run with: pytest test_ui.py -v
"""

from unittest.mock import Mock, patch

import pytest
from fakes import FakeBackend, FakeWindow, record_sleep

from guifuzz.action import Close, KeyPress, LeftClick, MenuAction, make_input
from guifuzz.ui import (
    MENU_SETTLE_DELAY,
    UIError,
    WindowNotFound,
    load_backend,
    perform_actions,
)


class TestPerformActions:
    """Test replaying a fuzz input against a window."""

    def test_replay_all_kinds(self):
        window = FakeWindow()
        sleep, delays = record_sleep()
        fuzz_input = make_input([LeftClick(2), KeyPress(53), MenuAction(9), Close()])

        perform_actions(window, fuzz_input, sleep)

        assert window.events == [
            ("click", "button2"),
            ("key", 53),
            ("menu", 9),
            ("close",),
        ]
        assert delays == [MENU_SETTLE_DELAY]

    def test_out_of_range_click_is_skipped(self):
        window = FakeWindow(controls=("only",))

        perform_actions(window, make_input([LeftClick(3), KeyPress(49)]))

        assert window.events == [("key", 49)]

    def test_stop_when_window_has_no_controls(self):
        """Test that an empty control listing ends the replay."""
        window = FakeWindow(controls=())

        perform_actions(window, make_input([LeftClick(0), KeyPress(49)]))

        assert window.events == []

    def test_failing_action_is_ignored(self):
        window = FakeWindow()
        window.failing = {"click", "menu"}
        sleep, delays = record_sleep()

        perform_actions(window, make_input([LeftClick(0), MenuAction(1), KeyPress(50)]), sleep)

        assert window.events == [("click", "button0"), ("menu", 1), ("key", 50)]
        assert delays == [MENU_SETTLE_DELAY]

    def test_stop_when_controls_are_gone(self):
        """Test that replay stops once the window can't be enumerated."""
        window = FakeWindow(lifetime=1)

        perform_actions(window, make_input([LeftClick(0), LeftClick(1), KeyPress(49)]))

        assert window.events == [("click", "button0")]

    def test_empty_input(self):
        window = FakeWindow()

        perform_actions(window, make_input())

        assert window.events == []


class TestErrors:
    def test_error_hierarchy(self):
        assert issubclass(WindowNotFound, UIError)
        assert issubclass(UIError, OSError)

    def test_fake_backend_retries(self):
        window = FakeWindow()
        backend = FakeBackend(window, failures=1)

        with pytest.raises(WindowNotFound):
            backend.attach(1, "Calculator")
        assert backend.attach(1, "Calculator") is window


class TestLoadBackend:
    """Test the entry point lookup."""

    def make_entry_point(self, name, backend_class):
        entry_point = Mock(value="tests:%s" % name)
        entry_point.name = name
        entry_point.load.return_value = backend_class
        return entry_point

    def test_load_registered_backend(self):
        entry_points = [
            self.make_entry_point("other", Mock()),
            self.make_entry_point("fake", FakeBackend),
        ]

        with patch("guifuzz.ui.entry_points", return_value=entry_points):
            backend = load_backend("fake")

        assert isinstance(backend, FakeBackend)

    def test_unknown_backend(self):
        entry_points = [self.make_entry_point("other", Mock())]

        with patch("guifuzz.ui.entry_points", return_value=entry_points):
            with pytest.raises(LookupError, match="other"):
                load_backend("missing")
