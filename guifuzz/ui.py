"""
UI automation interface.

The native layer (finding the target window, listing its controls,
synthesizing clicks and key presses, listing menu commands) is provided
by a backend registered in the 'guifuzz.backends' entry point group.
The fuzzer only relies on the UIBackend and Window classes below.
"""

from __future__ import annotations

import logging
import sys
import time
from importlib.metadata import entry_points

from guifuzz.action import ActionKind

log = logging.getLogger(__name__)

BACKEND_GROUP = "guifuzz.backends"

# Delay after a menu action to let dialogs open
MENU_SETTLE_DELAY = 0.250


class UIError(OSError):
    """A UI automation call failed (window gone, event rejected, ...)."""


class WindowNotFound(UIError):
    """The target window does not exist (yet)."""


class Window:
    """
    Handle to the main window of the target process.
    Every method raises UIError on failure.
    """

    def enumerate_controls(self) -> list:
        """Return the currently visible controls, in a stable order."""
        raise NotImplementedError()

    def left_click(self, control) -> None:
        raise NotImplementedError()

    def press_key(self, key: int) -> None:
        raise NotImplementedError()

    def enumerate_menu_ids(self) -> set[int]:
        raise NotImplementedError()

    def invoke_menu(self, menu_id: int) -> None:
        raise NotImplementedError()

    def close(self) -> None:
        raise NotImplementedError()


class UIBackend:
    name = None

    def attach(self, pid: int, title: str) -> Window:
        """
        Return the window of the process `pid` which has the title `title`.
        Raise WindowNotFound if there is no such window.
        """
        raise NotImplementedError()


def load_backend(name: str) -> UIBackend:
    """Create the UI backend registered under `name`."""
    if sys.version_info >= (3, 10):
        eps = entry_points(group=BACKEND_GROUP)
    else:
        eps = entry_points().get(BACKEND_GROUP, [])
    for ep in eps:
        if ep.name == name:
            backend_class = ep.load()
            log.info("Using UI backend %s (%s)", name, ep.value)
            return backend_class()
    available = ", ".join(sorted(ep.name for ep in eps)) or "none"
    raise LookupError(
        "Unknown UI backend %r (available backends: %s)" % (name, available)
    )


def perform_actions(window, actions, sleep=time.sleep) -> None:
    """
    Replay a fuzz input against a live window.

    A failing action is ignored; replay stops early if the controls can
    no longer be listed or the listing is empty, since the target is gone.
    """
    for action in actions:
        kind = action.kind
        if kind == ActionKind.LEFT_CLICK:
            try:
                controls = window.enumerate_controls()
            except UIError:
                return
            if not controls:
                return
            if action.value < len(controls):
                try:
                    window.left_click(controls[action.value])
                except UIError:
                    pass
        elif kind == ActionKind.CLOSE:
            try:
                window.close()
            except UIError:
                pass
        elif kind == ActionKind.MENU_ACTION:
            try:
                window.invoke_menu(action.value)
            except UIError:
                pass
            sleep(MENU_SETTLE_DELAY)
        elif kind == ActionKind.KEY_PRESS:
            try:
                window.press_key(action.value)
            except UIError:
                pass
