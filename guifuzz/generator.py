"""
Generate a fresh fuzz input by exploring the live target at random.
"""

import time

from guifuzz.action import Action
from guifuzz.ui import MENU_SETTLE_DELAY, UIError


def _ignore_ui_error(func, *args):
    try:
        func(*args)
    except UIError:
        pass


def generate(window, rng, sleep=time.sleep):
    """
    Click, type and use menus until the window can no longer be reached,
    then return the list of performed actions.
    """
    actions = []
    rand = rng.rand
    while True:
        # Click on a random GUI element
        try:
            controls = window.enumerate_controls()
        except UIError:
            return actions
        if not controls:
            return actions
        index = rand() % len(controls)
        actions.append(Action.left_click(index))
        _ignore_ui_error(window.left_click, controls[index])

        # Press a random digit
        key = rand() % 10 + ord("0")
        actions.append(Action.key_press(key))
        _ignore_ui_error(window.press_key, key)

        # Sometimes press any key
        if rand() & 0x1F == 0:
            key = rand() & 0xFF
            actions.append(Action.key_press(key))
            _ignore_ui_error(window.press_key, key)

        # Rarely close the application
        if rand() & 0xFF == 0:
            actions.append(Action.close())
            _ignore_ui_error(window.close)

        # Sometimes use a menu item
        if rand() & 0x1F == 0:
            try:
                menu_ids = sorted(window.enumerate_menu_ids())
            except UIError:
                menu_ids = []
            if menu_ids:
                menu_id = menu_ids[rand() % len(menu_ids)]
                actions.append(Action.menu_action(menu_id))
                _ignore_ui_error(window.invoke_menu, menu_id)
                sleep(MENU_SETTLE_DELAY)
