"""
Fuzzer actions and fuzz inputs.

An Action is a single synthetic UI event. A fuzz input is an ordered
tuple of actions: tuples are immutable and hashable, so the same input
object can be shared by the coverage database, the input set, the input
list and the crash database without ever being copied or modified.
"""

import re
import struct
from dataclasses import dataclass
from enum import IntEnum
from hashlib import blake2b


class ActionKind(IntEnum):
    # Declaration order is the sort order of actions
    LEFT_CLICK = 0
    CLOSE = 1
    MENU_ACTION = 2
    KEY_PRESS = 3


# Name and payload field used by the human readable dump
ACTION_FORMAT = {
    ActionKind.LEFT_CLICK: ("LeftClick", "idx"),
    ActionKind.CLOSE: ("Close", None),
    ActionKind.MENU_ACTION: ("MenuAction", "menu_id"),
    ActionKind.KEY_PRESS: ("KeyPress", "key"),
}
ACTION_NAMES = {name: (kind, field) for kind, (name, field) in ACTION_FORMAT.items()}

ACTION_REGEX = re.compile(
    r"^(?P<name>[A-Za-z]+)(?:\s*\{\s*(?P<field>[a-z_]+):\s*(?P<value>\d+)\s*\})?,?$"
)


# Payloads are stored as unsigned 64-bit integers
MAX_VALUE = (1 << 64) - 1


class InputFormatError(ValueError):
    pass


@dataclass(frozen=True, order=True)
class Action:
    kind: ActionKind
    value: int = 0

    def __post_init__(self):
        if not 0 <= self.value <= MAX_VALUE:
            raise ValueError("Action value out of range: %r" % (self.value,))

    @classmethod
    def left_click(cls, idx):
        return cls(ActionKind.LEFT_CLICK, idx)

    @classmethod
    def close(cls):
        return cls(ActionKind.CLOSE)

    @classmethod
    def menu_action(cls, menu_id):
        return cls(ActionKind.MENU_ACTION, menu_id)

    @classmethod
    def key_press(cls, key):
        return cls(ActionKind.KEY_PRESS, key)

    def __str__(self):
        name, field = ACTION_FORMAT[self.kind]
        if field is None:
            return name
        return "%s { %s: %s }" % (name, field, self.value)

    def __repr__(self):
        return "<Action %s>" % self


def LeftClick(idx):
    return Action.left_click(idx)


def Close():
    return Action.close()


def MenuAction(menu_id):
    return Action.menu_action(menu_id)


def KeyPress(key):
    """
    Create a key press action. key is a key code or a one character string.

    >>> KeyPress("5")
    <Action KeyPress { key: 53 }>
    """
    if isinstance(key, str):
        key = ord(key)
    return Action.key_press(key)


def make_input(actions=()):
    """Build a fuzz input (a tuple of actions) from an iterable."""
    return tuple(actions)


def input_hash(fuzz_input):
    """
    64-bit content hash of a fuzz input.

    It only depends on the action sequence, so it is stable between two
    runs and used as the file name of the persisted input.
    """
    digest = blake2b(digest_size=8)
    for action in fuzz_input:
        digest.update(struct.pack("<BQ", action.kind, action.value))
    return int.from_bytes(digest.digest(), "little")


def input_filename(fuzz_input):
    return "%016x.input" % input_hash(fuzz_input)


def format_input(fuzz_input):
    lines = ["["]
    for action in fuzz_input:
        lines.append("    %s," % action)
    lines.append("]")
    return "\n".join(lines) + "\n"


def parse_action(text):
    match = ACTION_REGEX.match(text.strip())
    if not match:
        raise InputFormatError("Invalid action: %r" % text)
    name = match.group("name")
    try:
        kind, field = ACTION_NAMES[name]
    except KeyError:
        raise InputFormatError("Unknown action type: %r" % name)
    if field is None:
        if match.group("field"):
            raise InputFormatError("%s action has no argument" % name)
        return Action(kind)
    if match.group("field") != field:
        raise InputFormatError("%s action expects the %r field" % (name, field))
    try:
        return Action(kind, int(match.group("value")))
    except ValueError as err:
        raise InputFormatError(str(err))


def parse_input(text):
    """
    Parse the output of format_input() back into a fuzz input.

    >>> parse_input("[\\n    Close,\\n]\\n")
    (<Action Close>,)
    """
    lines = [line.strip() for line in text.splitlines()]
    lines = [line for line in lines if line]
    if len(lines) < 2 or lines[0] != "[" or lines[-1] != "]":
        raise InputFormatError("Fuzz input must be enclosed in [ and ]")
    return make_input(parse_action(line) for line in lines[1:-1])
