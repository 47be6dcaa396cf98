"""
Coverage instrumentation configuration.

The file lists the code locations which get a one-shot breakpoint, one
per line:

    # module       offset
    gnome-calculator 0x1a2b0
    libgtk-3.so.0    73728

Offsets are relative to the start of the module mapping.
"""

import pathlib
from collections import defaultdict


class InstrumentationError(ValueError):
    pass


def parse_offset(text):
    """
    >>> parse_offset("0x10")
    16
    >>> parse_offset("42")
    42
    """
    try:
        return int(text, 0)
    except ValueError:
        raise InstrumentationError("Invalid offset: %r" % text)


def parse_instrumentation(text, filename="<string>"):
    """
    Return a dict: module name => sorted list of offsets.
    """
    points = defaultdict(set)
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) != 2:
            raise InstrumentationError(
                "%s:%s: expected 'module offset', got %r" % (filename, lineno, line)
            )
        module, offset = parts
        try:
            points[module].add(parse_offset(offset))
        except InstrumentationError as err:
            raise InstrumentationError("%s:%s: %s" % (filename, lineno, err))
    return {module: sorted(offsets) for module, offsets in points.items()}


def load_instrumentation(path):
    path = pathlib.Path(path)
    try:
        text = path.read_text()
    except OSError as err:
        raise InstrumentationError(
            "Unable to read instrumentation file %s: %s" % (path, err)
        )
    return parse_instrumentation(text, str(path))
