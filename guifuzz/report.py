"""
Periodic statistics: one line per interval into the stats file (for
plotting) and one human readable line on the console.
"""

import time

from guifuzz.corpus import CorpusError


def formatStatsLine(uptime, snapshot):
    """
    >>> from guifuzz.corpus import CorpusSnapshot
    >>> formatStatsLine(12.3, CorpusSnapshot(7, 50, 3, 12, 1, 1))
    '          12       7       50     3      1      1'
    """
    return "%12.0f %7d %8d %5d %6d %6d" % (
        uptime,
        snapshot.fuzz_cases,
        snapshot.coverage,
        snapshot.inputs,
        snapshot.crashes,
        snapshot.unique_crashes,
    )


def formatConsoleLine(uptime, snapshot):
    return (
        "%12.2f uptime | %7d fuzz cases | %5d uniq actions | "
        "%8d coverage | %5d inputs | %6d crashes [%6d unique]"
        % (
            uptime,
            snapshot.fuzz_cases,
            snapshot.unique_actions,
            snapshot.coverage,
            snapshot.inputs,
            snapshot.crashes,
            snapshot.unique_crashes,
        )
    )


class Reporter:
    def __init__(self, corpus, stats_file, console, start_time=None):
        self.corpus = corpus
        self.stats_file = stats_file
        self.console = console
        if start_time is None:
            start_time = time.monotonic()
        self.start_time = start_time

    def report(self):
        """Write one statistics line; a write error is fatal."""
        uptime = time.monotonic() - self.start_time
        snapshot = self.corpus.snapshot()
        self.console(formatConsoleLine(uptime, snapshot))
        try:
            self.stats_file.write(formatStatsLine(uptime, snapshot) + "\n")
            self.stats_file.flush()
        except OSError as err:
            raise CorpusError("Unable to write statistics: %s" % err) from err
        return snapshot
