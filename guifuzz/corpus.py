"""
Coverage and corpus database shared by all fuzzer workers.

The Corpus object owns the global Statistics and the single lock which
protects them: workers never touch the shared fields directly, they only
call the merge methods and the read-only accessors below.

Two retention policies coexist:

 - coverage_db is first-write-wins: the first input to reach a
   (module, offset) key keeps it forever;
 - crash_db is last-write-wins: the most recent input crashing with a
   signature replaces the previous one.
"""

from __future__ import annotations

import logging
import pathlib
import threading
from dataclasses import dataclass, field

from guifuzz.action import format_input, input_filename, parse_input

log = logging.getLogger(__name__)

CoverageKey = tuple[str, int]


class CorpusError(Exception):
    pass


@dataclass
class Statistics:
    """Fuzz case statistics."""

    # Number of fuzz cases
    fuzz_cases: int = 0

    # (module, offset) => first fuzz input which reached it
    coverage_db: dict = field(default_factory=dict)

    # Set and list of all unique inputs, in insertion order
    input_db: set = field(default_factory=set)
    input_list: list = field(default_factory=list)

    # Set and list of all unique actions, in first-seen order
    unique_action_set: set = field(default_factory=set)
    unique_actions: list = field(default_factory=list)

    # Number of crashes
    crashes: int = 0

    # Crash signature => last fuzz input which crashed with it
    crash_db: dict = field(default_factory=dict)

    def add_input(self, fuzz_input) -> bool:
        """
        Add an input to the input databases and register its actions.
        Return False if the input was already known.
        """
        if fuzz_input in self.input_db:
            return False
        self.input_db.add(fuzz_input)
        self.input_list.append(fuzz_input)
        for action in fuzz_input:
            if action not in self.unique_action_set:
                self.unique_action_set.add(action)
                self.unique_actions.append(action)
        return True


@dataclass(frozen=True)
class CorpusSnapshot:
    fuzz_cases: int
    coverage: int
    inputs: int
    unique_actions: int
    crashes: int
    unique_crashes: int


@dataclass(frozen=True)
class MutationPool:
    """Read-only view of the corpus used by the mutator."""

    inputs: tuple
    unique_actions: tuple


class Corpus:
    def __init__(self, inputs_dir="inputs", persist=True):
        self.inputs_dir = pathlib.Path(inputs_dir)
        self.persist = persist
        self._stats = Statistics()
        self._lock = threading.Lock()

    def persist_input(self, fuzz_input) -> pathlib.Path:
        """
        Write the input into the inputs directory.

        The file name is the content hash of the input, so writing the
        same input twice gives the same path.
        """
        path = self.inputs_dir / input_filename(fuzz_input)
        try:
            self.inputs_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(format_input(fuzz_input), encoding="ascii")
        except OSError as err:
            raise CorpusError("Failed to save input to disk: %s" % err) from err
        return path

    def _add_input(self, fuzz_input):
        # Caller holds the lock
        if not self._stats.add_input(fuzz_input):
            return False
        if self.persist:
            path = self.persist_input(fuzz_input)
            log.info("New input %s (%s actions)", path.name, len(fuzz_input))
        return True

    def merge_coverage(self, coverage, fuzz_input, local=None) -> int:
        """
        Merge the coverage of one fuzz case into the corpus.

        Keys already known to the worker's local statistics are skipped
        without taking the lock. Return the number of keys which were new
        to the global coverage database.
        """
        new_keys = 0
        for key in coverage:
            if local is not None:
                if key in local.coverage_db:
                    continue
                local.add_input(fuzz_input)
                local.coverage_db[key] = fuzz_input

            with self._lock:
                if key in self._stats.coverage_db:
                    continue
                self._add_input(fuzz_input)
                self._stats.coverage_db[key] = fuzz_input
            new_keys += 1
        if new_keys:
            log.debug("%s new coverage entries", new_keys)
        return new_keys

    def merge_crash(self, signature, fuzz_input, local=None):
        """
        Record a crashing input. The input is always kept in the corpus,
        even if it did not reach new coverage, and replaces any previous
        input stored for the same crash signature.
        """
        if local is not None:
            local.crashes += 1
            local.add_input(fuzz_input)
            local.crash_db[signature] = fuzz_input

        with self._lock:
            self._stats.crashes += 1
            new_crash = signature not in self._stats.crash_db
            self._add_input(fuzz_input)
            self._stats.crash_db[signature] = fuzz_input
        if new_crash:
            log.warning("New crash: %s", signature)
        else:
            log.info("Crash: %s", signature)

    def record_case(self, local=None):
        if local is not None:
            local.fuzz_cases += 1
        with self._lock:
            self._stats.fuzz_cases += 1

    def load_inputs(self, directory=None) -> int:
        """
        Seed the corpus with inputs persisted by a previous run.
        Return the number of inputs added.
        """
        directory = pathlib.Path(directory or self.inputs_dir)
        if not directory.is_dir():
            return 0
        count = 0
        for path in sorted(directory.glob("*.input")):
            try:
                fuzz_input = parse_input(path.read_text(encoding="ascii"))
            except (OSError, ValueError) as err:
                log.warning("Skip input %s: %s", path, err)
                continue
            with self._lock:
                if self._stats.add_input(fuzz_input):
                    count += 1
        log.info("Loaded %s inputs from %s", count, directory)
        return count

    def is_empty(self) -> bool:
        with self._lock:
            return not self._stats.input_list

    def mutation_pool(self) -> MutationPool:
        with self._lock:
            return MutationPool(
                tuple(self._stats.input_list), tuple(self._stats.unique_actions)
            )

    def snapshot(self) -> CorpusSnapshot:
        with self._lock:
            stats = self._stats
            return CorpusSnapshot(
                fuzz_cases=stats.fuzz_cases,
                coverage=len(stats.coverage_db),
                inputs=len(stats.input_db),
                unique_actions=len(stats.unique_actions),
                crashes=stats.crashes,
                unique_crashes=len(stats.crash_db),
            )

    def coverage_input(self, key):
        with self._lock:
            return self._stats.coverage_db.get(key)

    def crash_input(self, signature):
        with self._lock:
            return self._stats.crash_db.get(signature)

    def contains(self, fuzz_input) -> bool:
        with self._lock:
            return fuzz_input in self._stats.input_db

    def inputs(self) -> tuple:
        with self._lock:
            return tuple(self._stats.input_list)

    def unique_actions(self) -> tuple:
        with self._lock:
            return tuple(self._stats.unique_actions)

    def coverage_keys(self) -> frozenset:
        with self._lock:
            return frozenset(self._stats.coverage_db)
