"""
Fuzzer worker: the loop which spawns a target, drives it and merges the
results into the shared corpus.

One iteration goes through the states:

    RESET -> SPAWNING -> AWAITING_ATTACH -> DRIVING -> COLLECTING -> MERGING

The target is driven by a DriverThread while the worker thread blocks in
the debugger session: the debugger only returns once the target exited
or crashed, but actions have to be sent while it is alive.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum

from ptrace.error import PtraceError, writeError

from guifuzz.action import make_input
from guifuzz.corpus import Statistics
from guifuzz.debugger import TargetDebugger
from guifuzz.generator import generate
from guifuzz.mutator import Mutator
from guifuzz.process.tools import runCommand
from guifuzz.rng import Rng
from guifuzz.ui import WindowNotFound, perform_actions

log = logging.getLogger(__name__)

# Delay between two attempts to find the target window
ATTACH_RETRY_DELAY = 0.200


class WorkerState(Enum):
    RESET = "reset"
    SPAWNING = "spawning"
    AWAITING_ATTACH = "awaiting_attach"
    DRIVING = "driving"
    COLLECTING = "collecting"
    MERGING = "merging"


class DriverThread(threading.Thread):
    """
    Attach to the target window and send it a fuzz input. The performed
    actions are stored in `result`, an unexpected exception in `error`.
    """

    def __init__(self, worker, pid, generate):
        threading.Thread.__init__(self, name="%s-driver" % worker.name, daemon=True)
        self.worker = worker
        self.pid = pid
        self.generate = generate
        self.result = None
        self.error = None

    def run(self):
        try:
            self.result = self.worker.drive(self.pid, self.generate)
        except Exception as err:
            self.error = err


class Worker:
    def __init__(
        self,
        corpus,
        backend,
        config,
        arguments,
        debugger_factory=TargetDebugger.spawn,
        name="worker",
        rng=None,
        sleep=time.sleep,
    ):
        self.corpus = corpus
        self.backend = backend
        self.config = config
        self.arguments = arguments
        self.debugger_factory = debugger_factory
        self.name = name
        self.rng = rng or Rng()
        self.sleep = sleep
        self.local = Statistics()
        self.state = WorkerState.RESET

        # Set once the debug session of the current target is over
        self.finished = threading.Event()

    def setState(self, state):
        self.state = state
        log.debug("%s: %s", self.name, state.value)

    def reset(self):
        """Remove the state left by the previous target instance."""
        command = self.config.target_reset_command
        if command:
            status = runCommand(log, command, raise_error=False)
            if status:
                log.warning("%s: reset command exited with status %s", self.name, status)
        jitter = self.config.fuzzer_reset_jitter_ms
        if jitter:
            self.sleep((self.rng.rand() % jitter) / 1000.0)

    def spawn(self):
        debugger = self.debugger_factory(self.arguments)
        if self.config.target_instrumentation:
            debugger.load_instrumentation(self.config.target_instrumentation)
        return debugger

    def attach(self, pid):
        """
        Wait until the target window can be found. Return None if the
        target is gone first or if the attach timeout expired.
        """
        title = self.config.target_window_title
        timeout = self.config.target_attach_timeout
        start = time.monotonic()
        while not self.finished.is_set():
            try:
                return self.backend.attach(pid, title)
            except WindowNotFound:
                pass
            if timeout and timeout <= time.monotonic() - start:
                log.warning(
                    "%s: no window %r for pid %s after %.1f sec",
                    self.name, title, pid, timeout,
                )
                return None
            self.finished.wait(ATTACH_RETRY_DELAY)
        return None

    def drive(self, pid, generate_input):
        window = self.attach(pid)
        if window is None:
            return make_input()
        self.setState(WorkerState.DRIVING)

        rng = Rng()
        if generate_input or self.corpus.is_empty():
            return make_input(generate(window, rng, self.sleep))
        fuzz_input = Mutator(rng).mutate(self.corpus.mutation_pool())
        perform_actions(window, fuzz_input, self.sleep)
        return fuzz_input

    def run_once(self):
        """
        Run one fuzz case. Return (fuzz_input, exit_type), or None if the
        fuzz case was dropped.
        """
        self.setState(WorkerState.RESET)
        self.reset()

        self.setState(WorkerState.SPAWNING)
        debugger = self.spawn()

        self.setState(WorkerState.AWAITING_ATTACH)
        self.finished.clear()
        generate_input = (self.rng.rand() & self.config.fuzzer_generate_mask) == 0
        driver = DriverThread(self, debugger.pid, generate_input)
        driver.start()

        try:
            exit_type = debugger.run()
        except PtraceError as err:
            writeError(log, err, "%s: debugger error" % self.name)
            exit_type = None
        finally:
            # The target must not outlive the fuzz case
            self.setState(WorkerState.COLLECTING)
            debugger.kill()
            coverage = debugger.take_coverage()
            debugger.close()
            self.finished.set()

        self.setState(WorkerState.MERGING)
        driver.join()
        if driver.error is not None:
            writeError(log, driver.error, "%s: driver error" % self.name)
            return None
        if exit_type is None:
            return None

        fuzz_input = driver.result
        self.corpus.merge_coverage(coverage, fuzz_input, self.local)
        self.corpus.record_case(self.local)
        if exit_type.is_crash:
            self.corpus.merge_crash(exit_type.signature, fuzz_input, self.local)
        return fuzz_input, exit_type

    def run_forever(self):
        while True:
            self.run_once()
