"""
Tests for the fuzzer worker, with a fake debugger and a fake UI backend.

Run with: pytest test_worker.py -v
"""

import threading
from unittest.mock import patch

import pytest
from fakes import FakeBackend, FakeDebugger, FakeWindow, ScriptedRng, record_sleep
from ptrace.error import PtraceError

from guifuzz.action import ActionKind, KeyPress, LeftClick, make_input
from guifuzz.config import GuifuzzConfig
from guifuzz.corpus import Corpus, CorpusError
from guifuzz.debugger import Crash, Normal
from guifuzz.worker import Worker, WorkerState

CALC_KEY = ("calc.exe", 0x1000)


class DrivenWorker(Worker):
    """Worker which signals when its driver thread is done."""

    def __init__(self, *args, **kw):
        Worker.__init__(self, *args, **kw)
        self.driven = threading.Event()

    def drive(self, pid, generate_input):
        try:
            return Worker.drive(self, pid, generate_input)
        finally:
            self.driven.set()


@pytest.fixture
def config(tmp_path):
    config = GuifuzzConfig(configdir=str(tmp_path), read=False)
    config.fuzzer_reset_jitter_ms = 0
    return config


@pytest.fixture
def corpus(tmp_path):
    return Corpus(tmp_path / "inputs")


@pytest.fixture(autouse=True)
def fast_attach():
    with patch("guifuzz.worker.ATTACH_RETRY_DELAY", 0.001):
        yield


def make_worker(corpus, backend, config, debugger=None, rng_values=(0,), worker_class=DrivenWorker):
    sleep, delays = record_sleep()
    worker = worker_class(
        corpus,
        backend,
        config,
        ["/usr/bin/calc.exe"],
        debugger_factory=lambda arguments: debugger,
        name="worker1",
        rng=ScriptedRng(rng_values),
        sleep=sleep,
    )
    worker.delays = delays
    return worker


class TestReset:
    def test_reset_command_and_jitter(self, corpus, config):
        config.target_reset_command = "gsettings reset-recursively org.gnome.calculator"
        config.fuzzer_reset_jitter_ms = 500
        worker = make_worker(corpus, FakeBackend(), config, rng_values=[1250])

        with patch("guifuzz.worker.runCommand", return_value=0) as run_command:
            worker.reset()

        assert run_command.call_args.args[1] == config.target_reset_command
        assert run_command.call_args.kwargs == {"raise_error": False}
        assert worker.delays == [0.25]

    def test_failing_reset_command_is_not_fatal(self, corpus, config):
        config.target_reset_command = "false"
        worker = make_worker(corpus, FakeBackend(), config)

        with patch("guifuzz.worker.runCommand", return_value=1):
            worker.reset()

        assert worker.delays == []

    def test_no_reset(self, corpus, config):
        worker = make_worker(corpus, FakeBackend(), config)

        with patch("guifuzz.worker.runCommand") as run_command:
            worker.reset()

        run_command.assert_not_called()


class TestSpawn:
    def test_spawn_loads_instrumentation(self, corpus, config):
        config.target_instrumentation = "calc.breakpoints"
        debugger = FakeDebugger()
        worker = make_worker(corpus, FakeBackend(), config, debugger)

        assert worker.spawn() is debugger
        assert debugger.instrumentation == "calc.breakpoints"


class TestAttach:
    def test_attach_retries(self, corpus, config):
        window = FakeWindow()
        backend = FakeBackend(window, failures=3)
        worker = make_worker(corpus, backend, config)

        assert worker.attach(4242) is window
        assert backend.calls == [(4242, "Calculator")] * 4

    def test_attach_stops_when_session_is_over(self, corpus, config):
        worker = make_worker(corpus, FakeBackend(), config)
        worker.finished.set()

        assert worker.attach(4242) is None

    def test_attach_timeout(self, corpus, config):
        config.target_attach_timeout = 0.01
        backend = FakeBackend()
        worker = make_worker(corpus, backend, config)

        assert worker.attach(4242) is None
        assert backend.calls

    def test_drive_without_window(self, corpus, config):
        worker = make_worker(corpus, FakeBackend(), config)
        worker.finished.set()

        assert worker.drive(4242, True) == ()


class TestDrive:
    def test_generate_when_corpus_is_empty(self, corpus, config):
        window = FakeWindow(lifetime=3)
        worker = make_worker(corpus, FakeBackend(window), config)

        fuzz_input = worker.drive(4242, False)

        assert isinstance(fuzz_input, tuple)
        assert fuzz_input[0].kind == ActionKind.LEFT_CLICK
        assert len([action for action in fuzz_input if action.kind == ActionKind.LEFT_CLICK]) == 3
        assert worker.state == WorkerState.DRIVING

    def test_mutate_corpus_input(self, corpus, config):
        seed = make_input([LeftClick(0), KeyPress(49), LeftClick(1)])
        corpus.merge_coverage({CALC_KEY}, seed)
        window = FakeWindow()
        worker = make_worker(corpus, FakeBackend(window), config)

        fuzz_input = worker.drive(4242, False)

        assert set(fuzz_input) <= set(seed)
        clicks = [action for action in fuzz_input if action.kind == ActionKind.LEFT_CLICK]
        keys = [action for action in fuzz_input if action.kind == ActionKind.KEY_PRESS]
        assert len([event for event in window.events if event[0] == "click"]) == len(clicks)
        assert len([event for event in window.events if event[0] == "key"]) == len(keys)


class TestRunOnce:
    """Test one whole fuzz case."""

    def test_empty_input_reaching_coverage(self, corpus, config):
        """Test a target whose window never shows up."""
        debugger = FakeDebugger(Normal(0), coverage={CALC_KEY})
        worker = make_worker(corpus, FakeBackend(), config, debugger)

        fuzz_input, exit_type = worker.run_once()

        assert fuzz_input == ()
        assert exit_type == Normal(0)
        assert corpus.coverage_input(CALC_KEY) == ()
        assert corpus.snapshot().fuzz_cases == 1
        assert corpus.snapshot().inputs == 1
        assert debugger.killed and debugger.closed
        assert worker.local.fuzz_cases == 1
        assert worker.state == WorkerState.MERGING

    def test_generated_input(self, corpus, config):
        window = FakeWindow(lifetime=2)
        debugger = FakeDebugger(Normal(0), coverage={CALC_KEY, ("calc.exe", 0x2000)})
        worker = make_worker(corpus, FakeBackend(window), config, debugger, rng_values=[8])
        debugger.wait_for = worker.driven

        fuzz_input, exit_type = worker.run_once()

        assert len(fuzz_input) >= 4
        assert corpus.inputs() == (fuzz_input,)
        assert corpus.coverage_keys() == {CALC_KEY, ("calc.exe", 0x2000)}

    def test_crash(self, corpus, config):
        window = FakeWindow(lifetime=1)
        debugger = FakeDebugger(Crash("SIGFPE_calc.exe+0x1234"))
        worker = make_worker(corpus, FakeBackend(window), config, debugger)
        debugger.wait_for = worker.driven

        fuzz_input, exit_type = worker.run_once()

        assert exit_type.is_crash
        assert corpus.crash_input("SIGFPE_calc.exe+0x1234") == fuzz_input
        snapshot = corpus.snapshot()
        assert snapshot.crashes == 1
        assert snapshot.unique_crashes == 1
        assert snapshot.fuzz_cases == 1
        assert worker.local.crashes == 1

    def test_no_new_coverage(self, corpus, config):
        corpus.merge_coverage({CALC_KEY}, make_input())
        debugger = FakeDebugger(Normal(0), coverage={CALC_KEY})
        worker = make_worker(corpus, FakeBackend(), config, debugger)

        assert worker.run_once() is not None
        assert corpus.snapshot().inputs == 1
        assert corpus.snapshot().fuzz_cases == 1

    def test_driver_error_drops_the_case(self, corpus, config):
        debugger = FakeDebugger(Crash("SIGSEGV"), coverage={CALC_KEY})
        backend = FakeBackend(error=RuntimeError("automation server died"))
        worker = make_worker(corpus, backend, config, debugger)
        debugger.wait_for = worker.driven

        assert worker.run_once() is None
        assert corpus.snapshot().fuzz_cases == 0
        assert corpus.is_empty()
        assert debugger.killed and debugger.closed

    def test_debugger_error_drops_the_case(self, corpus, config):
        debugger = FakeDebugger(coverage={CALC_KEY}, error=PtraceError("waitpid failed"))
        worker = make_worker(corpus, FakeBackend(), config, debugger)

        assert worker.run_once() is None
        assert corpus.snapshot().fuzz_cases == 0
        assert debugger.killed and debugger.closed

    def test_unexpected_debugger_error_releases_the_target(self, corpus, config):
        """Test that the target is killed even if run() fails with a non-ptrace error."""
        debugger = FakeDebugger(coverage={CALC_KEY}, error=OSError("readMappings failed"))
        worker = make_worker(corpus, FakeBackend(), config, debugger)

        with pytest.raises(OSError, match="readMappings failed"):
            worker.run_once()

        assert debugger.killed and debugger.closed
        assert worker.finished.is_set()
        assert worker.state == WorkerState.COLLECTING
        assert corpus.is_empty()

    def test_corpus_error_propagates(self, tmp_path, config):
        inputs_dir = tmp_path / "inputs"
        inputs_dir.write_text("not a directory")
        debugger = FakeDebugger(Normal(0), coverage={CALC_KEY})
        worker = make_worker(Corpus(inputs_dir), FakeBackend(), config, debugger)

        with pytest.raises(CorpusError):
            worker.run_once()
