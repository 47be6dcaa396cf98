"""
Replay a saved fuzz input against a fresh target instance, to check if
a crash reproduces.
"""

import pathlib
import threading
from optparse import OptionParser
from sys import exit, stderr

from ptrace.error import PTRACE_ERRORS, writeError

from guifuzz.action import InputFormatError, parse_input
from guifuzz.application_logger import ApplicationLogger
from guifuzz.config import ConfigError, GuifuzzConfig
from guifuzz.debugger import TargetDebugger
from guifuzz.process.tools import targetArguments
from guifuzz.ui import load_backend, perform_actions
from guifuzz.worker import Worker


class ReplayWorker(Worker):
    """Worker which always sends the same fuzz input."""

    def __init__(self, fuzz_input, *args, **kw):
        Worker.__init__(self, *args, **kw)
        self.fuzz_input = fuzz_input

    def drive(self, pid, generate_input):
        window = self.attach(pid)
        if window is None:
            return self.fuzz_input
        perform_actions(window, self.fuzz_input, self.sleep)
        return self.fuzz_input


def replay(fuzz_input, backend, config, arguments, debugger_factory=TargetDebugger.spawn):
    """
    Run the target once with the input. Return (exit_type, coverage).
    """
    worker = ReplayWorker(
        fuzz_input, None, backend, config, arguments,
        debugger_factory=debugger_factory, name="replay",
    )
    debugger = worker.spawn()
    driver = threading.Thread(
        target=worker.drive, args=(debugger.pid, False), name="replay-driver", daemon=True
    )
    driver.start()
    try:
        exit_type = debugger.run()
    finally:
        debugger.kill()
        coverage = debugger.take_coverage()
        debugger.close()
        worker.finished.set()
        driver.join()
    return exit_type, coverage


def parseOptions(args=None):
    parser = OptionParser(usage="%prog [options] input_file")
    parser.add_option("--config", help="Configuration file", type="str")
    parser.add_option("--target", help="Target command line", dest="target_command")
    parser.add_option("--title", help="Title of the target main window", dest="target_window_title")
    parser.add_option(
        "--instrumentation",
        help="Coverage breakpoint list ('module offset' per line)",
        dest="target_instrumentation",
    )
    parser.add_option("--backend", help="UI automation backend", dest="ui_backend")
    parser.add_option("-v", "--verbose", action="store_true", default=False)
    parser.add_option("--debug", action="store_true", default=False)
    options, arguments = parser.parse_args(args)
    if len(arguments) != 1:
        parser.print_help()
        exit(1)
    options.quiet = False
    options.log_file = None
    return options, arguments[0]


def main(args=None):
    options, filename = parseOptions(args)
    logger = ApplicationLogger(None)
    logger.applyOptions(options)
    try:
        fuzz_input = parse_input(pathlib.Path(filename).read_text(encoding="ascii"))
        if options.config:
            config = GuifuzzConfig(filename=options.config, configdir="")
        else:
            config = GuifuzzConfig()
        config.applyOptions(options)
        if not config.ui_backend:
            raise ConfigError("No UI backend: use --backend option")
        arguments = targetArguments(config.target_command)
        backend = load_backend(config.ui_backend)
    except (OSError, InputFormatError, ConfigError, LookupError, ValueError) as err:
        print("Error: %s" % err, file=stderr)
        exit(1)

    print("Replay %s (%s actions) on %s" % (filename, len(fuzz_input), " ".join(arguments)))
    try:
        exit_type, coverage = replay(fuzz_input, backend, config, arguments)
    except PTRACE_ERRORS as error:
        writeError(logger.logger, error, "Replay error")
        exit(1)

    print("Coverage: %s locations" % len(coverage))
    if exit_type.is_crash:
        print("Crash: %s" % exit_type.signature)
        exit(2)
    print("Normal exit (exit code %s)" % exit_type.exitcode)
    exit(0)
