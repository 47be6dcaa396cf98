import threading
from optparse import OptionGroup, OptionParser
from sys import exit

from ptrace.error import PTRACE_ERRORS, writeError

from guifuzz.application_logger import ApplicationLogger
from guifuzz.config import ConfigError, GuifuzzConfig
from guifuzz.corpus import Corpus, CorpusError
from guifuzz.debugger import TargetDebugger
from guifuzz.process.tools import beNice, targetArguments
from guifuzz.report import Reporter
from guifuzz.ui import load_backend
from guifuzz.version import LICENSE, VERSION, WEBSITE
from guifuzz.worker import Worker


class Application:
    """
    Application class is responsible to run the fuzzer:
     - parse the command line
     - setup logging
     - create the corpus and the workers
     - print statistics until interrupted or a fatal error
    """

    NAME = "guifuzz"
    USAGE = "%prog [options]"

    def __init__(self, args=None):
        self.exitcode = 0
        self.interrupted = False
        self.fatal = threading.Event()
        self.fatal_error = None
        self.workers = []
        self.threads = []
        self.setup(args)

    def createOptionParser(self):
        parser = OptionParser(usage=self.USAGE)
        parser.add_option(
            "--version",
            help="Display guifuzz version (%s) and exit" % VERSION,
            action="store_true",
        )
        parser.add_option(
            "--config",
            help="Configuration file (default: ~/.config/guifuzz.conf)",
            type="str",
        )
        parser.add_option(
            "--write-config",
            help="Write a default configuration file and exit",
            action="store_true",
            default=False,
        )

        fuzzer = OptionGroup(parser, "Fuzzer")
        fuzzer.add_option(
            "--workers",
            help="Number of parallel workers (default: %s)" % self.config.fuzzer_workers,
            dest="fuzzer_workers",
            type="int",
        )
        fuzzer.add_option(
            "--inputs-dir",
            help="Directory of the saved inputs (default: %s)" % self.config.fuzzer_inputs_dir,
            dest="fuzzer_inputs_dir",
        )
        fuzzer.add_option(
            "--stats-file",
            help="Statistics file (default: %s)" % self.config.fuzzer_stats_file,
            dest="fuzzer_stats_file",
        )
        fuzzer.add_option(
            "--resume",
            help="Load the inputs saved by a previous run",
            action="store_true",
            default=False,
        )
        fuzzer.add_option(
            "--fast",
            help="Don't lower the priority of the fuzzer",
            action="store_true",
            default=False,
        )
        parser.add_option_group(fuzzer)

        target = OptionGroup(parser, "Target")
        target.add_option(
            "--target",
            help="Target command line (default: %r)" % self.config.target_command,
            dest="target_command",
        )
        target.add_option(
            "--title",
            help="Title of the target main window (default: %r)" % self.config.target_window_title,
            dest="target_window_title",
        )
        target.add_option(
            "--instrumentation",
            help="Coverage breakpoint list ('module offset' per line)",
            dest="target_instrumentation",
        )
        target.add_option(
            "--reset-command",
            help="Command run before each target start to remove its saved state",
            dest="target_reset_command",
        )
        target.add_option(
            "--attach-timeout",
            help="Give up waiting for the target window after N seconds (default: unlimited)",
            dest="target_attach_timeout",
            type="float",
        )
        target.add_option(
            "--backend",
            help="UI automation backend (entry point of the guifuzz.backends group)",
            dest="ui_backend",
        )
        parser.add_option_group(target)

        log = OptionGroup(parser, "Logging")
        log.add_option(
            "-v",
            "--verbose",
            help="Enable verbose mode (set log level to INFO)",
            action="store_true",
            default=False,
        )
        log.add_option(
            "--debug",
            help="Enable debug mode (set log level to DEBUG)",
            action="store_true",
            default=False,
        )
        log.add_option(
            "--quiet",
            help="Be quiet (lowest log level), don't create log file",
            action="store_true",
            default=False,
        )
        log.add_option(
            "--log-file",
            help="Log file (default: guifuzz.log)",
            default="guifuzz.log",
        )
        parser.add_option_group(log)
        return parser

    def parseOptions(self, args=None):
        """Create command line options and parse them."""
        parser = self.createOptionParser()
        self.options, self.arguments = parser.parse_args(args)
        if self.arguments:
            parser.print_help()
            exit(1)

        # Just want to know the version?
        if self.options.version:
            print("guifuzz version %s" % VERSION)
            print("License: %s" % LICENSE)
            print("Website: %s" % WEBSITE)
            exit(0)

        if self.options.quiet:
            self.options.debug = False
            self.options.verbose = False
        if self.options.debug:
            self.options.verbose = True

    def setup(self, args=None):
        """Prepare the application."""
        self.logger = ApplicationLogger(self)

        # Read the default configuration to display defaults in --help
        try:
            self.config = GuifuzzConfig(read=False)
        except ConfigError as err:
            self.fatalError("Configuration error: %s" % err)

        self.parseOptions(args)
        self.logger.applyOptions(self.options)
        self.logger.warning("guifuzz version %s -- %s" % (VERSION, LICENSE))

        try:
            if self.options.config:
                self.config = GuifuzzConfig(filename=self.options.config, configdir="")
            else:
                self.config = GuifuzzConfig()
            if self.options.write_config:
                self.config.write_sample_config()
                print("Configuration written into %s" % self.config.filename)
                exit(0)
            self.config.applyOptions(self.options)
            if not self.config.ui_backend:
                raise ConfigError("No UI backend: use --backend option")
            self.arguments = targetArguments(self.config.target_command)
        except (ConfigError, ValueError, SyntaxError) as err:
            self.fatalError("Configuration error: %s" % err)

        if not self.options.fast:
            beNice(True)

    def createWorkers(self, backend, debugger_factory=TargetDebugger.spawn):
        for index in range(self.config.fuzzer_workers):
            worker = Worker(
                self.corpus,
                backend,
                self.config,
                self.arguments,
                debugger_factory=debugger_factory,
                name="worker%s" % (index + 1),
            )
            thread = threading.Thread(
                target=self.runWorker, args=(worker,), name=worker.name, daemon=True
            )
            self.workers.append(worker)
            self.threads.append(thread)

    def runWorker(self, worker):
        try:
            worker.run_forever()
        except PTRACE_ERRORS as error:
            self.on_fatal_error(error)

    def on_fatal_error(self, error):
        if self.fatal_error is None:
            self.fatal_error = error
        self.fatal.set()

    def runProject(self):
        self.corpus = Corpus(self.config.fuzzer_inputs_dir)
        if self.options.resume:
            count = self.corpus.load_inputs()
            self.logger.warning("Resume with %s inputs" % count)

        backend = load_backend(self.config.ui_backend)
        self.createWorkers(backend)
        for thread in self.threads:
            thread.start()
        self.logger.warning(
            "Started %s workers on %s" % (len(self.threads), " ".join(self.arguments))
        )

        with open(self.config.fuzzer_stats_file, "w") as stats_file:
            reporter = Reporter(self.corpus, stats_file, print)
            while not self.fatal.wait(self.config.fuzzer_report_interval):
                reporter.report()

        raise self.fatal_error

    def interrupt(self, message):
        self.interrupted = True
        self.logger.error(message)

    def exit(self, keep_log=True):
        if not keep_log:
            self.logger.unlinkFile()
        elif self.logger.filename:
            self.logger.error("guifuzz log written into %s" % self.logger.filename)
        self.logger.closeFile()

    def fatalError(self, message=None):
        """
        Fatal error: display a message (if message is set) and exit.
        """
        self.exitcode = 1
        if message:
            self.logger.error(message)
        self.exit(keep_log=False)
        exit(self.exitcode)

    def main(self, exit_at_end=True):
        """
        Run the fuzzer until it is interrupted (CTRL+c) or a fatal error
        occurs, and exit with 0 on interruption or 1 on error.
        """
        try:
            self.runProject()
        except KeyboardInterrupt:
            self.interrupt("Fuzzer interrupted!")
        except CorpusError as error:
            self.logger.error("Fatal corpus error: %s" % error)
            self.exitcode = 1
        except PTRACE_ERRORS as error:
            writeError(self.logger.logger, error, "Fuzzer error")
            self.exitcode = 1
        if exit_at_end:
            self.exit()
            exit(self.exitcode)


def main():
    Application().main()
