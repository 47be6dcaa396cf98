from logging import (
    DEBUG,
    ERROR,
    INFO,
    WARNING,
    FileHandler,
    Formatter,
    StreamHandler,
    getLogger,
)
from os import unlink
from sys import stdout

LOGGER_NAME = "guifuzz"


class ApplicationLogger:
    """
    Configure the 'guifuzz' logger: console output and an optional log
    file. Modules log through children of this logger.
    """

    def __init__(self, application):
        self.application = application
        self.logger = getLogger(LOGGER_NAME)
        self.logger.setLevel(DEBUG)
        self.logger.propagate = False
        # Drop the handlers of a previous application of the same process
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self.filename = None
        self.file_handler = None

        self.console_handler = StreamHandler(stdout)
        self.console_handler.setFormatter(Formatter("[%(threadName)s] %(message)s"))
        self.console_handler.setLevel(WARNING)
        self.logger.addHandler(self.console_handler)

    def applyOptions(self, options):
        if options.quiet:
            level = ERROR
        elif options.debug:
            level = DEBUG
        elif options.verbose:
            level = INFO
        else:
            level = WARNING
        self.console_handler.setLevel(level)

        if options.quiet or not options.log_file:
            return
        self.filename = options.log_file
        self.file_handler = FileHandler(self.filename, "w")
        self.file_handler.setFormatter(
            Formatter("%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s")
        )
        if options.debug:
            self.file_handler.setLevel(DEBUG)
        else:
            self.file_handler.setLevel(INFO)
        self.logger.addHandler(self.file_handler)

    def closeFile(self):
        if not self.file_handler:
            return
        self.logger.removeHandler(self.file_handler)
        self.file_handler.close()
        self.file_handler = None

    def unlinkFile(self):
        self.closeFile()
        if self.filename:
            unlink(self.filename)
            self.filename = None

    def info(self, message):
        self.logger.info(message)

    def warning(self, message):
        self.logger.warning(message)

    def error(self, message):
        self.logger.error(message)
