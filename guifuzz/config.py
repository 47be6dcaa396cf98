import pathlib
from configparser import NoOptionError, NoSectionError, RawConfigParser
from io import StringIO
from os import getenv
from os.path import exists as path_exists
from os.path import join as path_join

DEFAULTS = {
    "fuzzer_workers": 10,
    "fuzzer_generate_mask": 0x7,
    "fuzzer_report_interval": 1.0,
    "fuzzer_stats_file": "fuzz_stats.txt",
    "fuzzer_inputs_dir": "inputs",
    "fuzzer_reset_jitter_ms": 500,
    "target_command": "gnome-calculator",
    "target_window_title": "Calculator",
    "target_instrumentation": "",
    "target_reset_command": "",
    "target_attach_timeout": 0.0,
    "ui_backend": "",
}


class ConfigError(Exception):
    pass


def createFilename(name=None, configdir=None):
    """Create a filename from the given name and configdir."""
    if name is None:
        name = "guifuzz.conf"
    if configdir is None:
        configdir = getenv("XDG_CONFIG_HOME")
        if not configdir:
            homedir = getenv("HOME")
            if not homedir:
                raise ConfigError(
                    "Unable to retrieve user home directory: empty HOME environment variable"
                )
            configdir = path_join(homedir, ".config")
    return path_join(configdir, name)


class GuifuzzConfig:
    def __init__(self, filename=None, configdir=None, read=True):
        self._parser = RawConfigParser()
        self.filename = createFilename(filename, configdir)
        if read and path_exists(self.filename):
            self._parser.read([self.filename])

        # Fuzzer options
        self.fuzzer_workers = self.getint(
            "fuzzer", "workers", DEFAULTS["fuzzer_workers"]
        )
        self.fuzzer_generate_mask = self.getint(
            "fuzzer", "generate_mask", DEFAULTS["fuzzer_generate_mask"]
        )
        self.fuzzer_report_interval = self.getfloat(
            "fuzzer", "report_interval", DEFAULTS["fuzzer_report_interval"]
        )
        self.fuzzer_stats_file = self.getstr(
            "fuzzer", "stats_file", DEFAULTS["fuzzer_stats_file"]
        )
        self.fuzzer_inputs_dir = self.getstr(
            "fuzzer", "inputs_dir", DEFAULTS["fuzzer_inputs_dir"]
        )
        self.fuzzer_reset_jitter_ms = self.getint(
            "fuzzer", "reset_jitter_ms", DEFAULTS["fuzzer_reset_jitter_ms"]
        )

        # Target options
        self.target_command = self.getstr(
            "target", "command", DEFAULTS["target_command"]
        )
        self.target_window_title = self.getstr(
            "target", "window_title", DEFAULTS["target_window_title"]
        )
        self.target_instrumentation = self.getstr(
            "target", "instrumentation", DEFAULTS["target_instrumentation"]
        )
        self.target_reset_command = self.getstr(
            "target", "reset_command", DEFAULTS["target_reset_command"]
        )
        self.target_attach_timeout = self.getfloat(
            "target", "attach_timeout", DEFAULTS["target_attach_timeout"]
        )

        # UI automation options
        self.ui_backend = self.getstr("ui", "backend", DEFAULTS["ui_backend"])

        self.check()

    def check(self):
        if self.fuzzer_workers < 1:
            raise ConfigError(
                "Number of workers must be at least 1, not %s" % self.fuzzer_workers
            )
        if self.fuzzer_report_interval <= 0:
            raise ConfigError("Report interval must be positive")
        if self.fuzzer_generate_mask < 0:
            raise ConfigError("Generate mask must be positive")
        if self.fuzzer_reset_jitter_ms < 0:
            raise ConfigError("Reset jitter must be positive")
        if self.target_attach_timeout < 0:
            raise ConfigError("Attach timeout must be positive (or 0 for unlimited)")

    def applyOptions(self, options):
        """
        Override configuration values with command line options which
        have been set (option destination is the attribute name).
        """
        for name in DEFAULTS:
            value = getattr(options, name, None)
            if value is not None:
                setattr(self, name, value)
        self.check()

    def write_sample_config(self, write_file=True):
        """Create a sample configuration file and optionally write it."""
        output = StringIO()
        parser = RawConfigParser()
        config_file = pathlib.Path(self.filename)
        if write_file and config_file.exists():
            raise ConfigError("Configuration file already exists: %s" % self.filename)

        output.write("""# guifuzz default configuration file\n\n""")
        for session_and_key, value in DEFAULTS.items():
            section, key = session_and_key.split("_", maxsplit=1)
            if section not in parser:
                parser.add_section(section)
            parser.set(section, key, str(value))
        parser.write(output)

        if write_file:
            config_file.parent.mkdir(parents=True, exist_ok=True)
            with config_file.open("w") as file:
                file.write(output.getvalue())
        return output

    def _gettype(self, func, type_name, section, key, default_value):
        try:
            value = func(section, key)
            if func == self._parser.get:
                value = value.strip()
            return value
        except (NoSectionError, NoOptionError):
            return default_value
        except ValueError as err:
            raise ConfigError(
                "Value %s of section %s is not %s! %s" % (key, section, type_name, err)
            )

    def getstr(self, section, key, default_value=None):
        return self._gettype(self._parser.get, "a string", section, key, default_value)

    def getint(self, section, key, default_value):
        return self._gettype(
            self._parser.getint, "an integer", section, key, default_value
        )

    def getfloat(self, section, key, default_value):
        return self._gettype(
            self._parser.getfloat, "a float", section, key, default_value
        )
