import re
from os import X_OK, access, devnull, getcwd, getenv, nice, pathsep
from os.path import dirname, isabs
from os.path import join as path_join
from os.path import normpath
from subprocess import STDOUT, Popen


def beNice(very_nice=False):
    if very_nice:
        value = 10
    else:
        value = 5
    nice(value)


def runCommand(logger, command, stdout=False, raise_error=True):
    """
    Run specified command:
     - logger is an object with a info() method
     - command: a string or a list of strings (eg. 'uname' or ['rm', '-rf', 'state'])
     - stdout: if value is False, use null device as stdout and stderr
       (default: discard the output)

    stdin is always the null device. Raise RuntimeError on failure: if the
    exit code is not nul or if the process is killed by a signal. If
    raise_error=False, return the status instead.
    """
    if isinstance(command, str):
        command_str = repr(command)
        command = splitCommand(command)
    else:
        command_str = repr(" ".join(command))
    logger.info("Run the command: %s" % command_str)
    options = {"close_fds": True}
    with open(devnull, "rb") as stdin_file, open(devnull, "wb") as null_file:
        options["stdin"] = stdin_file
        if not stdout:
            options["stdout"] = null_file
            options["stderr"] = STDOUT
        process = Popen(command, **options)
        status = process.wait()
    if not raise_error:
        return status
    if not status:
        return status
    if status < 0:
        errmsg = "process killed by signal %s" % (-status)
    else:
        errmsg = "exit code %s" % status
    raise RuntimeError("Unable to run the command %s: %s" % (command_str, errmsg))


def locateProgram(program, use_none=False, raise_error=False):
    if isabs(program):
        # Absolute path: nothing to do
        return program
    if dirname(program):
        # ./calc => $PWD/./calc
        program = path_join(getcwd(), program)
        program = normpath(program)
        return program
    if use_none:
        default = None
    else:
        default = program
    paths = getenv("PATH")
    if not paths:
        if raise_error:
            raise ValueError("Unable to get PATH environment variable")
        return default
    for path in paths.split(pathsep):
        filename = path_join(path, program)
        if access(filename, X_OK):
            return filename
    if raise_error:
        raise ValueError("Unable to locate program %r in PATH" % program)
    return default


def splitCommand(command):
    r"""
    Split a command (string): create a command as a list of strings.

    >>> splitCommand("gnome-calculator --mode=advanced")
    ['gnome-calculator', '--mode=advanced']
    >>> splitCommand("gsettings reset-recursively 'org.gnome.calculator'")
    ['gsettings', 'reset-recursively', 'org.gnome.calculator']
    """
    if "\\" in command:
        raise SyntaxError("splitCommand() doesn't support antislash")
    arguments = []
    start = 0
    in_quote = None
    for match in re.finditer(r"""[ \t"']""", command):
        index = match.start()
        sep = command[index]
        if in_quote == sep:
            arguments.append(command[start:index])
            in_quote = None
            start = index + 1
        elif sep in " \t":
            if not in_quote:
                # Skip empty arguments (repeated blanks)
                if start < index:
                    arguments.append(command[start:index])
                start = index + 1
        elif not in_quote:
            in_quote = sep
            start = index + 1
    if in_quote:
        raise SyntaxError("Quote %r is not closed" % in_quote)
    if start < len(command):
        arguments.append(command[start:])
    return arguments


def targetArguments(command):
    """
    Split the target command line and locate the program in PATH.
    """
    arguments = splitCommand(command)
    if not arguments:
        raise ValueError("Empty target command")
    arguments[0] = locateProgram(arguments[0], raise_error=True)
    return arguments
