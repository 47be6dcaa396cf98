"""
Debugger session of one target process, built on python-ptrace.

The target is spawned under ptrace, one-shot breakpoints are written at
every instrumented location, and each breakpoint hit is recorded as a
(module, offset) coverage key, whichever thread of the target hits it.
run() blocks until the target exits or receives a fatal signal.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from os.path import basename
from signal import SIGABRT, SIGBUS, SIGFPE, SIGILL, SIGSEGV, SIGSYS, SIGTRAP

from ptrace.cpu_info import CPU_POWERPC
from ptrace.ctypes_tools import word2bytes
from ptrace.debugger import (
    NewProcessEvent,
    ProcessEvent,
    ProcessExit,
    ProcessSignal,
    PtraceDebugger,
)
from ptrace.debugger.child import createChild
from ptrace.error import PtraceError
from ptrace.signames import signalName

from guifuzz.instrumentation import load_instrumentation

log = logging.getLogger(__name__)

CRASH_SIGNALS = frozenset((SIGABRT, SIGBUS, SIGFPE, SIGILL, SIGSEGV, SIGSYS))

if CPU_POWERPC:
    # "TRAP" instruction
    TRAP_INSTRUCTION = word2bytes(0x0CC00000)
else:
    # "INT 3" instruction
    TRAP_INSTRUCTION = b"\xCC"

# Auxiliary vector entries: (type, value) pairs of native words
AUXV_ENTRY = struct.Struct("@LL")
AT_NULL = 0
AT_ENTRY = 9


class ExitType:
    is_crash = False


@dataclass(frozen=True)
class Normal(ExitType):
    exitcode: int = 0


@dataclass(frozen=True)
class Crash(ExitType):
    signature: str
    is_crash = True


def crash_signature(signum, location):
    """
    >>> crash_signature(11, ("calc", 0x1000))
    'SIGSEGV_calc+0x1000'
    >>> crash_signature(4, 0xdead)
    'SIGILL_0xdead'
    """
    name = signalName(signum)
    if isinstance(location, tuple):
        module, offset = location
        return "%s_%s+0x%x" % (name, module, offset)
    if location is None:
        return name
    return "%s_0x%x" % (name, location)


class TargetDebugger:
    def __init__(self, arguments, env=None, no_stdout=True):
        self.arguments = list(arguments)
        self.debugger = PtraceDebugger()
        # Threads of the target report breakpoint hits too
        self.debugger.traceClone()
        self.pid = createChild(self.arguments, no_stdout, env)
        self.process = self.debugger.addProcess(self.pid, is_attached=True)
        log.debug("Spawned %s (pid %s)", self.arguments[0], self.pid)

        # module name => offsets still waiting for a breakpoint
        self.pending = {}
        # breakpoint address => (module, offset)
        self.breakpoints = {}
        # address of an installed trap => replaced instruction bytes
        self.original_bytes = {}
        # addresses of traps which were hit and removed
        self.removed = set()
        self.loader_address = None
        self.coverage = set()

    @classmethod
    def spawn(cls, arguments, **kw):
        return cls(arguments, **kw)

    def load_instrumentation(self, path):
        points = load_instrumentation(path)
        for module, offsets in points.items():
            self.pending.setdefault(module, set()).update(offsets)
        log.debug(
            "Loaded %s coverage points from %s",
            sum(len(offsets) for offsets in points.values()),
            path,
        )

    def module_bases(self):
        bases = {}
        for mapping in self.process.readMappings():
            if not mapping.pathname or mapping.offset:
                continue
            bases.setdefault(basename(mapping.pathname), mapping.start)
        return bases

    def locate(self, address):
        """
        Convert an address to (module, offset), or None if the address
        is not inside a file mapping.
        """
        for mapping in self.process.readMappings():
            if mapping.pathname and mapping.start <= address < mapping.end:
                module = basename(mapping.pathname)
                base = self.module_bases().get(module, mapping.start)
                return module, address - base
        return None

    def entry_point(self):
        """
        Read the program entry point from the auxiliary vector of the
        target. Return None if it is unknown.
        """
        try:
            with open("/proc/%s/auxv" % self.pid, "rb") as fp:
                data = fp.read()
        except OSError as err:
            log.debug("Unable to read the auxiliary vector of pid %s: %s", self.pid, err)
            return None
        data = data[: len(data) - len(data) % AUXV_ENTRY.size]
        for key, value in AUXV_ENTRY.iter_unpack(data):
            if key == AT_NULL:
                break
            if key == AT_ENTRY:
                return value
        return None

    def write_trap(self, process, address):
        """
        Replace the instruction at `address` with a trap. The write goes
        through `process`, which must be stopped; threads share memory.
        """
        original = process.readBytes(address, len(TRAP_INSTRUCTION))
        process.writeBytes(address, TRAP_INSTRUCTION)
        self.original_bytes[address] = original

    def install_breakpoints(self, process=None):
        """
        Write breakpoints in the modules which are mapped. Modules loaded
        later are retried on the next stop.
        """
        if not self.pending:
            return
        if process is None:
            process = self.process
        bases = self.module_bases()
        for module in list(self.pending):
            base = bases.get(module)
            if base is None:
                continue
            for offset in self.pending.pop(module):
                address = base + offset
                if address not in self.original_bytes:
                    try:
                        self.write_trap(process, address)
                    except PtraceError as err:
                        log.debug("Unable to set breakpoint at %s+0x%x: %s", module, offset, err)
                        continue
                self.breakpoints[address] = (module, offset)

    def install_loader_breakpoint(self):
        """
        Stop the target once more at the program entry point: the dynamic
        loader has mapped the shared libraries by then, so their pending
        breakpoints can be written.
        """
        if not self.pending:
            return
        address = self.entry_point()
        if address is None or address in self.original_bytes:
            return
        try:
            self.write_trap(self.process, address)
        except PtraceError as err:
            log.debug("Unable to set breakpoint at entry point 0x%x: %s", address, err)
            return
        self.loader_address = address
        log.debug("Breakpoint at entry point 0x%x", address)

    def hit_breakpoint(self, process):
        """
        Handle a SIGTRAP of `process`, the main thread or another thread.
        Return False if the trap is not one of our breakpoints.
        """
        ip = process.getInstrPointer()
        if not CPU_POWERPC:
            # Go before the "INT 3" instruction
            ip -= 1
        original = self.original_bytes.pop(ip, None)
        if original is not None:
            process.writeBytes(ip, original)
            self.removed.add(ip)
            key = self.breakpoints.pop(ip, None)
            if key is not None:
                self.coverage.add(key)
        elif ip not in self.removed:
            return False
        # A thread which hit the trap before its removal runs it again
        process.setInstrPointer(ip)
        return True

    def classify_signal(self, signum, process=None):
        if process is None:
            process = self.process
        try:
            ip = process.getInstrPointer()
            location = self.locate(ip) or ip
        except (PtraceError, OSError):
            location = None
        return Crash(crash_signature(signum, location))

    def process_exit(self, event):
        """
        Return the exit type of a process exit event, or None if only a
        thread of the target exited.
        """
        signum = event.signum
        if signum in CRASH_SIGNALS:
            return Crash(crash_signature(signum, None))
        if event.process is not self.process:
            log.debug("Thread %s exited", event.process.pid)
            return None
        if signum == SIGTRAP:
            log.warning(
                "pid %s killed by SIGTRAP: trap outside of the coverage breakpoints",
                self.pid,
            )
        return Normal(event.exitcode or 0)

    def run(self) -> ExitType:
        """Continue the target until it exits or crashes."""
        self.install_breakpoints()
        self.install_loader_breakpoint()
        self.process.cont()
        while True:
            try:
                event = self.debugger.waitProcessEvent()
            except ProcessEvent as err:
                event = err
            process = event.process

            if isinstance(event, ProcessExit):
                exit_type = self.process_exit(event)
                if exit_type is not None:
                    return exit_type
                continue

            if isinstance(event, NewProcessEvent):
                # Both the new thread and its creator are stopped
                log.debug("New thread %s", process.pid)
                process.cont()
                process.parent.cont()
                continue

            if not isinstance(event, ProcessSignal):
                process.cont()
                continue

            signum = event.signum
            if signum == SIGTRAP and self.hit_breakpoint(process):
                self.install_breakpoints(process)
                process.cont()
                continue
            if signum in CRASH_SIGNALS:
                return self.classify_signal(signum, process)
            process.cont(signum)

    def kill(self):
        try:
            self.process.terminate()
        except (PtraceError, OSError, ProcessEvent) as err:
            log.debug("Kill pid %s: %s", self.pid, err)

    def take_coverage(self):
        coverage, self.coverage = self.coverage, set()
        return coverage

    def close(self):
        self.debugger.quit()
