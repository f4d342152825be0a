# -*- test-case-name: wisecow.test.test_collaborators -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Quotation sources and bubble renderers backed by external programs.

Each request runs its collaborators in fresh child processes; nothing is
shared between runs.  The programs are located once, at startup, with
L{findExecutable}.
"""

import os
from typing import List, Optional, Sequence, Tuple

from attrs import field, frozen
from zope.interface import implementer

from twisted.internet import defer, error
from twisted.internet.interfaces import IReactorProcess
from twisted.internet.protocol import ProcessProtocol
from twisted.python.failure import Failure
from twisted.python.filepath import FilePath
from twisted.python.procutils import which

from wisecow.error import CollaboratorMissing, GenerationFailure
from wisecow.interfaces import IBubbleRenderer, IQuotationSource

__all__ = [
    "DEFAULT_SEARCH_PATH",
    "DEFAULT_MAX_OUTPUT",
    "findExecutable",
    "CollaboratorProcessProtocol",
    "spawnCollaborator",
    "runCollaborator",
    "ProcessQuotationSource",
    "ProcessBubbleRenderer",
    "fortune",
    "cowsay",
]

# Debian and Ubuntu install fortune and cowsay here, outside the default PATH.
DEFAULT_SEARCH_PATH: Tuple[str, ...] = ("/usr/games",)

# Larger output from a collaborator fails the request.
DEFAULT_MAX_OUTPUT = 64 * 1024

# Only the end of a collaborator's standard error is kept for error messages.
_STDERR_TAIL = 4 * 1024


def _isExecutable(path: FilePath) -> bool:
    return path.isfile() and os.access(path.path, os.X_OK)


def findExecutable(name: str, searchPath: Sequence[str] = DEFAULT_SEARCH_PATH) -> str:
    """
    Locate an external program.

    A C{name} containing a path separator is taken as a path to the program
    itself.  Otherwise C{$PATH} is searched first, then each directory of
    C{searchPath}.

    @param name: The program to look for.
    @param searchPath: Directories to try when the program is not on
        C{$PATH}.

    @return: The path of the program.

    @raise CollaboratorMissing: If no executable file by that name exists.
    """
    if os.sep in name:
        candidate = FilePath(name)
        if _isExecutable(candidate):
            return candidate.path
        raise CollaboratorMissing(name, [candidate.dirname()])

    found = which(name)
    if found:
        return found[0]

    for directory in searchPath:
        candidate = FilePath(directory).child(name)
        if _isExecutable(candidate):
            return candidate.path

    searched = os.environ.get("PATH", "").split(os.pathsep)
    raise CollaboratorMissing(name, [d for d in searched if d] + list(searchPath))


class CollaboratorProcessProtocol(ProcessProtocol):
    """
    Feed a collaborator its input and collect what it writes to standard
    output.

    @ivar command: The program being run, for error messages.

    @ivar maxOutput: The most bytes the program may write to standard output.
        Beyond that it is killed and C{result} fails.

    @ivar result: A L{Deferred} which fires with the bytes written to
        standard output once the process exits with status 0, or fails with
        L{GenerationFailure} if it exits any other way or writes more than
        C{maxOutput} bytes.  Cancelling it kills the process.

    @ivar ended: A L{Deferred} which fires with L{None} once the process has
        been reaped, however it ended.
    """

    def __init__(
        self,
        command: str,
        stdin: Optional[bytes] = None,
        maxOutput: int = DEFAULT_MAX_OUTPUT,
    ) -> None:
        self.command = command
        self.maxOutput = maxOutput
        self._stdin = stdin
        self._out: List[bytes] = []
        self._outSize = 0
        self._err = b""
        self.result: defer.Deferred[bytes] = defer.Deferred(self._cancel)
        self.ended: defer.Deferred[None] = defer.Deferred()

    def connectionMade(self) -> None:
        if self._stdin:
            self.transport.write(self._stdin)
        self.transport.closeStdin()

    def outReceived(self, data: bytes) -> None:
        if self.result.called:
            return
        self._outSize += len(data)
        if self._outSize > self.maxOutput:
            self._out = []
            self._kill()
            self.result.errback(
                GenerationFailure(
                    f"{self.command} produced too much output"
                    f" (more than {self.maxOutput} bytes)"
                )
            )
            return
        self._out.append(data)

    def errReceived(self, data: bytes) -> None:
        self._err = (self._err + data)[-_STDERR_TAIL:]

    def processEnded(self, reason: Failure) -> None:
        # A cancelled or overflowing result has already failed.
        if not self.result.called:
            if reason.check(error.ProcessDone):
                self.result.callback(b"".join(self._out))
            else:
                self.result.errback(GenerationFailure(self._describe(reason.value)))
        self.ended.callback(None)

    def _describe(self, terminated: BaseException) -> str:
        signal = getattr(terminated, "signal", None)
        if signal is not None:
            what = f"killed by signal {signal}"
        else:
            what = f"exited with status {getattr(terminated, 'exitCode', None)}"
        stderr = self._err.decode("utf-8", "replace").strip()
        if stderr:
            what = f"{what}: {stderr}"
        return f"{self.command} {what}"

    def _cancel(self, result: "defer.Deferred[bytes]") -> None:
        self._kill()

    def _kill(self) -> None:
        if self.transport is None:
            return
        try:
            self.transport.signalProcess("KILL")
        except error.ProcessExitedAlready:
            pass


def spawnCollaborator(
    reactor: IReactorProcess,
    executable: str,
    arguments: Sequence[str] = (),
    stdin: Optional[bytes] = None,
    maxOutput: int = DEFAULT_MAX_OUTPUT,
) -> CollaboratorProcessProtocol:
    """
    Run a collaborator in a child process which inherits this process's
    environment.

    @param reactor: The reactor to spawn the process with.
    @param executable: The path of the program.
    @param arguments: Arguments for the program, not including its name.
    @param stdin: Bytes to write to the program's standard input before
        closing it, or L{None} to close it straight away.
    @param maxOutput: The most bytes the program may write to standard
        output before it is killed.

    @return: The protocol connected to the process.  Its C{result} is always
        consumed by the caller; a program which cannot be started fails it
        with L{GenerationFailure} rather than raising.
    """
    protocol = CollaboratorProcessProtocol(executable, stdin, maxOutput)
    try:
        reactor.spawnProcess(protocol, executable, [executable, *arguments], env=None)
    except OSError as e:
        protocol.result.errback(GenerationFailure(f"Cannot run {executable}: {e}"))
        protocol.ended.callback(None)
    return protocol


def runCollaborator(
    reactor: IReactorProcess,
    executable: str,
    arguments: Sequence[str] = (),
    stdin: Optional[bytes] = None,
    maxOutput: int = DEFAULT_MAX_OUTPUT,
) -> "defer.Deferred[bytes]":
    """
    Like L{spawnCollaborator}, but return only the L{Deferred} result.
    """
    return spawnCollaborator(
        reactor, executable, arguments, stdin, maxOutput
    ).result


def _decode(output: bytes) -> str:
    return output.decode("utf-8", "replace")


@implementer(IQuotationSource)
@frozen
class ProcessQuotationSource:
    """
    A quotation source which runs a program with no input and takes its
    output as the quotation.
    """

    _reactor: IReactorProcess
    executable: str
    arguments: Tuple[str, ...] = field(default=(), converter=tuple)

    def produceQuotation(self) -> "defer.Deferred[str]":
        d = runCollaborator(self._reactor, self.executable, self.arguments)
        return d.addCallback(_decode)


@implementer(IBubbleRenderer)
@frozen
class ProcessBubbleRenderer:
    """
    A bubble renderer which writes the text to a program's standard input and
    takes its output as the rendered bubble.
    """

    _reactor: IReactorProcess
    executable: str
    arguments: Tuple[str, ...] = field(default=(), converter=tuple)

    def renderBubble(self, text: str) -> "defer.Deferred[str]":
        d = runCollaborator(
            self._reactor, self.executable, self.arguments, text.encode("utf-8")
        )
        return d.addCallback(_decode)


def fortune(
    reactor: IReactorProcess,
    executable: str = "fortune",
    searchPath: Sequence[str] = DEFAULT_SEARCH_PATH,
) -> ProcessQuotationSource:
    """
    Build a quotation source running C{fortune}.

    @raise CollaboratorMissing: If the program cannot be found.
    """
    return ProcessQuotationSource(reactor, findExecutable(executable, searchPath))


def cowsay(
    reactor: IReactorProcess,
    executable: str = "cowsay",
    cowfile: Optional[str] = None,
    searchPath: Sequence[str] = DEFAULT_SEARCH_PATH,
) -> ProcessBubbleRenderer:
    """
    Build a bubble renderer running C{cowsay}.

    @param cowfile: The cow to draw, as accepted by C{cowsay -f}, or L{None}
        for the default cow.

    @raise CollaboratorMissing: If the program cannot be found.
    """
    arguments: Tuple[str, ...] = ()
    if cowfile is not None:
        arguments = ("-f", cowfile)
    return ProcessBubbleRenderer(
        reactor, findExecutable(executable, searchPath), arguments
    )
