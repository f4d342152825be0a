# -*- test-case-name: wisecow.test.test_runner -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Run a wisecow server from the command line.
"""

import os
import sys
from sys import stderr, stdout
from textwrap import dedent

from twisted.internet import defer
from twisted.internet.task import react
from twisted.logger import (
    FilteringLogObserver,
    InvalidLogLevelError,
    LogLevel,
    LogLevelFilterPredicate,
    Logger,
    globalLogBeginner,
    jsonFileLogObserver,
    textFileLogObserver,
)
from twisted.python.failure import Failure
from twisted.python.usage import Options, UsageError

from wisecow import __version__
from wisecow._exit import ExitStatus, exit
from wisecow.collaborators import cowsay, fortune
from wisecow.error import BindFailure, CollaboratorMissing
from wisecow.generator import ResponseGenerator
from wisecow.protocol import DEFAULT_TIMEOUT, WisecowFactory
from wisecow.server import WisecowServer

DEFAULT_PORT = "4499"
PORT_ENVIRONMENT_VARIABLE = "WISECOW_PORT"


def endpointDescription(port: str) -> str:
    """
    Turn the value of the C{--port} option into a server endpoint
    description.

    @param port: A TCP port number, or a description such as
        C{"tcp:4499:interface=127.0.0.1"}.

    @raise UsageError: If C{port} is empty or an out-of-range number.
    """
    port = port.strip()
    if not port:
        raise UsageError("The port must not be empty")
    if port.isdigit():
        if int(port) > 65535:
            raise UsageError(f"Invalid TCP port: {port}")
        return f"tcp:{port}"
    return port


class WisecowOptions(Options):
    """
    Command line options for C{wisecow}.
    """

    synopsis = "[options]"

    longdesc = """
    Serve a fortune, as told by a cow, to every client which connects.

    The server writes one speech bubble and closes the connection; it never
    reads what the client sends.  Try it with: nc localhost 4499
    """

    optParameters = [
        [
            "port",
            "p",
            None,
            "TCP port number or server endpoint description to listen on. "
            f"[default: ${PORT_ENVIRONMENT_VARIABLE}, or {DEFAULT_PORT}]",
        ],
        [
            "timeout",
            "t",
            DEFAULT_TIMEOUT,
            "Seconds allowed for serving one connection.",
            float,
        ],
        [
            "max-connections",
            "m",
            None,
            "Serve at most this many connections at once. [default: no limit]",
            int,
        ],
        ["fortune", None, "fortune", "The program producing quotations."],
        ["cowsay", None, "cowsay", "The program drawing speech bubbles."],
        ["cowfile", "f", None, "The cow to draw, as passed to cowsay -f."],
    ]

    defaultLogLevel = LogLevel.info

    def __init__(self, environ=os.environ):
        """
        @param environ: The environment the default port is read from.
        """
        Options.__init__(self)
        self.environ = environ

        self["logLevel"] = self.defaultLogLevel
        self["logFile"] = stdout
        self["fileLogObserverFactory"] = textFileLogObserver

    def opt_version(self):
        """
        Print version and exit.
        """
        exit(ExitStatus.EX_OK, f"wisecow {__version__}")

    def opt_log_level(self, levelName):
        """
        Set default log level.
        (options: {options}; default: "{default}")
        """
        try:
            self["logLevel"] = LogLevel.levelWithName(levelName)
        except InvalidLogLevelError:
            raise UsageError(f"Invalid log level: {levelName}")

    opt_log_level.__doc__ = dedent(opt_log_level.__doc__).format(
        options=", ".join(f'"{level.name}"' for level in LogLevel.iterconstants()),
        default=defaultLogLevel.name,
    )

    def opt_log_file(self, fileName):
        """
        Log to file. ("-" for stdout, "+" for stderr; default: "-")
        """
        if fileName == "-":
            self["logFile"] = stdout
            return

        if fileName == "+":
            self["logFile"] = stderr
            return

        try:
            self["logFile"] = open(fileName, "a")
        except OSError as e:
            exit(
                ExitStatus.EX_CANTCREAT,
                f"Unable to open log file {fileName!r}: {e}",
            )

    def opt_log_format(self, format):
        """
        Log file format.
        (options: "text", "json"; default: "text")
        """
        format = format.lower()

        if format == "text":
            self["fileLogObserverFactory"] = textFileLogObserver
        elif format == "json":
            self["fileLogObserverFactory"] = jsonFileLogObserver
        else:
            raise UsageError(f"Invalid log format: {format}")

    def postOptions(self):
        if self["port"] is None:
            self["port"] = self.environ.get(PORT_ENVIRONMENT_VARIABLE, DEFAULT_PORT)
        self["port"] = endpointDescription(self["port"])

        if not self["timeout"] > 0:
            raise UsageError("The timeout must be a positive number of seconds")

        maxConnections = self["max-connections"]
        if maxConnections is not None and maxConnections < 1:
            raise UsageError("The connection limit must be at least 1")


class Wisecow:
    """
    Run a wisecow server.
    """

    log = Logger()

    @staticmethod
    def options(argv):
        """
        Parse command line options.
        """
        options = WisecowOptions()

        try:
            options.parseOptions(argv[1:])
        except UsageError as e:
            exit(ExitStatus.EX_USAGE, f"Error: {e}\n\n{options}")

        return options

    @staticmethod
    def startLogging(options):
        """
        Start the L{twisted.logger} system, filtered to the configured level.
        """
        fileLogObserver = options["fileLogObserverFactory"](options["logFile"])
        logLevelPredicate = LogLevelFilterPredicate(
            defaultLogLevel=options["logLevel"]
        )
        filteringObserver = FilteringLogObserver(fileLogObserver, [logLevelPredicate])
        globalLogBeginner.beginLoggingTo([filteringObserver])

    @staticmethod
    def makeServer(reactor, options):
        """
        Find the collaborators and put a server together.

        @raise CollaboratorMissing: If C{fortune} or C{cowsay} cannot be
            found.
        """
        generator = ResponseGenerator(
            fortune(reactor, options["fortune"]),
            cowsay(reactor, options["cowsay"], options["cowfile"]),
        )
        factory = WisecowFactory(
            generator,
            timeout=options["timeout"],
            maxConnections=options["max-connections"],
            reactor=reactor,
        )
        return WisecowServer(reactor, options["port"], factory)

    @classmethod
    def serve(cls, reactor, options):
        """
        Serve until the reactor is stopped.

        @return: A L{Deferred} which does not fire while the server is
            running.  It fails with L{SystemExit} if the server cannot start.
        """
        try:
            server = cls.makeServer(reactor, options)
        except CollaboratorMissing as e:
            cls.log.critical("Install prerequisites: {error}", error=e)
            return defer.fail(SystemExit(ExitStatus.EX_UNAVAILABLE.value))

        def listening(port):
            reactor.addSystemEventTrigger("before", "shutdown", server.stop)
            return defer.Deferred()

        d = server.serve()
        d.addCallbacks(listening, cls._bindFailed)
        return d

    @classmethod
    def _bindFailed(cls, reason):
        reason.trap(BindFailure)
        cls.log.critical("{error}", error=reason.value)
        return Failure(SystemExit(ExitStatus.EX_OSERR.value))

    @classmethod
    def main(cls, argv=sys.argv):
        options = cls.options(argv)
        cls.startLogging(options)
        react(cls.serve, [options])


if __name__ == "__main__":
    Wisecow.main()
