# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Tests for L{wisecow.server}, over real TCP connections on the loopback
interface.
"""

import sys

from zope.interface import implementer

from twisted.internet import reactor
from twisted.internet.defer import Deferred, gatherResults
from twisted.internet.endpoints import TCP4ClientEndpoint, connectProtocol
from twisted.internet.error import ConnectionRefusedError
from twisted.internet.protocol import Protocol
from twisted.internet.interfaces import IReactorProcess
from twisted.internet.task import deferLater
from twisted.internet.testing import MemoryReactor, RaisingMemoryReactor
from twisted.trial.unittest import SynchronousTestCase, TestCase

from wisecow.collaborators import (
    ProcessBubbleRenderer,
    ProcessQuotationSource,
    spawnCollaborator,
)
from wisecow.error import BindFailure
from wisecow.generator import ResponseGenerator
from wisecow.interfaces import IQuotationSource
from wisecow.protocol import WisecowFactory
from wisecow.server import WisecowServer
from wisecow.test.fakes import (
    BUBBLE,
    QUOTE,
    FailingQuotationSource,
    FramingRenderer,
    ListQuotationSource,
    StaticGenerator,
    frame,
)

LOOPBACK = "tcp:0:interface=127.0.0.1"

if IReactorProcess.providedBy(reactor):
    noProcesses = None
else:
    noProcesses = "This reactor cannot run processes."


class Reader(Protocol):
    """
    A client which sends nothing and collects everything it receives.

    @ivar done: A L{Deferred} which fires with the bytes received once the
        connection is closed.
    """

    def __init__(self):
        self.received = []
        self.done = Deferred()

    def dataReceived(self, data):
        self.received.append(data)

    def connectionLost(self, reason):
        self.done.callback(b"".join(self.received))


class DelayedGenerator:
    """
    A generator answering after a short delay on the real reactor.
    """

    def __init__(self, delay=0.01):
        self.delay = delay
        self.served = 0

    def generate(self):
        self.served += 1
        return deferLater(reactor, self.delay, frame, f"Number {self.served}.")


class HangingGenerator:
    """
    A generator which never answers the first C{hang} requests and answers
    the others at once.

    @ivar started: Fires once the first hanging request has been made.
    """

    def __init__(self, hang=1):
        self.hang = hang
        self.requests = 0
        self.started = Deferred()

    def generate(self):
        self.requests += 1
        if self.requests > self.hang:
            return StaticGenerator(frame("Not stuck.")).generate()
        if self.requests == 1:
            self.started.callback(None)
        return Deferred(lambda d: None)


@implementer(IQuotationSource)
class SpawningQuotationSource:
    """
    A quotation source running a Python script, which keeps the process
    protocol of each run.
    """

    def __init__(self, script):
        self.script = script
        self.spawned = []

    def produceQuotation(self):
        protocol = spawnCollaborator(reactor, sys.executable, ["-c", self.script])
        self.spawned.append(protocol)
        return protocol.result


class WisecowServerTests(TestCase):
    """
    Tests for L{WisecowServer} on the real reactor.
    """

    def startServer(self, generator, timeout=5, description=LOOPBACK):
        """
        Start a server on an ephemeral loopback port, stopped at the end of
        the test.

        @return: The server.
        """
        factory = WisecowFactory(generator, timeout=timeout, reactor=reactor)
        server = WisecowServer(reactor, description, factory)
        self.successResultOf(server.serve())
        self.addCleanup(server.stop)
        return server

    def fetch(self, server):
        """
        Connect to C{server} without sending anything.

        @return: A L{Deferred} firing with everything received before the
            server closed the connection.
        """
        endpoint = TCP4ClientEndpoint(
            reactor, "127.0.0.1", server.port.getHost().port
        )
        d = connectProtocol(endpoint, Reader())
        d.addCallback(lambda reader: reader.done)
        return d

    def test_response(self):
        """
        A client which connects and sends nothing receives a complete,
        framed bubble.
        """
        server = self.startServer(
            ResponseGenerator(
                ListQuotationSource(["Be yourself."]), FramingRenderer()
            )
        )
        d = self.fetch(server)
        d.addCallback(self.assertEqual, frame("Be yourself.").encode("utf-8"))
        return d

    def test_concurrentConnections(self):
        """
        Fifty simultaneous connections are all answered.
        """
        server = self.startServer(DelayedGenerator())
        d = gatherResults([self.fetch(server) for _ in range(50)])

        def check(responses):
            self.assertEqual(len(responses), 50)
            for response in responses:
                self.assertIn(b"^__^", response)
            self.assertEqual(server.factory.connections, set())

        return d.addCallback(check)

    def test_stuckConnectionDoesNotBlockOthers(self):
        """
        While one connection waits on a collaborator that never answers,
        others are served; the stuck one is closed, empty, at the timeout.
        """
        generator = HangingGenerator()
        server = self.startServer(generator, timeout=0.5)
        stuck = self.fetch(server)

        def othersServed(responses):
            self.assertNoResult(stuck)
            self.assertEqual(responses, [frame("Not stuck.").encode("utf-8")] * 10)
            return stuck

        d = generator.started
        d.addCallback(
            lambda ignored: gatherResults([self.fetch(server) for _ in range(10)])
        )
        d.addCallback(othersServed)
        d.addCallback(self.assertEqual, b"")
        return d

    def test_failingSource(self):
        """
        With a quotation source which always fails, every connection is
        closed with nothing written.
        """
        server = self.startServer(
            ResponseGenerator(FailingQuotationSource(), FramingRenderer())
        )
        d = gatherResults([self.fetch(server) for _ in range(5)])
        d.addCallback(self.assertEqual, [b""] * 5)
        return d

    def test_backToBack(self):
        """
        Two requests made one after the other both get well-formed
        responses, with their own quotations.
        """
        server = self.startServer(
            ResponseGenerator(ListQuotationSource(["One.", "Two."]), FramingRenderer())
        )
        responses = []

        d = self.fetch(server)
        d.addCallback(responses.append)
        d.addCallback(lambda ignored: self.fetch(server))
        d.addCallback(responses.append)
        d.addCallback(
            lambda ignored: self.assertEqual(
                responses,
                [frame("One.").encode("utf-8"), frame("Two.").encode("utf-8")],
            )
        )
        return d

    def test_processCollaborators(self):
        """
        A server whose quotation source and renderer are child processes
        sends the renderer's output for the source's quotation.
        """
        server = self.startServer(
            ResponseGenerator(
                ProcessQuotationSource(reactor, sys.executable, ["-c", QUOTE]),
                ProcessBubbleRenderer(reactor, sys.executable, ["-c", BUBBLE]),
            )
        )

        def check(response):
            self.assertIn(b"< Talk is cheap. >", response)
            self.assertIn(b"^__^", response)

        return self.fetch(server).addCallback(check)

    test_processCollaborators.skip = noProcesses

    def test_timeoutKillsCollaborator(self):
        """
        When a collaborator process hangs, the connection is closed empty at
        the timeout and the process is killed.
        """
        source = SpawningQuotationSource("import time; time.sleep(60)")
        server = self.startServer(
            ResponseGenerator(source, FramingRenderer()), timeout=0.5
        )
        started = reactor.seconds()

        d = self.fetch(server)
        d.addCallback(self.assertEqual, b"")
        d.addCallback(lambda ignored: source.spawned[0].ended)

        def check(ignored):
            self.assertLess(reactor.seconds() - started, 30)
            self.assertIsNone(source.spawned[0].transport.pid)

        return d.addCallback(check)

    test_timeoutKillsCollaborator.skip = noProcesses

    def test_portInUse(self):
        """
        Listening on a port which is already bound fails with
        L{BindFailure}, and the second server accepts nothing.
        """
        first = self.startServer(StaticGenerator("x"))
        portNumber = first.port.getHost().port

        second = WisecowServer(
            reactor,
            f"tcp:{portNumber}:interface=127.0.0.1",
            WisecowFactory(StaticGenerator("x"), reactor=reactor),
        )
        failure = self.failureResultOf(second.serve(), BindFailure)

        self.assertIsNone(second.port)
        self.assertIn(str(portNumber), str(failure.value))

    def test_stopClosesConnections(self):
        """
        L{WisecowServer.stop} stops listening and closes the connections
        still being served.
        """
        generator = HangingGenerator()
        server = self.startServer(generator)
        held = self.fetch(server)

        d = generator.started
        d.addCallback(lambda ignored: server.stop())
        d.addCallback(lambda ignored: held)
        d.addCallback(self.assertEqual, b"")
        return d

    def test_refusedAfterStop(self):
        """
        Once stopped, the server no longer accepts connections.
        """
        server = self.startServer(StaticGenerator("x"))
        endpoint = TCP4ClientEndpoint(
            reactor, "127.0.0.1", server.port.getHost().port
        )

        d = server.stop()
        d.addCallback(lambda ignored: connectProtocol(endpoint, Reader()))
        return self.assertFailure(d, ConnectionRefusedError)


class WisecowServerMemoryTests(SynchronousTestCase):
    """
    Tests for L{WisecowServer} with in-memory reactors.
    """

    def test_serve(self):
        """
        L{WisecowServer.serve} listens on the described endpoint with the
        server's factory and fires with the port.
        """
        memoryReactor = MemoryReactor()
        factory = WisecowFactory(StaticGenerator("x"), reactor=memoryReactor)
        server = WisecowServer(memoryReactor, "tcp:4499", factory)

        port = self.successResultOf(server.serve())

        self.assertIs(server.port, port)
        [(portNumber, listeningFactory, _, _)] = memoryReactor.tcpServers
        self.assertEqual(portNumber, 4499)
        self.assertIs(listeningFactory, factory)

    def test_cannotListen(self):
        """
        When the reactor cannot listen, L{WisecowServer.serve} fails with
        L{BindFailure} naming the description.
        """
        from twisted.internet.error import CannotListenError

        raisingReactor = RaisingMemoryReactor(
            listenException=CannotListenError("", 4499, OSError(13, "Permission denied"))
        )
        server = WisecowServer(
            raisingReactor,
            "tcp:4499",
            WisecowFactory(StaticGenerator("x"), reactor=MemoryReactor()),
        )

        failure = self.failureResultOf(server.serve(), BindFailure)

        self.assertEqual(failure.value.description, "tcp:4499")
        self.assertIn("Permission denied", str(failure.value))
        self.assertIsNone(server.port)

    def test_invalidDescription(self):
        """
        A description L{serverFromString} does not understand fails with
        L{BindFailure}.
        """
        server = WisecowServer(
            MemoryReactor(),
            "no-such-endpoint:4499",
            WisecowFactory(StaticGenerator("x"), reactor=MemoryReactor()),
        )
        self.failureResultOf(server.serve(), BindFailure)

    def test_stopBeforeServe(self):
        """
        Stopping a server which is not listening does nothing.
        """
        server = WisecowServer(
            MemoryReactor(),
            "tcp:4499",
            WisecowFactory(StaticGenerator("x"), reactor=MemoryReactor()),
        )
        self.assertIsNone(self.successResultOf(server.stop()))
