# -*- test-case-name: wisecow.test.test_protocol -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
The wisecow protocol: answer every connection with one rendered bubble.

Like the QOTD and Daytime servers in L{twisted.protocols.wire}, the server
speaks first and never reads the request.  The response is written in a
single call and the connection is closed afterwards, so a client sees either
the whole bubble or nothing at all.
"""

from typing import Optional, Set

from twisted.internet.defer import CancelledError, Deferred
from twisted.internet.error import ConnectionDone
from twisted.internet.interfaces import IAddress, IReactorTime
from twisted.internet.protocol import Protocol, ServerFactory, connectionDone
from twisted.logger import Logger
from twisted.protocols.policies import TimeoutMixin
from twisted.python.failure import Failure

from wisecow.error import GenerationFailure
from wisecow.generator import ResponseGenerator

DEFAULT_TIMEOUT = 5.0


class WisecowProtocol(Protocol, TimeoutMixin):
    """
    Serve one connection.

    @ivar factory: The L{WisecowFactory} which built this protocol.
    """

    log = Logger()

    factory: "WisecowFactory"
    _generating: Optional[Deferred] = None
    _responding = False
    _timedOut = False
    _closed = False

    def callLater(self, period, func):
        return self.factory.reactor.callLater(period, func)

    def connectionMade(self) -> None:
        self.factory.connectionOpened(self)
        self.setTimeout(self.factory.timeout)
        self.log.debug("Serving {peer}", peer=self.transport.getPeer())

        d = self._generating = self.factory.generator.generate()
        d.addCallbacks(self._respond, self._generationFailed)
        d.addErrback(self._handlerFailed)

    def dataReceived(self, data: bytes) -> None:
        # The request carries no meaning; it is never parsed.
        pass

    def _respond(self, text: str) -> None:
        self._generating = None
        self._responding = True
        self.transport.write(text.encode("utf-8"))
        self.transport.loseConnection()

    def _generationFailed(self, reason: Failure) -> None:
        self._generating = None
        reason.trap(GenerationFailure, CancelledError)
        if self._timedOut or self._closed:
            # The connection is already closing.
            return
        self.log.warn(
            "Could not generate a response for {peer}: {error}",
            peer=self.transport.getPeer(),
            error=reason.getErrorMessage(),
        )
        self.transport.loseConnection()

    def _handlerFailed(self, reason: Failure) -> None:
        self.log.failure(
            "Unexpected error serving {peer}", reason, peer=self.transport.getPeer()
        )
        self.transport.abortConnection()

    def timeoutConnection(self) -> None:
        self._timedOut = True
        self.log.warn(
            "Timed out serving {peer} after {timeout} seconds",
            peer=self.transport.getPeer(),
            timeout=self.factory.timeout,
        )
        if self._generating is not None:
            self._generating.cancel()
        self.transport.abortConnection()

    def connectionLost(self, reason: Failure = connectionDone) -> None:
        self._closed = True
        self.setTimeout(None)
        if self._generating is not None:
            self._generating.cancel()
        if self._responding and not self._timedOut and not reason.check(ConnectionDone):
            self.log.warn(
                "Connection to {peer} lost before the response was delivered: "
                "{error}",
                peer=self.transport.getPeer(),
                error=reason.getErrorMessage(),
            )
        self.factory.connectionClosed(self)


class WisecowFactory(ServerFactory):
    """
    Build a L{WisecowProtocol} for each accepted connection.

    The factory is the only state shared by the connections of a server, and
    it is only read by them: the generator, the timeout and the reactor are
    fixed at construction.

    @ivar generator: The L{ResponseGenerator} every protocol asks for its
        response.

    @ivar timeout: Seconds each connection may take, from accept until it is
        closed, before it is aborted.

    @ivar maxConnections: The number of connections which may be served at
        once, or L{None} for no limit.  Connections beyond the limit are
        closed as soon as they are accepted.

    @ivar reactor: The L{IReactorTime} timeouts are scheduled with.

    @ivar connections: The protocols of the connections being served.
    """

    protocol = WisecowProtocol
    log = Logger()

    def __init__(
        self,
        generator: ResponseGenerator,
        timeout: float = DEFAULT_TIMEOUT,
        maxConnections: Optional[int] = None,
        reactor: Optional[IReactorTime] = None,
    ) -> None:
        if reactor is None:
            from twisted.internet import reactor  # type: ignore[assignment]
        self.generator = generator
        self.timeout = timeout
        self.maxConnections = maxConnections
        self.reactor = reactor
        self.connections: Set[WisecowProtocol] = set()

    def buildProtocol(self, addr: IAddress) -> Optional[Protocol]:
        if (
            self.maxConnections is not None
            and len(self.connections) >= self.maxConnections
        ):
            self.log.warn(
                "Refusing {peer}: already serving {count} connections",
                peer=addr,
                count=len(self.connections),
            )
            return None
        return ServerFactory.buildProtocol(self, addr)

    def connectionOpened(self, protocol: WisecowProtocol) -> None:
        self.connections.add(protocol)

    def connectionClosed(self, protocol: WisecowProtocol) -> None:
        self.connections.discard(protocol)

    def disconnectAll(self) -> None:
        """
        Abort every connection being served.
        """
        for protocol in list(self.connections):
            protocol.transport.abortConnection()
