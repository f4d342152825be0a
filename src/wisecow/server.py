# -*- test-case-name: wisecow.test.test_server -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
The listening side of wisecow.
"""

from typing import Optional

from twisted.internet import defer
from twisted.internet.endpoints import serverFromString
from twisted.internet.error import CannotListenError
from twisted.internet.interfaces import IListeningPort
from twisted.logger import Logger
from twisted.python.failure import Failure

from wisecow.error import BindFailure
from wisecow.protocol import WisecowFactory


class WisecowServer:
    """
    A wisecow server: one listening port and the connections accepted on it.

    @ivar reactor: The reactor to listen with.

    @ivar description: The server endpoint description to listen on, as
        accepted by L{serverFromString}; for example C{"tcp:4499"}.

    @ivar factory: The L{WisecowFactory} building a protocol for each
        accepted connection.

    @ivar port: The L{IListeningPort} once L{serve} has succeeded, L{None}
        before that and after L{stop}.
    """

    log = Logger()

    def __init__(self, reactor, description: str, factory: WisecowFactory) -> None:
        self.reactor = reactor
        self.description = description
        self.factory = factory
        self.port: Optional[IListeningPort] = None

    def serve(self) -> "defer.Deferred[IListeningPort]":
        """
        Start listening.  From then on, every accepted connection is served
        by its own protocol, concurrently with all the others.

        @return: A L{Deferred} which fires with the listening port, or fails
            with L{BindFailure} if the description is invalid or the port
            cannot be bound.
        """
        try:
            endpoint = serverFromString(self.reactor, self.description)
        except ValueError as e:
            return defer.fail(BindFailure(self.description, str(e)))

        d = endpoint.listen(self.factory)
        d.addCallbacks(self._listening, self._bindFailed)
        return d

    def _listening(self, port: IListeningPort) -> IListeningPort:
        self.port = port
        self.log.info("Wisdom served on {address}", address=port.getHost())
        return port

    def _bindFailed(self, reason: Failure) -> Failure:
        reason.trap(CannotListenError)
        return Failure(BindFailure(self.description, reason.getErrorMessage()))

    def stop(self) -> "defer.Deferred[None]":
        """
        Stop listening and abort every connection still being served.
        """
        port, self.port = self.port, None
        if port is None:
            d = defer.succeed(None)
        else:
            d = defer.maybeDeferred(port.stopListening)
        self.factory.disconnectAll()
        return d
