# -*- test-case-name: wisecow.test.test_generator -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Compose a quotation source and a bubble renderer into a response.
"""

from twisted.internet.defer import CancelledError, Deferred, maybeDeferred
from twisted.logger import Logger
from twisted.python.failure import Failure

from wisecow.error import GenerationFailure
from wisecow.interfaces import IBubbleRenderer, IQuotationSource


class ResponseGenerator:
    """
    Produce one rendered bubble per call to L{generate}.

    Nothing is kept between calls, so one generator is shared by every
    connection a factory serves.

    @ivar source: The L{IQuotationSource} asked for each quotation.
    @ivar renderer: The L{IBubbleRenderer} each quotation is handed to.
    """

    log = Logger()

    def __init__(self, source: IQuotationSource, renderer: IBubbleRenderer) -> None:
        self.source = source
        self.renderer = renderer

    def generate(self) -> "Deferred[str]":
        """
        Ask the source for a quotation and render it.

        @return: A L{Deferred} which fires with the renderer's output,
            unchanged, or fails with L{GenerationFailure} if either
            collaborator fails or produces nothing.  Cancelling it cancels
            whichever collaborator is running.
        """
        d = maybeDeferred(self.source.produceQuotation)
        d.addCallback(self._checkOutput, "quotation source")
        d.addErrback(self._collaboratorFailed, "quotation source")
        d.addCallback(self._render)
        return d

    def _render(self, quotation: str) -> "Deferred[str]":
        self.log.debug("Rendering quotation {quotation!r}", quotation=quotation)
        d = maybeDeferred(self.renderer.renderBubble, quotation)
        d.addCallback(self._checkOutput, "bubble renderer")
        d.addErrback(self._collaboratorFailed, "bubble renderer")
        return d

    def _checkOutput(self, output: str, role: str) -> str:
        if not output or not output.strip():
            raise GenerationFailure(f"The {role} produced no output")
        return output

    def _collaboratorFailed(self, reason: Failure, role: str) -> Failure:
        if reason.check(CancelledError, GenerationFailure):
            return reason
        return Failure(
            GenerationFailure(f"The {role} failed: {reason.getErrorMessage()}")
        )
