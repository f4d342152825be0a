# -*- test-case-name: wisecow.test.test_generator -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Interfaces for the two collaborators a response is built from.

Implementations may answer synchronously with a L{str} or asynchronously
with a L{Deferred <twisted.internet.defer.Deferred>} that fires with one.
"""

from zope.interface import Interface


class IQuotationSource(Interface):
    """
    Something that produces a fresh quotation each time it is asked.
    """

    def produceQuotation():
        """
        Produce one quotation.

        @return: The quotation, or a L{Deferred} firing with it.
        @rtype: L{str} or L{Deferred} of L{str}
        """


class IBubbleRenderer(Interface):
    """
    Something that frames text in an ASCII-art speech bubble.
    """

    def renderBubble(text):
        """
        Render C{text} inside a speech bubble.

        @param text: The text to render.
        @type text: L{str}

        @return: The rendered bubble, or a L{Deferred} firing with it.
        @rtype: L{str} or L{Deferred} of L{str}
        """
