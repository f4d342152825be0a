# -*- test-case-name: wisecow.test -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Exceptions raised by wisecow.

Only L{BindFailure} and L{CollaboratorMissing} are fatal; they stop the
service before it accepts anything.  L{GenerationFailure} is scoped to a
single connection.
"""


class WisecowError(Exception):
    """
    Base class for wisecow errors.
    """


class BindFailure(WisecowError):
    """
    The listening port could not be bound.

    @ivar description: The endpoint description that could not be listened
        on.
    """

    def __init__(self, description: str, reason: str) -> None:
        WisecowError.__init__(self, description, reason)
        self.description = description
        self.reason = reason

    def __str__(self) -> str:
        return f"Cannot listen on {self.description}: {self.reason}"


class CollaboratorMissing(WisecowError):
    """
    An external program the service depends on could not be found.

    @ivar name: The name of the program.
    @ivar searched: The directories that were searched for it.
    """

    def __init__(self, name: str, searched=()) -> None:
        WisecowError.__init__(self, name)
        self.name = name
        self.searched = tuple(searched)

    def __str__(self) -> str:
        where = ", ".join(self.searched) or "(nowhere)"
        return f"Cannot find {self.name!r}; searched {where}"


class GenerationFailure(WisecowError):
    """
    A response could not be generated for one connection.
    """
