# -*- test-case-name: wisecow.test.test_runner -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
System exit support.
"""

from sys import exit as sysexit, stderr, stdout
from typing import Optional, Union

from constantly import ValueConstant, Values


def exit(status: Union[int, ValueConstant], message: Optional[str] = None) -> None:
    """
    Exit the python interpreter with an optional message.

    @param status: An exit status.
    @type status: L{int} or L{ValueConstant} from L{ExitStatus}.

    @param message: Written to standard output when C{status} is zero, to
        standard error otherwise.
    """
    if isinstance(status, ValueConstant):
        code = status.value
    else:
        code = int(status)

    if message:
        out = stdout if code == 0 else stderr
        out.write(message)
        out.write("\n")

    sysexit(code)


class ExitStatus(Values):
    """
    The exit statuses wisecow uses, with their C{sysexits.h} values.
    """

    EX_OK = ValueConstant(0)
    EX_USAGE = ValueConstant(64)
    EX_UNAVAILABLE = ValueConstant(69)
    EX_SOFTWARE = ValueConstant(70)
    EX_OSERR = ValueConstant(71)
    EX_CANTCREAT = ValueConstant(73)
