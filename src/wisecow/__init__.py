# -*- test-case-name: wisecow -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
wisecow: serves a fortune, as told by a cow, to anyone who connects.
"""

from wisecow._version import __version__ as _incremental_version

# setuptools and the rest of the packaging world want a plain string.
__version__ = _incremental_version.short()
