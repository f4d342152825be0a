# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

# Make the wisecow package executable: python -m wisecow --port 4499
# This is not a docstring to avoid changing the string output of --help.


from wisecow.runner import Wisecow

if __name__ == "__main__":
    Wisecow.main()
