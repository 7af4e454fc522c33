"""Entry point for running repocache as a module.

This module allows repocache to be run as a Python module using the -m flag:
    python -m repocache serve

It serves as the main entry point for the repocache command-line interface.
"""

from . import cli

if __name__ == "__main__":
    cli._main()
