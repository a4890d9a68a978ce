"""
Module entrypoint for the tpm CLI.

This file exists so that `python -m tpm ...` works consistently in all
environments, including when the console-script wrapper is not installed.

Notes
-----
This module contains no business logic. It delegates to the CLI module.
"""

from __future__ import annotations

from tpm.cli import main


def _run() -> None:
    """
    Execute the tpm command line interface.

    Raises
    ------
    SystemExit
        Carries the CLI exit code.
    """
    raise SystemExit(main())


if __name__ == "__main__":
    _run()
