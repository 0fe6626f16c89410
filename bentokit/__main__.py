"""
Module entrypoint for the bentokit CLI.

This file exists so that `python -m bentokit ...` works consistently in all
environments, including when the console-script wrapper is not installed.

Notes
-----
This module contains no business logic. It delegates to the CLI module.
"""

from __future__ import annotations

from bentokit.cli import main


def _run() -> int:
    """
    Execute the bentokit command line interface.

    Returns
    -------
    int
        Process exit code from the CLI.
    """
    return main()


if __name__ == "__main__":
    raise SystemExit(_run())
