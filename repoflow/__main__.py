"""Module entrypoint for ``python -m repoflow``.

Thin wrapper around :func:`repoflow.cli.main`; the CLI return code becomes the process exit
status (0 success, 1 a repository recorded an error, 2 invalid configuration, 130 interrupted).
"""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
