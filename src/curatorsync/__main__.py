"""Module entrypoint for ``python -m curatorsync``."""

from curatorsync.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
