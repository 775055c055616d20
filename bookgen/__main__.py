"""Module entrypoint for running bookgen as ``python -m bookgen``."""

from __future__ import annotations

from bookgen.cli import main


if __name__ == "__main__":
    main()
