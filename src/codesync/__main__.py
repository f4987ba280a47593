"""Run the codesync CLI with ``python -m codesync``."""

from codesync.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
