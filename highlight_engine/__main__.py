"""Entry point for running highlight_engine as a module.

Usage:
    python -m highlight_engine <command> [options]
"""
from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
