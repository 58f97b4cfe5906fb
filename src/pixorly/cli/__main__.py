"""CLI entry point for pixorly.cli module.

Enables execution via: python -m pixorly.cli (runs the stale job sweep)
"""

from pixorly.cli.expire_jobs import main

if __name__ == "__main__":
    main()
