"""CLI entry point for consum.cli module.

Enables execution via: python -m consum.cli
"""

from consum.cli.sweep_retries import main

if __name__ == "__main__":
    main()
