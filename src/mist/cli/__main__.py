"""CLI entry point for mist.cli module.

Enables execution via: python -m mist.cli <command>
"""

from mist.cli.commands import main

if __name__ == "__main__":
    main()
