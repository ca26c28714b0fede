"""Entry point for running schemastep as a module.

Usage:
    python -m schemastep migrate
    python -m schemastep rollback
    python -m schemastep status
"""

from .cli import main

if __name__ == "__main__":
    main()
