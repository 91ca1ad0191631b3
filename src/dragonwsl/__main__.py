"""Entry point for running dragonwsl as a module.

This allows running the CLI with:
    python -m dragonwsl
"""

from dragonwsl.cli.main import main

if __name__ == "__main__":
    main()
