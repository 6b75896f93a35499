"""Entry point for ``python -m bonus_engine``."""

import sys

from bonus_engine.cli import main

if __name__ == "__main__":
    sys.exit(main())
