"""Entry point for ``python -m trustreg``."""

from __future__ import annotations

import sys

from trustreg.cli import main

if __name__ == "__main__":
    sys.exit(main())
