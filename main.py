"""
Entry point for the asyncrepo command line.

Run: python main.py [status|fetch|push|pull] [-d GIT_DIR] [-w WORKDIR]
Requires: pip install -e .
"""
from __future__ import annotations

import sys

from asyncrepo.cli import main

if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
