#!/usr/bin/env python3
"""
Entry point for the pg-copy-local CLI command.
This allows the package to be run as: python -m pg_copy_local
"""

import sys

from .pg_copy import main

if __name__ == '__main__':
    sys.exit(main())
