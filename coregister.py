#!/usr/bin/env python3
"""
Wrapper script for coregistration.
Makes it easier to run without the -m flag.

Usage:
    python coregister.py reference.png moving.png -o aligned.png
"""

import sys
from coreg.cli import main

if __name__ == '__main__':
    sys.exit(main())
