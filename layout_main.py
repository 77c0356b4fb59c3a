#!/usr/bin/env python3
"""
Convenience entry point for the force-directed layout runner.

Usage:
    python layout_main.py                          # Lay out the default graph
    python layout_main.py -g grid -n 400           # Pick a generator and size
    python layout_main.py --steps 500 -o out.npz   # Fixed steps, npz export
    python layout_main.py --list                   # List graph generators
"""

import sys

from tools.layout import main

if __name__ == "__main__":
    sys.exit(main())
