#!/usr/bin/env python3
"""
Susceptibility Mapping - command line runner

Run: python main.py run --config studies/landslide_example.json
     python main.py config
"""

import sys

from susceptibility.cli import main


if __name__ == "__main__":
    sys.exit(main())
