import sys

from susceptibility.cli import main

sys.exit(main())
