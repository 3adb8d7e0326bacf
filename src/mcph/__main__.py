# Entry point for python -m mcph
import sys

from mcph.cli import main

sys.exit(main())
