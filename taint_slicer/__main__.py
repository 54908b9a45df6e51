"""Allow ``python -m taint_slicer <dump> <analysis>``."""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
