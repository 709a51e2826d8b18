"""Allow ``python -m python_clean_slate``."""

import sys

from .main import main

sys.exit(main())
