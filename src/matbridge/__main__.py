"""Allow ``python -m matbridge``."""

import sys

from matbridge.cli import main

sys.exit(main())
