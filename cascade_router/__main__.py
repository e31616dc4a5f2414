"""Allow ``python -m cascade_router``."""

import sys

from cascade_router.cli import main

sys.exit(main())
