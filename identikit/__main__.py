"""Allow ``python -m identikit``."""

import sys

from .cli import main


sys.exit(main())
