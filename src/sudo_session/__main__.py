"""Allow ``python -m sudo_session``."""

import sys

from .cli.main import main

sys.exit(main())
