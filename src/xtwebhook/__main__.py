"""Allow ``python -m xtwebhook``."""

import sys

from xtwebhook.cli import main

sys.exit(main())
