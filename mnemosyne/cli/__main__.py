"""Allow ``python -m mnemosyne.cli`` execution."""

import sys

from mnemosyne.cli.main import main

sys.exit(main())
