"""Allow `python -m winadmin`."""

import sys

from winadmin.main import main

sys.exit(main())
