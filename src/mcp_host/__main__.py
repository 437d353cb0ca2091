"""Allow ``python -m mcp_host``."""

import sys

from mcp_host.cli import main

sys.exit(main())
