"""gtidfix - find and purge errant GTIDs on a MySQL replica."""

import logging

__version__ = "0.3.0"

logging.getLogger("gtidfix").addHandler(logging.NullHandler())
