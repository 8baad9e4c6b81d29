"""Root conftest: put the src directory on sys.path.

Lets the test suite import ``landcover`` from a plain checkout without an
editable install.
"""

import os
import sys

_SRC = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)
